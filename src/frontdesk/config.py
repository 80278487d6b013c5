"""Startup configuration validation.

Checks that all required environment variables are set before the server
accepts calls. Called from bot.py at import time so that a missing key
causes a clear startup failure rather than a silent mid-call crash.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "BASE_URL",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_NUMBER",
    "OPENAI_API_KEY",
]

OPTIONAL_VARS = [
    "OFFICE_TRANSFER_NUMBER",
    "MAX_TURNS",
    "OPENAI_MODEL",
    "EXTRACTION_TIMEOUT_SECONDS",
    "TTS_VOICE",
    "LOG_LEVEL",
    "SMS_CONFIRMATION_ENABLED",
]

DEFAULT_MAX_TURNS = 6
TRUTHY = {"1", "true", "yes", "on"}


def _fatal(message: str) -> None:
    print(
        f"\nFATAL: {message}\n"
        f"\nSet it in .env (local) or your deployment's secrets.\n",
        file=sys.stderr,
    )
    sys.exit(1)


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty, or if MAX_TURNS is not a positive integer. Logs warnings for
    missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        _fatal(f"Missing required environment variables:\n  {', '.join(missing)}")

    max_turns = os.getenv("MAX_TURNS")
    if max_turns and (not max_turns.strip().isdigit() or int(max_turns) < 1):
        _fatal(f"MAX_TURNS must be a positive integer, got {max_turns!r}")

    timeout = os.getenv("EXTRACTION_TIMEOUT_SECONDS")
    if timeout:
        try:
            if float(timeout) <= 0:
                raise ValueError(timeout)
        except ValueError:
            _fatal(f"EXTRACTION_TIMEOUT_SECONDS must be a positive number, got {timeout!r}")

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)

    if os.getenv("SMS_CONFIRMATION_ENABLED", "").lower() in TRUTHY:
        logger.warning("SMS_CONFIRMATION_ENABLED is set but SMS confirmation is not supported; ignoring")


@dataclass(frozen=True)
class Settings:
    base_url: str
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_from_number: str
    openai_api_key: str
    office_transfer_number: str = ""
    max_turns: int = DEFAULT_MAX_TURNS
    openai_model: str = "gpt-4o-mini"
    extraction_timeout: float = 8.0
    tts_voice: str = "Polly.Joanna-Neural"
    sms_confirmation_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            base_url=os.getenv("BASE_URL", "").rstrip("/"),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            office_transfer_number=os.getenv("OFFICE_TRANSFER_NUMBER", "").strip(),
            max_turns=int(os.getenv("MAX_TURNS") or DEFAULT_MAX_TURNS),
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
            extraction_timeout=float(os.getenv("EXTRACTION_TIMEOUT_SECONDS") or 8.0),
            tts_voice=os.getenv("TTS_VOICE") or "Polly.Joanna-Neural",
            sms_confirmation_enabled=os.getenv("SMS_CONFIRMATION_ENABLED", "").lower() in TRUTHY,
        )
