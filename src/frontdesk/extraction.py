import json
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from frontdesk.circuit_breaker import CircuitBreaker
from frontdesk.prompts import EXTRACTION_FALLBACK
from frontdesk.validation import validate_name, validate_preferred_time

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 8.0

EXTRACTION_PROMPT = """You are the phone assistant for a dental office.
Goal: collect (1) the patient's name and (2) their preferred day and time for an appointment.
Be short and clear: one or two sentences, one question at a time.
NEVER re-ask for a field listed under "Known so far".

Output ONLY valid JSON, nothing else:
{"say": "<what to say to the caller>", "extracted": {"name": "<name or null>", "preferred_time": "<day/time or null>"}}

Only extract what the CALLER explicitly said in this message. If a field is not mentioned, use null.
Do not guess or fabricate values."""


class ExtractionError(ValueError):
    """The service reply could not be turned into a result."""


@dataclass(frozen=True)
class ExtractionResult:
    utterance: str
    customer_name: Optional[str] = None
    preferred_time: Optional[str] = None
    fallback: bool = False


FALLBACK_RESULT = ExtractionResult(utterance=EXTRACTION_FALLBACK, fallback=True)


class ExtractedFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    preferred_time: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return validate_name(value)

    @field_validator("preferred_time", mode="before")
    @classmethod
    def _preferred_time(cls, value):
        return validate_preferred_time(value)


class ReplyEnvelope(BaseModel):
    """Shape the service is asked to answer with. Unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    say: StrictStr = Field(min_length=1)
    extracted: Optional[ExtractedFields] = None

    @field_validator("extracted", mode="before")
    @classmethod
    def _extracted(cls, value):
        # A malformed fields object means "nothing extracted", not a bad reply
        return value if isinstance(value, dict) else None


def find_json_object(text: str) -> Optional[str]:
    """Slice from the first '{' to the last '}', or None if there is no such span."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return None
    return text[start:end + 1]


def parse_reply(text: str) -> ExtractionResult:
    """Turn free-form service output into a result; raises ExtractionError."""
    raw = find_json_object((text or "").strip())
    if raw is None:
        raise ExtractionError("no JSON object in reply")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError("reply is not a JSON object")
    try:
        envelope = ReplyEnvelope.model_validate(data)
    except ValidationError as e:
        raise ExtractionError(f"reply failed validation: {e.error_count()} error(s)") from e

    fields = envelope.extracted or ExtractedFields()
    return ExtractionResult(
        utterance=envelope.say,
        customer_name=fields.name,
        preferred_time=fields.preferred_time,
    )


def build_messages(utterance: str, snapshot: dict) -> list[dict]:
    known = {k: v for k, v in snapshot.items() if v}
    return [
        {"role": "system", "content": EXTRACTION_PROMPT},
        {"role": "system", "content": f"Known so far: {json.dumps(known)}"},
        {"role": "user", "content": utterance},
    ]


class ExtractionAdapter:
    """Single call to the text-understanding service per caller utterance.

    Every failure (timeout, HTTP error, unparseable or invalid reply, open
    circuit) is logged and answered with FALLBACK_RESULT; nothing raises.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = OPENAI_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="extraction service",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def extract(self, utterance: str, snapshot: dict) -> ExtractionResult:
        if not self._circuit.should_try():
            logger.warning("Extraction circuit breaker open, using fallback reply")
            return FALLBACK_RESULT
        try:
            text = await self._complete(utterance, snapshot)
        except httpx.TimeoutException:
            self._circuit.record_failure()
            logger.error("extraction timed out after %.1fs", self.timeout)
            return FALLBACK_RESULT
        except Exception as e:
            self._circuit.record_failure()
            logger.error("extraction failed: %s", e)
            return FALLBACK_RESULT
        self._circuit.record_success()

        try:
            return parse_reply(text)
        except ExtractionError as e:
            logger.warning("unusable extraction reply: %s", e)
            return FALLBACK_RESULT

    async def _complete(self, utterance: str, snapshot: dict) -> str:
        resp = await self._client.post(
            "/chat/completions",
            json={
                "model": self.model,
                "temperature": 0.2,
                "messages": build_messages(utterance, snapshot),
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        content = resp.json()["choices"][0]["message"]["content"]
        if content is not None and not isinstance(content, str):
            raise ExtractionError(f"unexpected content type {type(content).__name__}")
        return content or ""
