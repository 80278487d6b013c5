import logging

from twilio.rest import Client

from frontdesk.config import Settings
from frontdesk.validation import is_e164

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> Client:
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def place_call(to: str, *, settings: Settings, client: Client | None = None) -> str:
    """Dial ``to`` from the office number and point Twilio at our voice webhooks.

    Returns the call SID. Raises ValueError for a malformed destination and
    lets TwilioRestException propagate to the route.
    """
    to = (to or "").strip()
    if not is_e164(to):
        raise ValueError(f"'to' must be an E.164 phone number, got {to!r}")

    client = client or create_client(settings)
    base = settings.base_url.rstrip("/")
    call = client.calls.create(
        to=to,
        from_=settings.twilio_from_number,
        url=f"{base}/voice/initial",
        method="POST",
        status_callback=f"{base}/voice/status",
        status_callback_method="POST",
    )
    logger.info("Outbound call placed: sid=%s", call.sid)
    return call.sid
