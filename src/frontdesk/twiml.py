"""Render abstract turn responses as Twilio TwiML."""

from twilio.twiml.voice_response import VoiceResponse

from frontdesk.policy import NextAction, TurnResponse

DEFAULT_VOICE = "Polly.Joanna-Neural"

HANDLE_PATH = "/voice/handle"
GATHER_PATH = "/voice/gather"
AFTER_TRANSFER_PATH = "/voice/after-transfer"


def _url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}" if base_url else path


def render(response: TurnResponse, *, voice: str = DEFAULT_VOICE, base_url: str = "") -> str:
    """LISTEN wraps the lines in a speech <Gather>; a silent caller falls through to a redirect."""
    twiml = VoiceResponse()

    if response.next_action is NextAction.LISTEN:
        gather = twiml.gather(
            input="speech",
            speech_timeout="auto",
            action=_url(base_url, HANDLE_PATH),
            method="POST",
        )
        for line in response.speak:
            gather.say(line, voice=voice)
        twiml.redirect(_url(base_url, GATHER_PATH), method="POST")
        return str(twiml)

    for line in response.speak:
        twiml.say(line, voice=voice)

    if response.next_action is NextAction.TRANSFER and response.transfer_to:
        dial = twiml.dial(
            timeout=response.ring_timeout,
            action=_url(base_url, AFTER_TRANSFER_PATH),
            method="POST",
        )
        dial.number(response.transfer_to)
    else:
        twiml.hangup()
    return str(twiml)
