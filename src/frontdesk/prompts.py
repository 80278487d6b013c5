"""Everything the receptionist says that does not come from the extraction service."""

from frontdesk.session import CallSession

OFFICE_NAME = "Cupo Dental"
AGENT_NAME = "Ashley"

GREETING = f"Hi! Thank you for calling {OFFICE_NAME}, this is {AGENT_NAME}, how can I help you?"
TRANSFER_HOLD = "Please hold while I connect you with the team."
TEAM_BUSY = "The team is tied up. I can schedule you right now."
TRANSFER_COMPLETED = f"Thanks for calling {OFFICE_NAME}. Goodbye."

ASK_BOTH = "Tell me your name and the best day and time to come in."
ASK_NAME = "What is your name?"
ASK_TIME = "What day and time works best?"
ONE_MOMENT = "One moment."

DIDNT_CATCH = "I didn't catch that."
EXHAUSTED = "Thanks. I'll have the team call you back shortly. Goodbye."
BOOKED = "You're all set. We'll text you to confirm. Goodbye."
CALL_ENDED = "Goodbye."

INTERNAL_ERROR = (
    "I apologize, but something went wrong. "
    "A team member will call you back shortly."
)
EXTRACTION_FALLBACK = "Sorry, I missed that. Could you say it one more time?"


def prompt_for_missing(customer_name, preferred_time) -> str:
    if not customer_name and not preferred_time:
        return ASK_BOTH
    if not customer_name:
        return ASK_NAME
    if not preferred_time:
        return ASK_TIME
    # Both known but not newly booked this turn
    return ONE_MOMENT


def next_prompt(session: CallSession) -> str:
    """Ask for whatever the session is still missing."""
    return prompt_for_missing(session.customer_name, session.preferred_time)
