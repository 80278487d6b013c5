"""Dialogue policy: what to say next and whether to keep listening.

Every function here is pure. It reads the session and returns a Decision;
the controller is the only thing that writes the decision back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from frontdesk import prompts
from frontdesk.extraction import ExtractionResult
from frontdesk.session import CallSession
from frontdesk.states import CallState

logger = logging.getLogger(__name__)

DEFAULT_TURN_BUDGET = 6
TRANSFER_RING_TIMEOUT = 10

TRANSFER_ANSWERED = "completed"


class NextAction(Enum):
    LISTEN = "listen"
    TRANSFER = "transfer"
    HANGUP = "hangup"


@dataclass
class TurnResponse:
    """Abstract response handed to the markup renderer."""

    speak: list[str]
    next_action: NextAction
    transfer_to: str = ""
    ring_timeout: int = TRANSFER_RING_TIMEOUT


@dataclass
class Decision:
    speak: list[str]
    next_action: NextAction
    next_state: CallState
    mark_booked: bool = False
    count_turn: bool = False
    count_silence: bool = False
    customer_name: Optional[str] = None
    preferred_time: Optional[str] = None
    transfer_to: str = ""
    ring_timeout: int = TRANSFER_RING_TIMEOUT
    reason: str = field(default="", compare=False)

    def response(self) -> TurnResponse:
        return TurnResponse(
            speak=list(self.speak),
            next_action=self.next_action,
            transfer_to=self.transfer_to,
            ring_timeout=self.ring_timeout,
        )


def budget_exhausted(session: CallSession, turn_budget: int) -> bool:
    return session.turn_count >= turn_budget


def silence_exhausted(session: CallSession, turn_budget: int) -> bool:
    """Listens that ended with no speech are capped separately from counted turns."""
    return session.silent_turns >= turn_budget


def needs_extraction(session: CallSession, speech: str, turn_budget: int) -> bool:
    """Only a non-empty utterance inside the turn budget goes to the service."""
    return bool((speech or "").strip()) and not budget_exhausted(session, turn_budget)


def merge_field(current: Optional[str], incoming: Optional[str]) -> Optional[str]:
    """First write wins for the whole call."""
    return current if current else (incoming or None)


def _unchanged(session: CallSession, **kwargs) -> Decision:
    return Decision(
        customer_name=session.customer_name,
        preferred_time=session.preferred_time,
        **kwargs,
    )


def _exhausted(session: CallSession) -> Decision:
    logger.warning(
        "Turn budget exhausted for %s after %d turns, %d silent (missing: %s)",
        session.call_sid, session.turn_count, session.silent_turns,
        ", ".join(session.missing_fields()) or "nothing",
    )
    return _unchanged(
        session,
        speak=[prompts.EXHAUSTED],
        next_action=NextAction.HANGUP,
        next_state=CallState.EXHAUSTED,
        reason="exhausted",
    )


def decide(
    session: CallSession,
    result: Optional[ExtractionResult],
    turn_budget: int = DEFAULT_TURN_BUDGET,
    speech: Optional[str] = None,
) -> Decision:
    """Decide the response to one caller utterance.

    ``speech`` is the transcribed text for the turn; when omitted the turn is
    treated as spoken if an extraction result was supplied.
    """
    if budget_exhausted(session, turn_budget):
        return _exhausted(session)

    spoken = bool(speech.strip()) if speech is not None else result is not None
    if not spoken:
        if silence_exhausted(session, turn_budget):
            return _exhausted(session)
        return _unchanged(
            session,
            speak=[prompts.DIDNT_CATCH, prompts.next_prompt(session)],
            next_action=NextAction.LISTEN,
            next_state=CallState.GATHERING,
            count_silence=True,
            reason="empty_speech",
        )

    name = session.customer_name
    preferred_time = session.preferred_time
    speak = []
    if result is not None:
        name = merge_field(name, result.customer_name)
        preferred_time = merge_field(preferred_time, result.preferred_time)
        speak.append(result.utterance)

    if name and preferred_time and not session.booked:
        speak.append(prompts.BOOKED)
        return Decision(
            speak=speak,
            next_action=NextAction.HANGUP,
            next_state=CallState.BOOKED,
            mark_booked=True,
            count_turn=True,
            customer_name=name,
            preferred_time=preferred_time,
            reason="booked",
        )

    speak.append(prompts.prompt_for_missing(name, preferred_time))
    return Decision(
        speak=speak,
        next_action=NextAction.LISTEN,
        next_state=CallState.GATHERING,
        count_turn=True,
        customer_name=name,
        preferred_time=preferred_time,
        reason="gathering",
    )


def reprompt(session: CallSession, turn_budget: int = DEFAULT_TURN_BUDGET) -> Decision:
    """No speech arrived before the listen timed out: ask again, or give up."""
    if budget_exhausted(session, turn_budget) or silence_exhausted(session, turn_budget):
        return _exhausted(session)
    return _unchanged(
        session,
        speak=[prompts.next_prompt(session)],
        next_action=NextAction.LISTEN,
        next_state=CallState.GATHERING,
        count_silence=True,
        reason="reprompt",
    )


def greet(session: CallSession, transfer_to: str = "") -> Decision:
    """First contact: try the office first when a transfer number is configured.

    Once the dialogue has started the caller is only greeted again.
    """
    if transfer_to and not session.transfer_attempted and session.state is CallState.INITIATED:
        return _unchanged(
            session,
            speak=[prompts.TRANSFER_HOLD],
            next_action=NextAction.TRANSFER,
            next_state=CallState.TRANSFERRING,
            transfer_to=transfer_to,
            reason="transfer",
        )
    return _unchanged(
        session,
        speak=[prompts.GREETING, prompts.next_prompt(session)],
        next_action=NextAction.LISTEN,
        next_state=CallState.GATHERING,
        reason="greeting",
    )


def after_transfer(
    session: CallSession,
    status: str,
    turn_budget: int = DEFAULT_TURN_BUDGET,
) -> Decision:
    """The office line rang out; a human either took the call or we take over."""
    if (status or "").strip().lower() == TRANSFER_ANSWERED:
        return _unchanged(
            session,
            speak=[prompts.TRANSFER_COMPLETED],
            next_action=NextAction.HANGUP,
            next_state=CallState.ENDED,
            reason="transfer_completed",
        )
    if budget_exhausted(session, turn_budget):
        return _exhausted(session)
    return _unchanged(
        session,
        speak=[prompts.TEAM_BUSY, prompts.next_prompt(session)],
        next_action=NextAction.LISTEN,
        next_state=CallState.GATHERING,
        reason="transfer_" + ((status or "").strip().lower() or "unknown"),
    )
