from enum import Enum

TERMINAL_STATES = {"booked", "exhausted", "ended"}


class InvalidTransition(RuntimeError):
    """Raised when a call is moved between states that are not connected."""


class CallState(Enum):
    INITIATED = "initiated"
    TRANSFERRING = "transferring"
    GATHERING = "gathering"
    BOOKED = "booked"
    EXHAUSTED = "exhausted"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATES

    @property
    def accepts_speech(self) -> bool:
        return self is CallState.GATHERING


TRANSITIONS = {
    CallState.INITIATED: {CallState.TRANSFERRING, CallState.GATHERING, CallState.ENDED},
    CallState.TRANSFERRING: {CallState.GATHERING, CallState.ENDED},
    CallState.GATHERING: {
        CallState.GATHERING, CallState.BOOKED, CallState.EXHAUSTED, CallState.ENDED,
    },
    CallState.BOOKED: {CallState.ENDED},
    CallState.EXHAUSTED: {CallState.ENDED},
    CallState.ENDED: set(),
}


def can_transition(current: CallState, new: CallState) -> bool:
    return new in TRANSITIONS.get(current, set())
