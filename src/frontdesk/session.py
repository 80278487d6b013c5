import time
from dataclasses import dataclass, field
from typing import Optional

from frontdesk.states import CallState, InvalidTransition, can_transition


@dataclass
class CallSession:
    call_sid: str
    state: CallState = CallState.INITIATED

    # Collected fields (first write wins)
    customer_name: Optional[str] = None
    preferred_time: Optional[str] = None
    booked: bool = False

    # Human transfer
    transfer_attempted: bool = False
    transfer_status: str = ""

    # Metadata
    turn_count: int = 0
    silent_turns: int = 0
    start_time: float = field(default_factory=time.monotonic)
    last_seen: float = field(default_factory=time.monotonic)
    transcript_log: list = field(default_factory=list)

    def transition(self, new_state: CallState) -> None:
        if new_state is self.state and new_state is not CallState.GATHERING:
            return
        if not can_transition(self.state, new_state):
            raise InvalidTransition(
                f"{self.call_sid}: {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.customer_name:
            missing.append("customer_name")
        if not self.preferred_time:
            missing.append("preferred_time")
        return missing

    def snapshot(self) -> dict:
        """Known fields, as sent to the extraction service."""
        return {
            "name": self.customer_name,
            "preferred_time": self.preferred_time,
        }

    def log_line(self, role: str, content: str) -> None:
        self.transcript_log.append({
            "role": role,
            "content": content,
            "timestamp": time.time(),
            "state": self.state.value,
        })
