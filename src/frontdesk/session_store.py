"""In-process store of per-call dialogue sessions.

Sessions live only as long as the call: the controller removes them on every
terminal event. Anything it misses (a caller who hangs up mid-gather when the
status callback is not configured) is evicted after ``ttl_seconds`` of
inactivity, and the store never holds more than ``max_sessions`` entries.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Optional

from frontdesk.session import CallSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000
DEFAULT_TTL_SECONDS = 3600.0


class SessionStore:
    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock=time.monotonic,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: "OrderedDict[str, CallSession]" = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        # Requests holding or queued on each call lock
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_sid: str) -> bool:
        return call_sid in self._sessions

    def lock(self, call_sid: str) -> asyncio.Lock:
        """Per-call lock; hold it for the whole turn to keep one writer per session."""
        lock = self._locks.get(call_sid)
        if lock is None:
            lock = self._locks[call_sid] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, call_sid: str):
        """Hold the call lock for one request.

        A lock is never pruned while a request holds it or is queued on it, so
        a woken waiter and a newly arrived request always share the same lock.
        """
        self._lock_users[call_sid] = self._lock_users.get(call_sid, 0) + 1
        try:
            async with self.lock(call_sid):
                yield
        finally:
            self._lock_users[call_sid] -= 1
            if not self._lock_users[call_sid]:
                del self._lock_users[call_sid]

    def now(self) -> float:
        return self._clock()

    def get(self, call_sid: str) -> Optional[CallSession]:
        self._expire()
        session = self._sessions.get(call_sid)
        if session is not None:
            self._touch(call_sid, session)
        return session

    def get_or_create(self, call_sid: str) -> CallSession:
        session = self.get(call_sid)
        if session is not None:
            return session

        while len(self._sessions) >= self.max_sessions:
            evicted_sid, _ = self._sessions.popitem(last=False)
            logger.warning("Session store full, evicted least recent call %s", evicted_sid)
            self._prune_locks()

        now = self._clock()
        session = CallSession(call_sid=call_sid, start_time=now, last_seen=now)
        self._sessions[call_sid] = session
        logger.debug("Session created for %s (%d active)", call_sid, len(self._sessions))
        return session

    def remove(self, call_sid: str) -> Optional[CallSession]:
        session = self._sessions.pop(call_sid, None)
        self._prune_locks()
        return session

    def _touch(self, call_sid: str, session: CallSession) -> None:
        session.last_seen = self._clock()
        self._sessions.move_to_end(call_sid)

    def _expire(self) -> None:
        if self.ttl_seconds <= 0:
            return
        cutoff = self._clock() - self.ttl_seconds
        # Ordered by last_seen, oldest first
        while self._sessions:
            call_sid, session = next(iter(self._sessions.items()))
            if session.last_seen > cutoff:
                break
            del self._sessions[call_sid]
            logger.warning("Session %s expired after %.0fs idle", call_sid, self.ttl_seconds)
        self._prune_locks()

    def _prune_locks(self) -> None:
        stale = [
            sid for sid, lock in self._locks.items()
            if sid not in self._sessions and sid not in self._lock_users and not lock.locked()
        ]
        for sid in stale:
            del self._locks[sid]
