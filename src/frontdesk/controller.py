"""Per-webhook orchestration of a call.

Each public coroutine handles one inbound request for one call:

    start_call      first contact; transfer to the office or greet
    after_transfer  outcome of the office transfer
    handle_speech   one caller utterance
    reprompt        listen timed out with no speech
    end_call        provider says the call is over

All of them hold the call's lock for the whole request and always return a
TurnResponse. Unexpected errors end the call politely instead of leaving the
provider without instructions.
"""

import logging

from frontdesk import policy, prompts
from frontdesk.extraction import ExtractionAdapter
from frontdesk.policy import Decision, NextAction, TurnResponse
from frontdesk.session import CallSession
from frontdesk.session_store import SessionStore
from frontdesk.states import CallState
from frontdesk.transcript import chunk_transcript_dump, to_plain_text, to_timestamped_dump

logger = logging.getLogger(__name__)


def error_response() -> TurnResponse:
    return TurnResponse(speak=[prompts.INTERNAL_ERROR], next_action=NextAction.HANGUP)


class CallController:
    def __init__(
        self,
        store: SessionStore,
        extractor: ExtractionAdapter,
        turn_budget: int = policy.DEFAULT_TURN_BUDGET,
        transfer_to: str = "",
        ring_timeout: int = policy.TRANSFER_RING_TIMEOUT,
    ):
        self.store = store
        self.extractor = extractor
        self.turn_budget = turn_budget
        self.transfer_to = transfer_to
        self.ring_timeout = ring_timeout

    # ── Webhook entry points ──

    async def start_call(self, call_sid: str) -> TurnResponse:
        return await self._run(call_sid, "start_call", self._start_call)

    async def after_transfer(self, call_sid: str, status: str) -> TurnResponse:
        return await self._run(call_sid, "after_transfer", self._after_transfer, status)

    async def handle_speech(self, call_sid: str, speech: str | None) -> TurnResponse:
        return await self._run(call_sid, "handle_speech", self._handle_speech, speech or "")

    async def reprompt(self, call_sid: str) -> TurnResponse:
        return await self._run(call_sid, "reprompt", self._reprompt)

    async def end_call(self, call_sid: str, reason: str = "hangup") -> None:
        """Drop the session once the provider reports the call finished."""
        async with self.store.hold(call_sid):
            session = self.store.remove(call_sid)
        if session is None:
            return
        logger.info("Call %s ended by provider (%s) in state %s", call_sid, reason, session.state.value)
        self._log_transcript(session, final_state=CallState.ENDED.value)

    # ── Handlers (called with the call lock held) ──

    async def _start_call(self, session: CallSession) -> TurnResponse:
        decision = policy.greet(session, transfer_to=self.transfer_to)
        if decision.next_action is NextAction.TRANSFER:
            session.transfer_attempted = True
            decision.ring_timeout = self.ring_timeout
            logger.info("Call %s: attempting transfer to office", session.call_sid)
        return self._apply(session, decision)

    async def _after_transfer(self, session: CallSession, status: str) -> TurnResponse:
        session.transfer_status = status or ""
        logger.info("Call %s: transfer outcome %r", session.call_sid, status)
        return self._apply(session, policy.after_transfer(session, status, self.turn_budget))

    async def _handle_speech(self, session: CallSession, speech: str) -> TurnResponse:
        speech = speech.strip()
        if speech:
            session.log_line("user", speech)

        result = None
        if policy.needs_extraction(session, speech, self.turn_budget):
            result = await self.extractor.extract(speech, session.snapshot())
            if result.fallback:
                logger.warning("Call %s: extraction fell back on turn %d", session.call_sid, session.turn_count + 1)

        return self._apply(session, policy.decide(session, result, self.turn_budget, speech=speech))

    async def _reprompt(self, session: CallSession) -> TurnResponse:
        return self._apply(session, policy.reprompt(session, self.turn_budget))

    # ── Internals ──

    async def _run(self, call_sid: str, label: str, handler, *args) -> TurnResponse:
        try:
            async with self.store.hold(call_sid):
                session = self.store.get_or_create(call_sid)
                return await handler(session, *args)
        except Exception:
            logger.exception("%s failed for call %s", label, call_sid)
            self._abandon(call_sid)
            return error_response()

    def _apply(self, session: CallSession, decision: Decision) -> TurnResponse:
        if session.state in (CallState.INITIATED, CallState.TRANSFERRING) and decision.next_state in (
            CallState.BOOKED, CallState.EXHAUSTED,
        ):
            # Speech can reach a session that never saw the greeting (e.g. after eviction)
            session.transition(CallState.GATHERING)

        if decision.count_turn:
            session.turn_count += 1
            session.silent_turns = 0
        elif decision.count_silence:
            session.silent_turns += 1
        if not session.customer_name and decision.customer_name:
            session.customer_name = decision.customer_name
        if not session.preferred_time and decision.preferred_time:
            session.preferred_time = decision.preferred_time
        if decision.mark_booked and session.customer_name and session.preferred_time:
            session.booked = True
            logger.info(
                "Call %s booked: name=%r preferred_time=%r",
                session.call_sid, session.customer_name, session.preferred_time,
            )

        session.transition(decision.next_state)
        for line in decision.speak:
            session.log_line("agent", line)

        if session.state.is_terminal:
            self.store.remove(session.call_sid)
            self._log_transcript(session, final_state=session.state.value)

        return decision.response()

    def _abandon(self, call_sid: str) -> None:
        try:
            session = self.store.remove(call_sid)
        except Exception:
            logger.exception("could not drop session for call %s", call_sid)
            return
        if session is not None:
            self._log_transcript(session, final_state="error")

    def _log_transcript(self, session: CallSession, final_state: str) -> None:
        dump = to_timestamped_dump(
            session.transcript_log,
            call_sid=session.call_sid,
            final_state=final_state,
            duration=self.store.now() - session.start_time,
            fields={
                "name": session.customer_name,
                "preferred_time": session.preferred_time,
                "booked": session.booked,
                "turns": session.turn_count,
                "transfer_status": session.transfer_status,
            },
        )
        for line in chunk_transcript_dump(dump):
            logger.info(line)
        logger.debug("Transcript for %s:\n%s", session.call_sid, to_plain_text(session.transcript_log))
