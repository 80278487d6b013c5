import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from frontdesk import prompts
from frontdesk.controller import CallController
from frontdesk.extraction import FALLBACK_RESULT, ExtractionResult
from frontdesk.policy import NextAction
from frontdesk.session_store import SessionStore
from frontdesk.states import CallState

CALL = "CA00000000000000000000000000000001"
OFFICE = "+15550001111"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def reply(utterance="Okay.", name=None, preferred_time=None):
    return ExtractionResult(utterance=utterance, customer_name=name, preferred_time=preferred_time)


def assert_well_formed(response):
    assert response.speak
    assert all(isinstance(line, str) and line for line in response.speak)
    assert response.next_action in set(NextAction)


@pytest.fixture
def transfer_controller(store, extractor):
    return CallController(store=store, extractor=extractor, turn_budget=6, transfer_to=OFFICE)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_a_one_utterance_books_and_hangs_up(self, controller, store, extractor):
        extractor.extract.return_value = reply(
            "Great, Dana, Tuesday at 3pm works", "Dana", "Tuesday at 3pm",
        )
        first = await controller.start_call(CALL)
        assert first.next_action == NextAction.LISTEN
        session = store.get(CALL)

        response = await controller.handle_speech(CALL, "My name is Dana and I'd like Tuesday at 3pm")

        assert response.next_action == NextAction.HANGUP
        assert response.speak == ["Great, Dana, Tuesday at 3pm works", prompts.BOOKED]
        assert session.booked is True
        assert session.customer_name == "Dana"
        assert session.preferred_time == "Tuesday at 3pm"
        assert session.state == CallState.BOOKED
        assert session.turn_count == 1

    @pytest.mark.asyncio
    async def test_b_name_only_asks_for_time(self, controller, store, extractor):
        extractor.extract.return_value = reply("Thanks, Dana.", "Dana", None)
        await controller.start_call(CALL)

        response = await controller.handle_speech(CALL, "Dana")

        session = store.get(CALL)
        assert session.customer_name == "Dana"
        assert session.preferred_time is None
        assert session.booked is False
        assert response.next_action == NextAction.LISTEN
        assert response.speak[-1] == prompts.ASK_TIME

    @pytest.mark.asyncio
    async def test_c_budget_exhausted_hangs_up(self, controller, store, extractor):
        extractor.extract.return_value = reply("Sorry, who is this?", None, None)
        await controller.start_call(CALL)
        session = store.get(CALL)

        for _ in range(6):
            response = await controller.handle_speech(CALL, "uh, hello")
            assert response.next_action == NextAction.LISTEN
        assert session.turn_count == 6
        extractor.extract.reset_mock()

        response = await controller.handle_speech(CALL, "my name is Dana")

        assert response.next_action == NextAction.HANGUP
        assert response.speak == [prompts.EXHAUSTED]
        extractor.extract.assert_not_called()
        assert session.state == CallState.EXHAUSTED
        assert CALL not in store

    @pytest.mark.asyncio
    async def test_c_partial_fields_do_not_prevent_exhaustion(self, controller, store, extractor):
        await controller.start_call(CALL)
        session = store.get(CALL)
        session.customer_name = "Dana"
        session.turn_count = 6

        response = await controller.handle_speech(CALL, "maybe Friday")

        assert response.next_action == NextAction.HANGUP
        assert session.preferred_time is None
        extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_d_empty_speech_asks_to_repeat(self, controller, store, extractor):
        await controller.start_call(CALL)
        session = store.get(CALL)

        response = await controller.handle_speech(CALL, "")

        assert session.turn_count == 0
        assert response.next_action == NextAction.LISTEN
        assert response.speak[0] == prompts.DIDNT_CATCH
        extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_d_missing_speech_field_is_empty(self, controller, store, extractor):
        await controller.start_call(CALL)
        response = await controller.handle_speech(CALL, None)
        assert response.speak[0] == prompts.DIDNT_CATCH
        assert store.get(CALL).turn_count == 0

    @pytest.mark.asyncio
    async def test_e_answered_transfer_hangs_up(self, transfer_controller, store, extractor):
        first = await transfer_controller.start_call(CALL)
        assert first.next_action == NextAction.TRANSFER
        assert first.transfer_to == OFFICE
        assert first.ring_timeout == 10
        assert store.get(CALL).transfer_attempted is True

        response = await transfer_controller.after_transfer(CALL, "completed")

        assert response.next_action == NextAction.HANGUP
        assert prompts.ASK_BOTH not in response.speak
        extractor.extract.assert_not_called()
        assert CALL not in store

    @pytest.mark.asyncio
    async def test_f_no_answer_enters_dialogue(self, transfer_controller, store):
        await transfer_controller.start_call(CALL)

        response = await transfer_controller.after_transfer(CALL, "no-answer")

        assert response.next_action == NextAction.LISTEN
        assert response.speak[0] == prompts.TEAM_BUSY
        session = store.get(CALL)
        assert session.state == CallState.GATHERING
        assert session.transfer_status == "no-answer"


class TestFieldCapture:
    @pytest.mark.asyncio
    async def test_first_value_wins_across_turns(self, controller, store, extractor):
        await controller.start_call(CALL)
        session = store.get(CALL)

        extractor.extract.return_value = reply("Hi Dana.", "Dana")
        await controller.handle_speech(CALL, "Dana")
        extractor.extract.return_value = reply("Hi Alex.", "Alex")
        await controller.handle_speech(CALL, "Actually, Alex")

        assert session.customer_name == "Dana"
        assert session.turn_count == 2

    @pytest.mark.asyncio
    async def test_snapshot_passed_to_extractor(self, controller, extractor):
        await controller.start_call(CALL)
        extractor.extract.return_value = reply("Hi Dana.", "Dana")
        await controller.handle_speech(CALL, "Dana")
        await controller.handle_speech(CALL, "next week")

        utterance, snapshot = extractor.extract.call_args.args
        assert utterance == "next week"
        assert snapshot == {"name": "Dana", "preferred_time": None}

    @pytest.mark.asyncio
    async def test_fallback_counts_turn_and_keeps_listening(self, controller, store, extractor):
        extractor.extract.return_value = FALLBACK_RESULT
        await controller.start_call(CALL)

        response = await controller.handle_speech(CALL, "garbled")

        assert response.next_action == NextAction.LISTEN
        assert response.speak[0] == FALLBACK_RESULT.utterance
        assert store.get(CALL).turn_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_greeting_moves_to_gathering(self, controller, store):
        response = await controller.start_call(CALL)
        assert response.speak == [prompts.GREETING, prompts.ASK_BOTH]
        assert store.get(CALL).state == CallState.GATHERING

    @pytest.mark.asyncio
    async def test_reprompt_asks_again(self, controller, store):
        await controller.start_call(CALL)
        response = await controller.reprompt(CALL)
        assert response.speak == [prompts.ASK_BOTH]
        assert response.next_action == NextAction.LISTEN

    @pytest.mark.asyncio
    async def test_speech_for_unknown_call_still_books(self, controller, store, extractor):
        extractor.extract.return_value = reply("Great.", "Dana", "Monday")
        response = await controller.handle_speech("CA-unknown", "Dana, Monday")
        assert response.next_action == NextAction.HANGUP
        assert "CA-unknown" not in store

    @pytest.mark.asyncio
    async def test_end_call_drops_session(self, controller, store):
        await controller.start_call(CALL)
        await controller.end_call(CALL, reason="completed")
        assert CALL not in store

    @pytest.mark.asyncio
    async def test_end_call_for_unknown_call_is_noop(self, controller, store):
        await controller.end_call("CA-unknown")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_transcript_dump_logged_on_booking(self, controller, extractor, caplog):
        extractor.extract.return_value = reply("Great.", "Dana", "Monday")
        await controller.start_call(CALL)
        with caplog.at_level(logging.INFO, logger="frontdesk.controller"):
            await controller.handle_speech(CALL, "Dana, Monday")
        dumps = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP|")]
        assert dumps
        assert '"final_state": "booked"' in dumps[0]
        assert "Dana, Monday" in dumps[0]

    @pytest.mark.asyncio
    async def test_transcript_duration_uses_store_clock(self, extractor, caplog):
        clock = FakeClock(100.0)
        controller = CallController(store=SessionStore(clock=clock), extractor=extractor)
        await controller.start_call(CALL)
        clock.now = 142.5
        with caplog.at_level(logging.INFO, logger="frontdesk.controller"):
            await controller.end_call(CALL, reason="completed")
        dumps = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP|")]
        assert '"duration_s": 42.5' in dumps[0]

    @pytest.mark.asyncio
    async def test_late_initial_webhook_greets_instead_of_transferring(self, transfer_controller, store):
        await transfer_controller.reprompt(CALL)
        assert store.get(CALL).state == CallState.GATHERING

        response = await transfer_controller.start_call(CALL)

        assert response.next_action == NextAction.LISTEN
        assert response.speak[0] == prompts.GREETING
        assert store.get(CALL).state == CallState.GATHERING


class TestSilence:
    @pytest.mark.asyncio
    async def test_silent_line_is_hung_up(self, controller, store):
        await controller.start_call(CALL)
        actions = []
        for i in range(50):
            if i % 2:
                response = await controller.handle_speech(CALL, "")
            else:
                response = await controller.reprompt(CALL)
            actions.append(response.next_action)
            if response.next_action == NextAction.HANGUP:
                break

        assert actions[-1] == NextAction.HANGUP
        assert response.speak == [prompts.EXHAUSTED]
        assert len(actions) == 7
        assert CALL not in store

    @pytest.mark.asyncio
    async def test_silence_does_not_use_turn_budget(self, controller, store):
        await controller.start_call(CALL)
        for _ in range(5):
            await controller.reprompt(CALL)
        session = store.get(CALL)
        assert session.silent_turns == 5
        assert session.turn_count == 0

    @pytest.mark.asyncio
    async def test_speech_resets_silence(self, controller, store):
        await controller.start_call(CALL)
        for _ in range(5):
            await controller.reprompt(CALL)
        await controller.handle_speech(CALL, "Dana")
        session = store.get(CALL)
        assert session.silent_turns == 0

        for _ in range(5):
            response = await controller.reprompt(CALL)
        assert response.next_action == NextAction.LISTEN
        assert session.turn_count == 1


class TestAlwaysResponds:
    @pytest.mark.asyncio
    async def test_extractor_crash_becomes_graceful_hangup(self, controller, store, extractor):
        extractor.extract.side_effect = RuntimeError("boom")
        await controller.start_call(CALL)

        response = await controller.handle_speech(CALL, "Dana")

        assert response.next_action == NextAction.HANGUP
        assert response.speak == [prompts.INTERNAL_ERROR]
        assert CALL not in store

    @pytest.mark.asyncio
    async def test_store_failure_becomes_graceful_hangup(self, extractor):
        broken = MagicMock(spec=SessionStore)
        broken.hold.side_effect = RuntimeError("store down")
        broken.remove.side_effect = RuntimeError("store down")
        controller = CallController(store=broken, extractor=extractor)

        for call in (
            controller.start_call(CALL),
            controller.after_transfer(CALL, "busy"),
            controller.handle_speech(CALL, "Dana"),
            controller.reprompt(CALL),
        ):
            response = await call
            assert_well_formed(response)
            assert response.next_action == NextAction.HANGUP

    @pytest.mark.asyncio
    @pytest.mark.parametrize("speech", ["", "Dana", "Tuesday", "Dana on Tuesday", "   "])
    async def test_every_turn_is_well_formed(self, store, speech):
        extractor = AsyncMock()
        extractor.extract.return_value = reply("Sure.", "Dana" if "Dana" in speech else None,
                                               "Tuesday" if "Tuesday" in speech else None)
        controller = CallController(store=store, extractor=extractor, turn_budget=2)
        assert_well_formed(await controller.start_call(CALL))
        for _ in range(4):
            assert_well_formed(await controller.handle_speech(CALL, speech))
            assert_well_formed(await controller.reprompt(CALL))

    @pytest.mark.asyncio
    async def test_transfer_outcome_response_is_well_formed(self, transfer_controller):
        assert_well_formed(await transfer_controller.start_call(CALL))
        assert_well_formed(await transfer_controller.after_transfer(CALL, "completed"))
