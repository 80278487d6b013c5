import pytest
from unittest.mock import AsyncMock

from frontdesk.controller import CallController
from frontdesk.extraction import ExtractionResult
from frontdesk.session import CallSession
from frontdesk.session_store import SessionStore


@pytest.fixture
def session():
    return CallSession(call_sid="CA00000000000000000000000000000001")


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def extractor():
    fake = AsyncMock()
    fake.extract.return_value = ExtractionResult(utterance="Okay.")
    return fake


@pytest.fixture
def controller(store, extractor):
    return CallController(store=store, extractor=extractor, turn_budget=6)
