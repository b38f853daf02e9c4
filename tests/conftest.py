"""Shared fixtures for chatsync tests."""
import pytest

from chatsync.comments.store import RoomCommentStore
from chatsync.config import AppSettings, reset_config
from chatsync.realtime.dispatcher import RealtimeDispatcher
from chatsync.realtime.memory_broker import InMemoryBroker

ACTIVE_USER = "me@example.com"


@pytest.fixture(autouse=True)
def _fresh_config():
    """Never let a cached AppSettings leak between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def settings():
    return AppSettings(secrets={"user_token": "tok-123"})


@pytest.fixture
def broker():
    """A connected in-memory broker."""
    b = InMemoryBroker()
    b.connect()
    return b


@pytest.fixture
def store():
    return RoomCommentStore(7, name="general")


@pytest.fixture
def dispatcher(broker, store):
    """Dispatcher for ACTIVE_USER with room 7 registered."""
    d = RealtimeDispatcher(broker, user_id=ACTIVE_USER)
    d.register_room(store)
    return d


@pytest.fixture
def notifications(dispatcher):
    """Every notification the dispatcher emits, in order."""
    received = []
    dispatcher.on("*", received.append)
    return received
