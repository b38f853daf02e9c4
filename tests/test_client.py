"""Tests for ChatClient wiring with an in-memory broker and mocked HTTP."""
import json

import httpx
import pytest

from chatsync.client import ChatClient
from chatsync.comments.schemas import CommentStatus
from chatsync.config import AppSettings
from chatsync.errors import ConfigError
from chatsync.realtime.memory_broker import InMemoryBroker

ME = "me@example.com"


def post_ok(request):
    body = dict(httpx.QueryParams(request.content.decode()))
    return httpx.Response(
        200,
        json={"status": 200, "results": {"comment": {"id": 42, "unique_temp_id": body["unique_temp_id"], "message": body["comment"]}}},
    )


@pytest.fixture
def memory_broker():
    return InMemoryBroker()


@pytest.fixture
def client(settings, memory_broker):
    c = ChatClient(ME, settings=settings, broker=memory_broker, transport=httpx.MockTransport(post_ok))
    yield c
    c.close()


class TestChatClient:
    """Tests for the assembled client."""

    def test_token_required(self, memory_broker):
        """A client without any token cannot be built."""
        with pytest.raises(ConfigError):
            ChatClient(ME, settings=AppSettings(), broker=memory_broker)

    def test_will_and_user_channel(self, client, memory_broker):
        """Construction registers the offline will and the user channels."""
        assert memory_broker.will == (f"u/{ME}/s", "0", True)
        assert {"tok-123/c", "tok-123/n"} <= memory_broker.subscriptions

    def test_connect_announces_online(self, client, memory_broker):
        """Connecting publishes retained online presence."""
        client.connect()
        topic, payload, retain = memory_broker.published[0]
        assert topic == f"u/{ME}/s"
        assert payload.startswith("1:")
        assert retain is True

    def test_close_announces_offline(self, settings, memory_broker):
        """close() publishes offline presence and disconnects."""
        c = ChatClient(ME, settings=settings, broker=memory_broker, transport=httpx.MockTransport(post_ok))
        c.connect()
        c.close()
        assert memory_broker.published[-1][1].startswith("0:")
        assert not memory_broker.connected

    def test_open_room_and_send(self, client, memory_broker):
        """An opened room receives sent comments and their receipts."""
        client.connect()
        store = client.open_room({"id": 7, "room_name": "general"})
        assert "r/7/7/+/r" in memory_broker.subscriptions

        comment = client.send_comment(7, "hello")
        assert comment.status is CommentStatus.SENT
        assert store.get_by_id(42) is comment

        memory_broker.deliver("r/7/7/alice/r", json.dumps({"id": 42}))
        assert comment.status is CommentStatus.READ

    def test_send_to_unopened_room(self, client):
        """Sending needs an open room."""
        with pytest.raises(KeyError):
            client.send_comment(99, "hello")

    def test_close_room(self, client, memory_broker):
        """Closing a room drops its subscriptions and store."""
        client.open_room(7)
        client.close_room(7)
        assert "r/7/7/+/t" not in memory_broker.subscriptions
        assert client.realtime.get_room(7) is None
