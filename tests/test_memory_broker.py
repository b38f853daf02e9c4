"""Tests for the in-memory loopback broker."""
import pytest

from chatsync.realtime.memory_broker import InMemoryBroker


@pytest.fixture
def received(broker):
    messages = []
    broker.on_message(lambda topic, payload: messages.append((topic, payload)))
    return messages


class TestInMemoryBroker:
    """Tests for subscribe/publish semantics."""

    def test_wildcard_delivery(self, broker, received):
        """'+' matches one topic level."""
        broker.subscribe("r/7/7/+/t")
        assert broker.deliver("r/7/7/alice/t", "1") is True
        assert broker.deliver("r/8/8/alice/t", "1") is False
        assert received == [("r/7/7/alice/t", "1")]

    def test_publish_loops_back(self, broker, received):
        """Published messages reach matching subscriptions."""
        broker.subscribe("u/+/s")
        broker.publish("u/me/s", "1:1")
        assert received == [("u/me/s", "1:1")]
        assert broker.published == [("u/me/s", "1:1", False)]

    def test_retained_delivered_on_subscribe(self, broker, received):
        """A late subscriber receives the retained message."""
        broker.publish("u/me/s", "1:1", retain=True)
        broker.subscribe("u/me/s")
        assert received == [("u/me/s", "1:1")]

    def test_empty_retained_clears(self, broker):
        """An empty retained payload removes the retained message."""
        broker.publish("u/me/s", "1:1", retain=True)
        broker.publish("u/me/s", "", retain=True)
        assert "u/me/s" not in broker.retained

    def test_publish_requires_connection(self):
        """Publishing while disconnected raises ConnectionError."""
        b = InMemoryBroker()
        with pytest.raises(ConnectionError):
            b.publish("x/c", "{}")

    def test_unsubscribe(self, broker, received):
        """Unsubscribed topics are not delivered."""
        broker.subscribe("tok/c")
        broker.unsubscribe("tok/c")
        assert broker.deliver("tok/c", "{}") is False

    def test_drop_connection_publishes_will(self, broker):
        """An unclean drop publishes and retains the will."""
        lost = []
        broker.on_connection_lost(lambda: lost.append(True))
        broker.set_will("u/me/s", "0", retain=True)
        broker.drop_connection()
        assert broker.retained["u/me/s"] == "0"
        assert lost == [True]
        assert not broker.connected

    def test_clean_disconnect_skips_will(self, broker):
        """A clean disconnect does not publish the will."""
        broker.set_will("u/me/s", "0")
        broker.disconnect()
        assert broker.published == []
        assert not broker.connected
