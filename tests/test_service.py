"""Tests for CommentService and ChatApiClient over a mocked HTTP transport."""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from chatsync.api.client import ChatApiClient
from chatsync.comments.schemas import Comment, CommentStatus
from chatsync.comments.service import CommentService
from chatsync.errors import ApiError

ME = "me@example.com"


def ok(results):
    return httpx.Response(200, json={"status": 200, "results": results})


def make_service(handler):
    api = ChatApiClient("https://api.test", "app", ME, "tok", transport=httpx.MockTransport(handler))
    return CommentService(api, ME, username="Me")


def form(request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestSendComment:
    """Tests for the optimistic send flow."""

    def test_success_confirms_comment(self, store):
        """A successful post reconciles the pending comment and marks it sent."""
        requests = []

        def handler(request):
            requests.append(request)
            body = form(request)
            return ok({"comment": {"id": 42, "unique_temp_id": body["unique_temp_id"], "message": body["comment"]}})

        comment = make_service(handler).send_comment(store, "hello", unique_id="tmp-1")

        assert comment.id == 42
        assert comment.status is CommentStatus.SENT
        assert len(store) == 1
        assert store.get_by_id(42) is comment
        assert store.last_comment_id == 42

        request = requests[0]
        assert request.url.path == "/api/v2/sdk/post_comment"
        assert request.headers["QISCUS-SDK-USER-ID"] == ME
        assert form(request)["topic_id"] == "7"

    def test_transport_failure_marks_failed(self, store):
        """A transport error leaves the comment failed and re-raises."""

        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(httpx.ConnectError):
            make_service(handler).send_comment(store, "hello", unique_id="tmp-1")
        assert store.get("tmp-1").status is CommentStatus.FAILED

    def test_api_error_marks_failed(self, store):
        """A non-200 envelope leaves the comment failed."""

        def handler(request):
            return httpx.Response(200, json={"status": 400, "error": "bad"})

        with pytest.raises(ApiError) as exc_info:
            make_service(handler).send_comment(store, "hello", unique_id="tmp-1")
        assert exc_info.value.status_code == 400
        assert store.get("tmp-1").is_failed

    def test_http_status_error_marks_failed(self, store):
        """An HTTP error status leaves the comment failed."""

        def handler(request):
            return httpx.Response(500, json={})

        with pytest.raises(httpx.HTTPStatusError):
            make_service(handler).send_comment(store, "hello", unique_id="tmp-1")
        assert store.get("tmp-1").is_failed

    def test_receipt_before_confirmation_is_kept(self, store):
        """A read receipt arriving before the HTTP response is not undone."""

        def handler(request):
            store.update_comment("tmp-1", {"id": 42})
            store.apply_receipt("comment_read", "alice", {"id": 42}, ME)
            return ok({"comment": {"id": 42, "unique_temp_id": "tmp-1", "message": "hello"}})

        comment = make_service(handler).send_comment(store, "hello", unique_id="tmp-1")
        assert comment.status is CommentStatus.READ

    def test_reply_quotes_original(self, store):
        """A reply carries the quoted text and sender."""
        store.receive_comment(
            Comment.from_payload({"id": 5, "unique_id": "orig", "room_id": 7, "message": "a<b", "username": "Alice"})
        )
        sent = []

        def handler(request):
            sent.append(form(request))
            return ok({"comment": {"id": 6, "unique_temp_id": "r1", "message": "yes"}})

        make_service(handler).send_comment(
            store, "yes", comment_type="reply", payload={"replied_comment_id": 5}, unique_id="r1"
        )
        payload = json.loads(sent[0]["payload"])
        assert payload["replied_comment_message"] == "a<b"
        assert payload["replied_comment_sender_username"] == "Alice"


class TestResend:
    """Tests for resending failed comments."""

    def test_resend_replaces_failed_entry(self, store):
        """The failed comment is removed and a new one is sent."""
        calls = []

        def handler(request):
            calls.append(form(request))
            if len(calls) == 1:
                raise httpx.ConnectError("down", request=request)
            return ok({"comment": {"id": 43, "unique_temp_id": calls[-1]["unique_temp_id"], "message": "a<b"}})

        service = make_service(handler)
        with pytest.raises(httpx.ConnectError):
            service.send_comment(store, "a<b", unique_id="tmp-1")
        failed = store.get("tmp-1")

        resent = service.resend_comment(store, failed)

        assert "tmp-1" not in store
        assert resent.unique_id != "tmp-1"
        assert resent.is_sent
        assert calls[1]["comment"] == "a<b"
        assert len(store) == 1

    def test_resend_requires_failed(self, store):
        """Only failed comments can be resent."""
        service = make_service(lambda request: ok({}))
        comment = store.receive_comment(Comment.from_payload({"unique_id": "u", "room_id": 7}))
        with pytest.raises(ValueError):
            service.resend_comment(store, comment)


class TestLoadAndRead:
    """Tests for loading history and marking rooms read."""

    def test_load_comments_oldest_first(self, store):
        """Loaded comments are received oldest first."""

        def handler(request):
            assert request.url.params["topic_id"] == "7"
            return ok({"comments": [{"id": 3, "unique_id": "c"}, {"id": 2, "unique_id": "b"}, {"id": 1, "unique_id": "a"}]})

        received = make_service(handler).load_comments(store)
        assert [c.unique_id for c in received] == ["a", "b", "c"]
        assert [c.unique_id for c in store] == ["a", "b", "c"]
        assert store.last_comment_id == 3

    def test_mark_room_read(self, store):
        """The last comment id is reported and unread is reset."""
        requests = []

        def handler(request):
            requests.append(form(request))
            return ok({})

        store.last_comment_id = 9
        store.unread_count = 4
        make_service(handler).mark_room_read(store)
        assert requests[0]["last_comment_read_id"] == "9"
        assert store.unread_count == 0
