"""Unit tests for exception hierarchy."""

from sentra.core.exceptions import (
    AuthenticationError,
    ChatStateError,
    ChatSyncError,
    InvalidArgumentError,
    LLMConnectionError,
    LLMException,
    LLMResponseError,
    LLMTimeoutError,
    NotFoundError,
    NotFriendError,
    PermissionDeniedError,
    RewindError,
    SentraException,
)


def test_sentra_exception_base():
    """Test base exception with context."""
    exc = SentraException("test error", context={"key": "value"})
    assert exc.message == "test error"
    assert exc.context == {"key": "value"}
    assert "key=value" in str(exc)
    assert exc.code == "internal"
    assert exc.status_code == 500


def test_llm_connection_error():
    original = ConnectionError("Network unreachable")
    exc = LLMConnectionError("https://llm.test", original)

    assert exc.url == "https://llm.test"
    assert exc.original_error is original
    assert "llm.test" in str(exc)


def test_llm_timeout_error():
    exc = LLMTimeoutError(30.0, "https://llm.test")

    assert exc.timeout_seconds == 30.0
    assert "30" in str(exc)


def test_llm_response_error_truncates_body():
    exc = LLMResponseError(502, "x" * 500, "https://llm.test")

    assert exc.upstream_status == 502
    assert exc.status_code == 500
    assert len(exc.message) < 300


def test_request_categories():
    """Each category maps to a callable code and an HTTP status."""
    assert (AuthenticationError().code, AuthenticationError().status_code) == ("unauthenticated", 401)
    assert InvalidArgumentError("bad", field="messages").status_code == 400
    assert InvalidArgumentError("bad", field="messages").field == "messages"
    assert NotFoundError("Character", "char_1").status_code == 404
    assert str(NotFoundError("Character", "char_1")) == "Character char_1 not found"
    assert PermissionDeniedError().status_code == 403


def test_not_friend_error():
    exc = NotFriendError("bob")

    assert isinstance(exc, PermissionDeniedError)
    assert exc.friend_id == "bob"
    assert exc.message == "Can only access memories from friends"


def test_rewind_error_is_invalid_argument():
    exc = RewindError(1, "only user messages can be edited")

    assert isinstance(exc, InvalidArgumentError)
    assert exc.index == 1
    assert "index 1" in exc.message


def test_chat_state_error():
    exc = ChatStateError("rewind", "streaming")

    assert exc.message == "Cannot rewind while chat is streaming"
    assert exc.code == "failed-precondition"


def test_chat_sync_error_keeps_every_failure():
    failures = {"chats/c1": RuntimeError("a"), "users/u/chatHistory/c1": RuntimeError("b")}
    exc = ChatSyncError("c1", failures)

    assert exc.failures == failures
    assert "chats/c1=a" in str(exc)


def test_exception_inheritance():
    assert issubclass(LLMConnectionError, LLMException)
    assert issubclass(LLMException, SentraException)
    assert issubclass(ChatSyncError, SentraException)
    assert issubclass(NotFriendError, SentraException)
