"""Tests for request context and log processors."""

from langplayer.core.context import (
    RequestContext,
    clear_context,
    get_context,
    get_request_id,
    get_user_id,
    set_request_id,
    set_trace_id,
    set_user_id,
)
from langplayer.core.logging import add_context_processor, filter_sensitive_data


class TestRequestContext:
    """Tests for context variables."""

    def test_get_context_skips_empty_values(self) -> None:
        clear_context()
        set_request_id("req-1")

        assert get_context() == {"request_id": "req-1"}

        set_user_id("u1")
        set_trace_id("trace-9")
        assert get_context() == {
            "request_id": "req-1",
            "user_id": "u1",
            "trace_id": "trace-9",
        }
        clear_context()
        assert get_context() == {}

    def test_generates_request_id(self) -> None:
        rid = set_request_id(None)
        assert rid
        assert get_request_id() == rid
        clear_context()

    def test_scoped_context_restores_previous_values(self) -> None:
        clear_context()
        set_request_id("outer")
        set_user_id("outer-user")

        with RequestContext(request_id="job-1", user_id="u2"):
            assert get_request_id() == "job-1"
            assert get_user_id() == "u2"

        assert get_request_id() == "outer"
        assert get_user_id() == "outer-user"
        clear_context()

    def test_scoped_context_generates_missing_request_id(self) -> None:
        clear_context()
        with RequestContext(user_id="u3"):
            assert get_request_id()
        assert get_request_id() == ""


class TestLogProcessors:
    """Tests for structlog processors."""

    def test_context_is_added_without_overriding(self) -> None:
        clear_context()
        set_request_id("req-7")
        set_user_id("u7")

        event = add_context_processor(None, "info", {"event": "x", "user_id": "explicit"})

        assert event["request_id"] == "req-7"
        assert event["user_id"] == "explicit"
        clear_context()

    def test_sensitive_values_are_masked(self) -> None:
        event = filter_sensitive_data(
            None,
            "info",
            {
                "event": "x",
                "authorization": "Bearer abcdefghijkl",
                "auth_secret_key": "abc",
                "headers": {"access_token": "abcdefgh"},
                "file_id": "abcdefgh",
            },
        )

        assert event["authorization"].startswith("Be")
        assert "abcdefghijkl" not in event["authorization"]
        assert event["auth_secret_key"] == "***"
        assert event["headers"]["access_token"] == "ab****gh"
        assert event["file_id"] == "abcdefgh"
