"""Tests for the retrying HTTP transport."""

import httpx
import pytest

from notesync.client.retry import parse_retry_after, retry_with_backoff
from notesync.client.transport import RetryingTransport, error_for_response
from notesync.core.errors import (
    APIError,
    AuthenticationError,
    NotFoundError,
    QuotaExceededError,
    TokenRefreshError,
    TransportError,
)


class FakeTokenSource:
    """Token source that hands out numbered tokens."""

    def __init__(self, refresh_fails: bool = False) -> None:
        self.generation = 1
        self.refresh_calls = 0
        self.disconnected = False
        self.refresh_fails = refresh_fails

    def get_access_token(self) -> str:
        return f"token-{self.generation}"

    def refresh_access_token(self) -> str:
        self.refresh_calls += 1
        if self.refresh_fails:
            raise TokenRefreshError("refresh token revoked")
        self.generation += 1
        return self.get_access_token()

    def disconnect(self) -> None:
        self.disconnected = True


@pytest.fixture
def sleeps() -> list[float]:
    """Recorded sleep durations."""
    return []


def make_transport(
    sleeps: list[float], tokens: FakeTokenSource | None = None, **kwargs: object
) -> RetryingTransport:
    return RetryingTransport(
        "http://test",
        tokens or FakeTokenSource(),
        sleep=sleeps.append,
        **kwargs,  # type: ignore[arg-type]
    )


class TestRetries:
    """Tests for the retry schedule."""

    def test_success_passes_through(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """Should return a 2xx response and send the bearer token."""
        httpx_mock.add_response(url="http://test/me", json={"id": "1"})

        with make_transport(sleeps) as transport:
            response = transport.get("/me")

        assert response.json() == {"id": "1"}
        assert httpx_mock.get_request().headers["Authorization"] == "Bearer token-1"
        assert sleeps == []

    def test_retry_bound_on_503(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """Four 503s should mean four attempts, three waits, then TransportError."""
        for _ in range(4):
            httpx_mock.add_response(url="http://test/items", status_code=503)

        with make_transport(sleeps) as transport:
            with pytest.raises(TransportError) as exc_info:
                transport.get("/items")

        assert exc_info.value.status_code == 503
        assert len(httpx_mock.get_requests()) == 4
        assert sleeps == [1.0, 3.0, 5.0]

    def test_recovers_after_transient_failure(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """A retryable failure followed by success should return the success."""
        httpx_mock.add_response(url="http://test/items", status_code=502)
        httpx_mock.add_response(url="http://test/items", json={"ok": True})

        with make_transport(sleeps) as transport:
            assert transport.get("/items").json() == {"ok": True}
        assert sleeps == [1.0]

    def test_retry_after_overrides_schedule(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """A 429 Retry-After should replace the scheduled delay."""
        httpx_mock.add_response(url="http://test/items", status_code=429, headers={"Retry-After": "7"})
        httpx_mock.add_response(url="http://test/items", json={})

        with make_transport(sleeps) as transport:
            transport.get("/items")

        assert sleeps == [7.0]

    def test_network_error_retried(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """Connection failures should be retried and finally mapped to TransportError."""
        for _ in range(4):
            httpx_mock.add_exception(httpx.ConnectError("refused"))

        with make_transport(sleeps) as transport:
            with pytest.raises(TransportError):
                transport.get("/items")

        assert len(sleeps) == 3

    def test_non_retryable_status_fails_fast(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """A 400 should raise APIError without retrying."""
        httpx_mock.add_response(
            url="http://test/items", status_code=400, json={"error": {"message": "bad name"}}
        )

        with make_transport(sleeps) as transport:
            with pytest.raises(APIError, match="bad name") as exc_info:
                transport.get("/items")

        assert type(exc_info.value) is APIError
        assert sleeps == []

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [(404, NotFoundError), (507, QuotaExceededError)],
    )
    def test_status_mapping(self, httpx_mock, sleeps, status, error_type) -> None:  # type: ignore[no-untyped-def]
        """404 and 507 should map to their own errors without retry."""
        httpx_mock.add_response(url="http://test/items", status_code=status)

        with make_transport(sleeps) as transport:
            with pytest.raises(error_type):
                transport.get("/items")
        assert sleeps == []


class TestAuthHandling:
    """Tests for refresh-on-401."""

    def test_refreshes_once_on_401(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """The first 401 should refresh and retry with the new token."""
        tokens = FakeTokenSource()
        httpx_mock.add_response(url="http://test/me", status_code=401)
        httpx_mock.add_response(url="http://test/me", json={"id": "1"})

        with make_transport(sleeps, tokens) as transport:
            transport.get("/me")

        requests = httpx_mock.get_requests()
        assert tokens.refresh_calls == 1
        assert requests[1].headers["Authorization"] == "Bearer token-2"

    def test_refresh_failure_disconnects(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """A failed refresh should disconnect and raise AuthenticationError."""
        tokens = FakeTokenSource(refresh_fails=True)
        httpx_mock.add_response(url="http://test/me", status_code=401)

        with make_transport(sleeps, tokens) as transport:
            with pytest.raises(AuthenticationError):
                transport.get("/me")

        assert tokens.disconnected is True
        assert len(httpx_mock.get_requests()) == 1

    def test_persistent_401_raises_authentication_error(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """401 after the one refresh should end in AuthenticationError."""
        tokens = FakeTokenSource()
        for _ in range(4):
            httpx_mock.add_response(url="http://test/me", status_code=401)

        with make_transport(sleeps, tokens) as transport:
            with pytest.raises(AuthenticationError):
                transport.get("/me")

        assert tokens.refresh_calls == 1

    def test_token_as_query_parameter(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """token_param should send the token in the query string."""
        httpx_mock.add_response(url="http://test/api/quota?access_token=token-1", json={})

        with make_transport(sleeps, token_param="access_token") as transport:
            transport.get("/api/quota")

        assert "Authorization" not in httpx_mock.get_request().headers

    def test_skip_auth_for_absolute_urls(self, httpx_mock, sleeps) -> None:  # type: ignore[no-untyped-def]
        """Pre-authenticated URLs should be fetched as-is without a token."""
        httpx_mock.add_response(url="https://download.example/file", content=b"abc")

        with make_transport(sleeps) as transport:
            response = transport.get("https://download.example/file", skip_auth=True)

        assert response.content == b"abc"
        assert "Authorization" not in httpx_mock.get_request().headers


class TestHelpers:
    """Tests for retry helpers."""

    def test_parse_retry_after_seconds(self) -> None:
        """Delta-seconds form should parse."""
        assert parse_retry_after("12") == 12.0
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None

    def test_error_for_response_extracts_message(self) -> None:
        """Provider error bodies should be surfaced in the message."""
        request = httpx.Request("GET", "http://test/x")
        response = httpx.Response(409, json={"error_description": "exists"}, request=request)
        error = error_for_response(response)
        assert "exists" in str(error)
        assert error.status_code == 409

    def test_retry_with_backoff_gives_up(self) -> None:
        """Should re-raise after max retries."""
        calls = []
        sleeps: list[float] = []

        def flaky() -> None:
            calls.append(1)
            raise httpx.ConnectError("down")

        with pytest.raises(httpx.ConnectError):
            retry_with_backoff(flaky, sleep=sleeps.append)
        assert len(calls) == 4
        assert sleeps == [1.0, 3.0, 5.0]
