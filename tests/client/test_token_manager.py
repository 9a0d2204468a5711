"""Tests for the OAuth token manager and encrypted token storage."""

import threading
import time
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from notesync.client.auth import REFRESH_MARGIN_MS, AuthState, TokenManager, TokenStore
from notesync.core.config import baidupan_oauth_config, onedrive_oauth_config
from notesync.core.crypto import generate_key
from notesync.core.errors import AuthorizationError, NotAuthenticatedError, TokenRefreshError
from notesync.core.models import TokenData

NOW = 1_700_000_000_000
ONEDRIVE_TOKEN_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/token"


class FakeFlow:
    """Authorization flow that answers the consent page programmatically."""

    def __init__(self, outcome: str = "approve") -> None:
        self.outcome = outcome
        self.calls: list[tuple[str, bool]] = []

    def run(self, authorize_url: str, redirect_uri: str, fresh_session: bool = False) -> str | None:
        self.calls.append((authorize_url, fresh_session))
        if self.outcome == "close":
            return None
        if self.outcome == "deny":
            return f"{redirect_uri}?error=access_denied&error_description=user+denied"
        state = parse_qs(urlsplit(authorize_url).query)["state"][0]
        return f"{redirect_uri}?code=auth-code&state={state}"


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def key() -> bytes:
    return generate_key()


@pytest.fixture
def token_store(tmp_path: Path, key: bytes) -> TokenStore:
    return TokenStore(tmp_path / "tokens", "acct-1", key)


def make_manager(store: TokenStore, flow: FakeFlow | None = None, now: int = NOW) -> TokenManager:
    return TokenManager(
        onedrive_oauth_config("client-id"),
        store,
        flow=flow,
        http=httpx.Client(),
        clock=lambda: now,
        sleep=lambda _: None,
    )


class TestTokenStore:
    """Tests for encrypted token persistence."""

    def test_save_and_load(self, token_store: TokenStore) -> None:
        """Saved tokens should load back and not be stored in plaintext."""
        tokens = TokenData("access-abc", "refresh-xyz", NOW)
        token_store.save(tokens)

        assert token_store.load() == tokens
        assert b"access-abc" not in token_store.path.read_bytes()

    def test_wrong_key_loads_none(self, tmp_path: Path, token_store: TokenStore) -> None:
        """A file encrypted under another key should read as not authenticated."""
        token_store.save(TokenData("a", "r", NOW))
        other = TokenStore(tmp_path / "tokens", "acct-1", generate_key())
        assert other.load() is None

    def test_corrupt_file_loads_none(self, token_store: TokenStore) -> None:
        """Garbage in the token file should read as not authenticated."""
        token_store.path.parent.mkdir(parents=True)
        token_store.path.write_bytes(b"!!not base64!!")
        assert token_store.load() is None

    def test_clear_is_idempotent(self, token_store: TokenStore) -> None:
        """Clearing twice should not fail."""
        token_store.save(TokenData("a", "r", NOW))
        token_store.clear()
        token_store.clear()
        assert not token_store.path.exists()


class TestGetAccessToken:
    """Tests for expiry handling."""

    def test_not_authenticated(self, token_store: TokenStore) -> None:
        """No stored tokens should raise NotAuthenticatedError."""
        manager = make_manager(token_store)
        assert manager.state is AuthState.UNAUTHENTICATED
        with pytest.raises(NotAuthenticatedError):
            manager.get_access_token()

    def test_valid_token_returned_without_refresh(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """A token outside the refresh margin should be used as-is."""
        token_store.save(TokenData("current", "refresh", NOW + REFRESH_MARGIN_MS + 1))
        manager = make_manager(token_store)

        assert manager.get_access_token() == "current"
        assert httpx_mock.get_requests() == []

    def test_refresh_at_margin_boundary(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """A token exactly at the margin should be refreshed first."""
        token_store.save(TokenData("old", "refresh-1", NOW + REFRESH_MARGIN_MS))
        httpx_mock.add_response(
            url=ONEDRIVE_TOKEN_URL,
            method="POST",
            json={"access_token": "new", "refresh_token": "refresh-2", "expires_in": 3600},
        )
        manager = make_manager(token_store)

        assert manager.get_access_token() == "new"
        sent = form(httpx_mock.get_request())
        assert sent["grant_type"] == "refresh_token"
        assert sent["refresh_token"] == "refresh-1"
        assert sent["client_id"] == "client-id"
        assert token_store.load() == TokenData("new", "refresh-2", NOW + 3600 * 1000)


class TestRefresh:
    """Tests for refresh_access_token."""

    def test_keeps_refresh_token_when_not_rotated(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """A response without refresh_token should keep the previous one."""
        token_store.save(TokenData("old", "keep-me", NOW))
        httpx_mock.add_response(url=ONEDRIVE_TOKEN_URL, json={"access_token": "new", "expires_in": 60})
        manager = make_manager(token_store)

        manager.refresh_access_token()

        assert manager.tokens == TokenData("new", "keep-me", NOW + 60_000)

    def test_rejected_refresh_disconnects(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """invalid_grant should clear tokens and raise TokenRefreshError."""
        token_store.save(TokenData("old", "revoked", NOW))
        httpx_mock.add_response(
            url=ONEDRIVE_TOKEN_URL,
            status_code=400,
            json={"error": "invalid_grant", "error_description": "revoked"},
        )
        manager = make_manager(token_store)

        with pytest.raises(TokenRefreshError):
            manager.refresh_access_token()

        assert manager.state is AuthState.UNAUTHENTICATED
        assert manager.tokens is None
        assert not token_store.path.exists()

    def test_single_flight(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """Concurrent refreshes should share one token request."""
        token_store.save(TokenData("old", "refresh", NOW))
        manager = make_manager(token_store)
        results: list[str] = []
        waiter = threading.Thread(target=lambda: results.append(manager.refresh_access_token()))

        def slow_token_endpoint(request: httpx.Request) -> httpx.Response:
            waiter.start()
            time.sleep(0.2)
            return httpx.Response(200, json={"access_token": "new", "refresh_token": "r2"})

        httpx_mock.add_callback(slow_token_endpoint, url=ONEDRIVE_TOKEN_URL)

        first = manager.refresh_access_token()
        waiter.join(timeout=5)

        assert first == "new"
        assert results == ["new"]
        assert len(httpx_mock.get_requests()) == 1


class TestAuthenticate:
    """Tests for the interactive authorization code flow."""

    def test_authenticate_exchanges_code(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """Should exchange the code, persist tokens and fetch the profile."""
        flow = FakeFlow()
        httpx_mock.add_response(
            url=ONEDRIVE_TOKEN_URL,
            json={"access_token": "a1", "refresh_token": "r1", "expires_in": 3600},
        )
        httpx_mock.add_response(
            url="https://graph.microsoft.com/v1.0/me",
            json={"id": "u1", "displayName": "Ann", "userPrincipalName": "ann@example.com"},
        )
        manager = make_manager(token_store, flow)

        user = manager.authenticate(force_reauth=True)

        assert user.display_name == "Ann"
        assert user.email == "ann@example.com"
        assert manager.state is AuthState.AUTHENTICATED
        assert token_store.load() == TokenData("a1", "r1", NOW + 3600 * 1000)
        authorize_url, fresh = flow.calls[0]
        assert fresh is True
        assert "prompt=select_account" in authorize_url
        exchange = form(httpx_mock.get_requests()[0])
        assert exchange["grant_type"] == "authorization_code"
        assert exchange["code"] == "auth-code"
        assert httpx_mock.get_requests()[1].headers["Authorization"] == "Bearer a1"

    @pytest.mark.parametrize("outcome", ["close", "deny"])
    def test_abandoned_consent(self, token_store, outcome) -> None:  # type: ignore[no-untyped-def]
        """A closed window or denied consent should raise AuthorizationError."""
        manager = make_manager(token_store, FakeFlow(outcome))

        with pytest.raises(AuthorizationError):
            manager.authenticate()

        assert manager.state is AuthState.UNAUTHENTICATED
        assert token_store.load() is None

    def test_baidu_uses_get_and_query_token(self, httpx_mock, tmp_path, key) -> None:  # type: ignore[no-untyped-def]
        """Baidu token and profile calls should use GET with query parameters."""
        store = TokenStore(tmp_path, "baidu-1", key)
        httpx_mock.add_response(
            method="GET",
            json={"access_token": "ba", "refresh_token": "br", "expires_in": 2592000},
        )
        httpx_mock.add_response(
            method="GET",
            json={"uk": 42, "netdisk_name": "pan-user", "vip_type": 2, "errno": 0},
        )
        manager = TokenManager(
            baidupan_oauth_config("ak", "sk"),
            store,
            flow=FakeFlow(),
            http=httpx.Client(),
            clock=lambda: NOW,
        )

        user = manager.authenticate()

        token_request, profile_request = httpx_mock.get_requests()
        assert token_request.url.params["client_secret"] == "sk"
        assert token_request.url.params["grant_type"] == "authorization_code"
        assert profile_request.url.params["method"] == "uinfo"
        assert profile_request.url.params["access_token"] == "ba"
        assert user.id == "42"
        assert user.vip_type == 2

    def test_user_info_fetched_once(self, httpx_mock, token_store) -> None:  # type: ignore[no-untyped-def]
        """get_user_info should fetch the profile once and then serve the cache."""
        token_store.save(TokenData("current", "refresh", NOW + REFRESH_MARGIN_MS + 1))
        httpx_mock.add_response(
            url="https://graph.microsoft.com/v1.0/me",
            json={"id": "u1", "displayName": "Ann"},
        )
        manager = make_manager(token_store)

        assert manager.get_user_info() is not None
        user = manager.get_user_info()

        assert user is not None and user.display_name == "Ann"
        assert len(httpx_mock.get_requests()) == 1
