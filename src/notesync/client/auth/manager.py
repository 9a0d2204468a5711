"""OAuth 2.0 token lifecycle for one remote account.

State machine::

    unauthenticated -> authorizing -> authenticated -> refreshing
                                          ^                |
                                          +----------------+-> unauthenticated

Refresh is single-flight: concurrent callers block on one lock, and a
caller that waited while another thread refreshed reuses that result
instead of spending the (possibly rotated) refresh token again.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from notesync.client.auth.flow import AuthorizationFlow
from notesync.client.auth.tokens import TokenStore
from notesync.client.retry import NETWORK_EXCEPTIONS, retry_with_backoff
from notesync.client.transport import extract_error_message
from notesync.core.config import OAuthConfig
from notesync.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotAuthenticatedError,
    TokenRefreshError,
    TransportError,
)
from notesync.core.models import TokenData, UserInfo, now_ms
from notesync.core.types import Provider

logger = logging.getLogger(__name__)

REFRESH_MARGIN_MS = 5 * 60 * 1000  # refresh when less than 5 minutes remain
DEFAULT_EXPIRES_IN = 3600  # seconds, when the token response omits it


class AuthState(str, Enum):
    """Authentication state of a TokenManager."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


def parse_user_info(provider: Provider, data: dict[str, Any]) -> UserInfo:
    """Convert a provider profile payload into UserInfo."""
    if provider is Provider.ONEDRIVE:
        return UserInfo(
            id=str(data["id"]),
            display_name=data.get("displayName") or "",
            email=data.get("userPrincipalName") or data.get("mail"),
        )
    errno = data.get("errno", 0)
    if errno:
        raise AuthenticationError(f"Baidu user info failed (errno {errno})", provider_code=errno)
    return UserInfo(
        id=str(data["uk"]),
        display_name=data.get("netdisk_name") or data.get("baidu_name") or "",
        avatar_url=data.get("avatar_url"),
        vip_type=data.get("vip_type"),
    )


class TokenManager:
    """Owns the TokenData of one account.

    Args:
        oauth: Provider application settings.
        store: Encrypted token persistence for the account.
        flow: Interactive consent surface; required only for authenticate().
        http: httpx client for token and profile endpoints.
        clock: Returns the current time in epoch milliseconds.
        sleep: Sleep function used between retries of token requests.
    """

    def __init__(
        self,
        oauth: OAuthConfig,
        store: TokenStore,
        flow: AuthorizationFlow | None = None,
        http: httpx.Client | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._oauth = oauth
        self._store = store
        self._flow = flow
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=oauth.timeout)
        self._clock = clock
        self._sleep = sleep
        self._refresh_lock = threading.Lock()
        self._user_info: UserInfo | None = None
        self._tokens = store.load()
        self._state = AuthState.AUTHENTICATED if self._tokens else AuthState.UNAUTHENTICATED

    @property
    def provider(self) -> Provider:
        return self._oauth.provider

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._tokens is not None

    @property
    def tokens(self) -> TokenData | None:
        return self._tokens

    def build_authorize_url(self, state: str, force_reauth: bool = False) -> str:
        """Build the provider authorization URL."""
        params: dict[str, str] = {
            "client_id": self._oauth.client_id,
            "response_type": "code",
            "redirect_uri": self._oauth.redirect_uri,
            "scope": self._oauth.scope,
            "state": state,
            **self._oauth.authorize_params,
        }
        if force_reauth:
            params.update(self._oauth.force_params)
        return f"{self._oauth.authorize_url}?{urlencode(params)}"

    def authenticate(self, force_reauth: bool = False) -> UserInfo:
        """Run the interactive consent flow and persist the resulting tokens.

        Args:
            force_reauth: Ask the provider to show the account picker /
                login form even when a session exists.

        Returns:
            The signed-in user's profile.

        Raises:
            AuthorizationError: The flow was abandoned, the provider
                returned an error, or the code exchange failed.
        """
        if self._flow is None:
            raise AuthorizationError("No authorization flow configured")

        previous_state = self._state
        self._state = AuthState.AUTHORIZING
        try:
            expected_state = secrets.token_urlsafe(16)
            url = self.build_authorize_url(expected_state, force_reauth)
            logger.info(f"Starting {self.provider.value} authorization")
            callback_url = self._flow.run(url, self._oauth.redirect_uri, force_reauth)
            if callback_url is None:
                raise AuthorizationError("Authorization window closed by user")
            code = self._parse_callback(callback_url, expected_state)
            tokens = self.exchange_code(code)
        except AuthorizationError:
            self._state = previous_state if self._tokens else AuthState.UNAUTHENTICATED
            raise

        self._set_tokens(tokens)
        user_info = self.fetch_user_info()
        logger.info(f"Authenticated {self.provider.value} account {user_info.display_name}")
        return user_info

    def _parse_callback(self, callback_url: str, expected_state: str) -> str:
        query = parse_qs(urlsplit(callback_url).query)
        if "error" in query:
            description = query.get("error_description", query["error"])[0]
            raise AuthorizationError(f"Authorization denied: {description}")
        returned_state = query.get("state", [None])[0]
        if returned_state is not None and returned_state != expected_state:
            raise AuthorizationError("Authorization state mismatch")
        code = query.get("code", [None])[0]
        if not code:
            raise AuthorizationError("No authorization code in callback")
        return code

    def exchange_code(self, code: str) -> TokenData:
        """Exchange an authorization code for tokens.

        Raises:
            AuthorizationError: If the token endpoint rejects the code.
        """
        params = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._oauth.redirect_uri,
        }
        try:
            data = self._token_request(params)
        except (TokenRefreshError, TransportError) as e:
            raise AuthorizationError(f"Code exchange failed: {e}") from e
        return self._tokens_from_response(data, previous_refresh_token=None)

    def get_access_token(self) -> str:
        """Return a valid access token, refreshing first when close to expiry.

        Raises:
            NotAuthenticatedError: No tokens are stored.
            TokenRefreshError: A needed refresh failed.
        """
        tokens = self._tokens
        if tokens is None:
            raise NotAuthenticatedError(f"{self.provider.value} account is not connected")
        if self._clock() >= tokens.expires_at - REFRESH_MARGIN_MS:
            logger.info("Access token expiring soon, refreshing")
            return self.refresh_access_token()
        return tokens.access_token

    def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new token pair.

        Raises:
            TokenRefreshError: The refresh token was rejected; all stored
                token state has been cleared.
        """
        stale = self._tokens.access_token if self._tokens else None
        with self._refresh_lock:
            current = self._tokens
            if current is None:
                raise TokenRefreshError("No refresh token available; sign in again")
            if current.access_token != stale:
                # Another caller refreshed while this one waited on the lock
                return current.access_token

            self._state = AuthState.REFRESHING
            params = {"grant_type": "refresh_token", "refresh_token": current.refresh_token}
            try:
                data = self._token_request(params)
                tokens = self._tokens_from_response(data, current.refresh_token)
            except (TokenRefreshError, TransportError) as e:
                logger.error(f"Token refresh failed: {e}")
                self.disconnect()
                raise TokenRefreshError(f"Token refresh failed, sign in again: {e}") from e

            self._set_tokens(tokens)
            logger.info("Access token refreshed")
            return tokens.access_token

    def disconnect(self) -> None:
        """Clear in-memory and persisted tokens. Safe to call repeatedly."""
        self._tokens = None
        self._user_info = None
        self._store.clear()
        self._state = AuthState.UNAUTHENTICATED

    def fetch_user_info(self) -> UserInfo:
        """Fetch and cache the signed-in user's profile."""
        token = self.get_access_token()
        if self._oauth.token_in_query:
            response = self._http.get(
                self._oauth.user_info_url,
                params={"method": "uinfo", "access_token": token},
            )
        else:
            response = self._http.get(
                self._oauth.user_info_url,
                headers={"Authorization": f"Bearer {token}"},
            )
        if not response.is_success:
            raise AuthenticationError(
                f"User info request failed: {extract_error_message(response)}",
                status_code=response.status_code,
            )
        self._user_info = parse_user_info(self.provider, response.json())
        return self._user_info

    def get_user_info(self) -> UserInfo | None:
        """Return the cached profile, fetching it once if connected."""
        if self._user_info is None and self._tokens is not None:
            self.fetch_user_info()
        return self._user_info

    def _set_tokens(self, tokens: TokenData) -> None:
        self._tokens = tokens
        self._store.save(tokens)
        self._state = AuthState.AUTHENTICATED

    def _tokens_from_response(
        self, data: dict[str, Any], previous_refresh_token: str | None
    ) -> TokenData:
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token") or previous_refresh_token
        if not access_token or not refresh_token:
            raise TokenRefreshError("Token response is missing access_token or refresh_token")
        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        return TokenData(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._clock() + expires_in * 1000,
        )

    def _token_request(self, params: dict[str, str]) -> dict[str, Any]:
        params = {**params, "client_id": self._oauth.client_id}
        if self._oauth.client_secret:
            params["client_secret"] = self._oauth.client_secret
        if self._oauth.provider is Provider.ONEDRIVE:
            params["scope"] = self._oauth.scope

        def send() -> httpx.Response:
            if self._oauth.token_request_method == "GET":
                return self._http.get(self._oauth.token_url, params=params)
            return self._http.post(self._oauth.token_url, data=params)

        try:
            response = retry_with_backoff(send, sleep=self._sleep)
        except NETWORK_EXCEPTIONS as e:
            raise TransportError(f"Token endpoint unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.is_success or "error" in data:
            raise TokenRefreshError(
                f"Token endpoint returned HTTP {response.status_code}: "
                f"{extract_error_message(response)}"
            )
        return dict(data)

    def close(self) -> None:
        """Close the HTTP client if the manager created it."""
        if self._owns_http:
            self._http.close()
