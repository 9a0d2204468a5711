"""Authenticated HTTP transport with retry and error mapping.

This module provides:
- TokenSource: what the transport needs from a token manager
- RetryingTransport: wraps httpx.Client, attaches the access token,
  retries transient failures and maps HTTP errors onto the notesync
  error taxonomy
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

import httpx

from notesync.client.retry import (
    MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    RETRY_DELAYS,
    RETRYABLE_STATUS_CODES,
    backoff_delay,
    parse_retry_after,
)
from notesync.core.errors import (
    APIError,
    AuthenticationError,
    NoteSyncError,
    NotFoundError,
    QuotaExceededError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds


class TokenSource(Protocol):
    """Access-token provider used by the transport."""

    def get_access_token(self) -> str: ...

    def refresh_access_token(self) -> str: ...

    def disconnect(self) -> None: ...


def extract_error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("error_description", "errmsg", "message", "error_msg"):
            if body.get(key):
                return str(body[key])
        if isinstance(error, str):
            return error
    return response.reason_phrase or f"HTTP {response.status_code}"


def error_for_response(response: httpx.Response) -> APIError:
    """Map a failed HTTP response to an exception (not raised)."""
    status = response.status_code
    message = f"{response.request.method} {response.request.url.path}: {extract_error_message(response)}"
    retry_after = parse_retry_after(response.headers.get("Retry-After"))
    if status == 401:
        return AuthenticationError(message, status_code=status)
    if status == 404:
        return NotFoundError(message, status_code=status)
    if status == 507:
        return QuotaExceededError(message, status_code=status)
    if status in RETRYABLE_STATUS_CODES:
        return TransportError(message, status_code=status, retry_after=retry_after)
    return APIError(message, status_code=status)


class RetryingTransport:
    """HTTP transport shared by a provider client and its token manager.

    Every request is attempted once plus up to ``max_retries`` retries.
    Retryable statuses and network errors wait according to the fixed
    schedule, except that a 429 ``Retry-After`` header overrides it. The
    first 401 of a call triggers exactly one token refresh; if the refresh
    fails the account is disconnected and AuthenticationError is raised.

    Example:
        with RetryingTransport("https://graph.microsoft.com/v1.0", manager) as t:
            drive = t.get("/me/drive").json()
    """

    def __init__(
        self,
        base_url: str = "",
        token_source: TokenSource | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        token_param: str | None = None,
        headers: Mapping[str, str] | None = None,
        max_retries: int = MAX_RETRIES,
        delays: Sequence[float] = RETRY_DELAYS,
        sleep: Callable[[float], None] = time.sleep,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Prefix for relative endpoints.
            token_source: Token manager; None sends unauthenticated requests.
            timeout: Default per-request timeout in seconds.
            token_param: Send the token as this query parameter instead of
                an ``Authorization: Bearer`` header.
            headers: Headers added to every request.
            max_retries: Retries after the first attempt.
            delays: Backoff schedule in seconds.
            sleep: Sleep function (injectable for tests).
            client: Pre-configured httpx client (owned by the caller).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._token_source = token_source
        self._token_param = token_param
        self._delays = tuple(delays)
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._default_headers = dict(headers or {})

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{endpoint}"

    def _prepare(
        self,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        skip_auth: bool,
    ) -> tuple[dict[str, Any], dict[str, str]]:
        request_params = dict(params or {})
        request_headers = {**self._default_headers, **(headers or {})}
        if not skip_auth and self._token_source is not None:
            token = self._token_source.get_access_token()
            if self._token_param:
                request_params[self._token_param] = token
            else:
                request_headers["Authorization"] = f"Bearer {token}"
        return request_params, request_headers

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        data: Mapping[str, Any] | None = None,
        content: bytes | None = None,
        files: Mapping[str, Any] | None = None,
        timeout: float | None = None,
        skip_auth: bool = False,
    ) -> httpx.Response:
        """Send a request with retry, refresh-on-401 and error mapping.

        Returns:
            The successful (2xx) response.

        Raises:
            TransportError: Network failure or retryable status after retries ran out.
            AuthenticationError: 401 that a refresh could not cure.
            QuotaExceededError: HTTP 507.
            NotFoundError: HTTP 404.
            APIError: Any other non-retryable failure.
        """
        url = self._url(endpoint)
        context = f"{method} {url}"
        refreshed = False
        last_error: APIError | None = None

        for attempt in range(self.max_retries + 1):
            request_params, request_headers = self._prepare(params, headers, skip_auth)
            try:
                response = self._client.request(
                    method,
                    url,
                    params=request_params or None,
                    headers=request_headers,
                    json=json,
                    data=data,
                    content=content,
                    files=files,
                    timeout=timeout if timeout is not None else self.timeout,
                )
            except NETWORK_EXCEPTIONS as e:
                last_error = TransportError(f"{context}: {type(e).__name__}: {e}")
                delay = backoff_delay(attempt, self._delays)
            else:
                if response.is_success:
                    return response

                error = error_for_response(response)
                status = response.status_code
                if status not in RETRYABLE_STATUS_CODES:
                    logger.error(f"{context} failed with HTTP {status}: {error}")
                    raise error

                if status == 401:
                    if skip_auth or self._token_source is None:
                        raise error
                    if not refreshed:
                        refreshed = True
                        logger.warning(f"{context}: 401 Unauthorized, refreshing token")
                        self._refresh_or_disconnect(context)

                last_error = error
                delay = backoff_delay(attempt, self._delays)
                if status == 429 and error.retry_after is not None:
                    logger.warning(f"{context}: rate limited, retry after {error.retry_after:.0f}s")
                    delay = error.retry_after

            if attempt == self.max_retries:
                break
            logger.warning(
                f"Attempt {attempt + 1}/{self.max_retries + 1} failed: {last_error}. "
                f"Retrying in {delay:.1f}s..."
            )
            self._sleep(delay)

        assert last_error is not None
        logger.error(f"All {self.max_retries} retries failed: {last_error}")
        if isinstance(last_error, AuthenticationError):
            raise last_error
        raise TransportError(
            str(last_error),
            status_code=last_error.status_code,
            retry_after=last_error.retry_after,
        ) from last_error

    def _refresh_or_disconnect(self, context: str) -> None:
        assert self._token_source is not None
        try:
            self._token_source.refresh_access_token()
        except NoteSyncError as e:
            logger.error(f"{context}: token refresh failed, disconnecting: {e}")
            self._token_source.disconnect()
            raise AuthenticationError(
                f"Authentication expired, please sign in again: {e}", status_code=401
            ) from e

    def get(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a GET request."""
        return self.request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a POST request."""
        return self.request("POST", endpoint, **kwargs)

    def put(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a PUT request."""
        return self.request("PUT", endpoint, **kwargs)

    def delete(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a DELETE request."""
        return self.request("DELETE", endpoint, **kwargs)

    def close(self) -> None:
        """Close the HTTP client if the transport created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> RetryingTransport:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
