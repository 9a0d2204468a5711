"""OAuth authorization, token refresh and encrypted token storage."""

from notesync.client.auth.flow import (
    AuthorizationFlow,
    ConsoleAuthorizationFlow,
    LoopbackAuthorizationFlow,
)
from notesync.client.auth.manager import (
    REFRESH_MARGIN_MS,
    AuthState,
    TokenManager,
    parse_user_info,
)
from notesync.client.auth.tokens import TokenStore

__all__ = [
    "AuthState",
    "AuthorizationFlow",
    "ConsoleAuthorizationFlow",
    "LoopbackAuthorizationFlow",
    "REFRESH_MARGIN_MS",
    "TokenManager",
    "TokenStore",
    "parse_user_info",
]
