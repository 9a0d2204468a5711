"""Shared configuration classes for notesync.

OAuth application credentials are never hard-coded; they are read from
the environment (``NOTESYNC_ONEDRIVE_CLIENT_ID``,
``NOTESYNC_BAIDU_CLIENT_ID``, ``NOTESYNC_BAIDU_CLIENT_SECRET``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from notesync.core.types import Provider

ONEDRIVE_GRAPH_URL = "https://graph.microsoft.com/v1.0"
ONEDRIVE_AUTHORITY = "https://login.microsoftonline.com/consumers/oauth2/v2.0"
ONEDRIVE_REDIRECT_URI = "http://localhost:3000/auth/callback"
ONEDRIVE_SCOPE = "Files.ReadWrite offline_access User.Read"

BAIDU_OAUTH_URL = "https://openapi.baidu.com/oauth/2.0"
BAIDU_PAN_URL = "https://pan.baidu.com"
BAIDU_UPLOAD_URL = "https://d.pcs.baidu.com"
BAIDU_REDIRECT_URI = "http://localhost:3001/baidu/callback"
BAIDU_SCOPE = "basic,netdisk"
BAIDU_DEFAULT_FOLDER = "/apps/NoteSync"

ENV_ONEDRIVE_CLIENT_ID = "NOTESYNC_ONEDRIVE_CLIENT_ID"
ENV_BAIDU_CLIENT_ID = "NOTESYNC_BAIDU_CLIENT_ID"
ENV_BAIDU_CLIENT_SECRET = "NOTESYNC_BAIDU_CLIENT_SECRET"


class ConfigError(ValueError):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class OAuthConfig:
    """OAuth 2.0 application settings for one provider.

    Attributes:
        provider: Provider this application is registered with.
        client_id: Application (client) id.
        authorize_url: Authorization endpoint opened in the browser.
        token_url: Token endpoint for code exchange and refresh.
        user_info_url: Endpoint returning the signed-in user's profile.
        redirect_uri: Registered callback URI intercepted by the flow.
        scope: Space or comma separated scope string, as the provider expects.
        client_secret: Secret for confidential clients (Baidu).
        token_request_method: HTTP method for the token endpoint.
        token_in_query: Send the access token as ``access_token`` query
            parameter instead of a bearer header.
        authorize_params: Extra fixed authorization query parameters.
        force_params: Parameters added when re-authentication is forced.
        timeout: Request timeout in seconds.
    """

    provider: Provider
    client_id: str
    authorize_url: str
    token_url: str
    user_info_url: str
    redirect_uri: str
    scope: str
    client_secret: str | None = None
    token_request_method: str = "POST"
    token_in_query: bool = False
    authorize_params: Mapping[str, str] = field(default_factory=dict)
    force_params: Mapping[str, str] = field(default_factory=dict)
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate required fields."""
        if not self.client_id:
            raise ConfigError(f"{self.provider.value}: client_id is required")
        if self.token_request_method not in ("GET", "POST"):
            raise ConfigError(f"Unsupported token request method: {self.token_request_method}")


def onedrive_oauth_config(client_id: str, redirect_uri: str = ONEDRIVE_REDIRECT_URI) -> OAuthConfig:
    """OAuth settings for a personal Microsoft account."""
    return OAuthConfig(
        provider=Provider.ONEDRIVE,
        client_id=client_id,
        authorize_url=f"{ONEDRIVE_AUTHORITY}/authorize",
        token_url=f"{ONEDRIVE_AUTHORITY}/token",
        user_info_url=f"{ONEDRIVE_GRAPH_URL}/me",
        redirect_uri=redirect_uri,
        scope=ONEDRIVE_SCOPE,
        authorize_params={"response_mode": "query"},
        force_params={"prompt": "select_account"},
    )


def baidupan_oauth_config(
    client_id: str,
    client_secret: str,
    redirect_uri: str = BAIDU_REDIRECT_URI,
) -> OAuthConfig:
    """OAuth settings for a Baidu Netdisk open-platform application."""
    if not client_secret:
        raise ConfigError("baidupan: client_secret is required")
    return OAuthConfig(
        provider=Provider.BAIDUPAN,
        client_id=client_id,
        client_secret=client_secret,
        authorize_url=f"{BAIDU_OAUTH_URL}/authorize",
        token_url=f"{BAIDU_OAUTH_URL}/token",
        user_info_url=f"{BAIDU_PAN_URL}/rest/2.0/xpan/nas",
        redirect_uri=redirect_uri,
        scope=BAIDU_SCOPE,
        token_request_method="GET",
        token_in_query=True,
        authorize_params={"display": "popup"},
        force_params={"force_login": "1"},
    )


def load_oauth_config(provider: Provider, env: Mapping[str, str] | None = None) -> OAuthConfig:
    """Build the OAuth settings for a provider from environment variables.

    Raises:
        ConfigError: If the required variables are not set.
    """
    env = os.environ if env is None else env
    if provider is Provider.ONEDRIVE:
        client_id = env.get(ENV_ONEDRIVE_CLIENT_ID, "")
        if not client_id:
            raise ConfigError(f"Set {ENV_ONEDRIVE_CLIENT_ID} to connect OneDrive accounts")
        return onedrive_oauth_config(client_id)
    client_id = env.get(ENV_BAIDU_CLIENT_ID, "")
    client_secret = env.get(ENV_BAIDU_CLIENT_SECRET, "")
    if not client_id or not client_secret:
        raise ConfigError(
            f"Set {ENV_BAIDU_CLIENT_ID} and {ENV_BAIDU_CLIENT_SECRET} to connect Baidu accounts"
        )
    return baidupan_oauth_config(client_id, client_secret)


@dataclass
class SyncSettings:
    """Per-account sync settings read by the orchestrator.

    Attributes:
        sync_folder: Remote folder that holds ``<id>.note`` objects.
        wifi_only: Refuse to sync on a metered connection.
        save_conflict_copy: Keep the losing side of a resolved conflict.
    """

    sync_folder: str
    wifi_only: bool = False
    save_conflict_copy: bool = True

    def __post_init__(self) -> None:
        """Normalize the folder path."""
        folder = self.sync_folder.strip()
        if folder not in ("", "/"):
            folder = folder.rstrip("/")
        self.sync_folder = folder
