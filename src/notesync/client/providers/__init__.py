"""Storage provider clients.

Both providers implement ProviderClient; which one an account uses is
decided by its provider tag through create_provider_client().
"""

from __future__ import annotations

from typing import Any

from notesync.client.providers.baidupan import BaiduPanClient
from notesync.client.providers.base import (
    ProviderClient,
    RemoteItem,
    StorageQuota,
    UploadProgress,
    join_remote_path,
)
from notesync.client.providers.onedrive import OneDriveClient
from notesync.client.transport import RetryingTransport, TokenSource
from notesync.core.config import BAIDU_PAN_URL, ONEDRIVE_GRAPH_URL
from notesync.core.types import Provider


def create_transport(
    provider: Provider,
    token_source: TokenSource | None,
    **kwargs: Any,
) -> RetryingTransport:
    """Build a transport configured the way a provider expects."""
    if provider is Provider.ONEDRIVE:
        return RetryingTransport(ONEDRIVE_GRAPH_URL, token_source, **kwargs)
    return RetryingTransport(
        BAIDU_PAN_URL,
        token_source,
        token_param="access_token",
        headers={"User-Agent": "pan.baidu.com"},
        **kwargs,
    )


def create_provider_client(provider: Provider, transport: RetryingTransport) -> ProviderClient:
    """Select the ProviderClient implementation for a provider tag."""
    if provider is Provider.ONEDRIVE:
        return OneDriveClient(transport)
    if provider is Provider.BAIDUPAN:
        return BaiduPanClient(transport)
    raise ValueError(f"Unsupported provider: {provider}")


__all__ = [
    "BaiduPanClient",
    "OneDriveClient",
    "ProviderClient",
    "RemoteItem",
    "StorageQuota",
    "UploadProgress",
    "create_provider_client",
    "create_transport",
    "join_remote_path",
]
