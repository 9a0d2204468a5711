"""OneDrive client over Microsoft Graph.

Uploads under 4 MiB go out as a single PUT. Larger files use an upload
session: the session URL is self-authenticating, so byte ranges are PUT
without a bearer token, 320 KiB at a time. A failed range aborts the
whole upload; the next attempt starts over with a new session.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

from notesync.client.providers.base import (
    RemoteItem,
    StorageQuota,
    UploadProgress,
    iso_to_ms,
    join_remote_path,
)
from notesync.client.transport import RetryingTransport
from notesync.core.chunking import SESSION_WINDOW_SIZE, iter_windows
from notesync.core.errors import APIError, DownloadError, UploadError, ValidationError
from notesync.core.types import Provider

logger = logging.getLogger(__name__)

SIMPLE_UPLOAD_LIMIT = 4 * 1024 * 1024  # 4 MiB
INVALID_NAME_CHARS = frozenset('<>:"|?*\\/')


def encode_drive_path(path: str) -> str:
    """Percent-encode a drive path, keeping separators."""
    return quote(path.strip("/"), safe="/")


def item_from_graph(data: dict[str, Any], parent: str = "") -> RemoteItem:
    """Build a RemoteItem from a Graph driveItem."""
    name = data.get("name", "")
    return RemoteItem(
        id=data["id"],
        name=name,
        size=int(data.get("size", 0)),
        modified_at=iso_to_ms(data.get("lastModifiedDateTime")),
        is_folder="folder" in data,
        path=join_remote_path(parent, name) if parent or name else None,
    )


class OneDriveClient:
    """ProviderClient for OneDrive personal accounts."""

    provider = Provider.ONEDRIVE

    def __init__(self, transport: RetryingTransport) -> None:
        self._transport = transport

    def _children_endpoint(self, folder: str) -> str:
        if folder.strip("/"):
            return f"/me/drive/root:/{encode_drive_path(folder)}:/children"
        return "/me/drive/root/children"

    def list_files(self, folder: str = "") -> list[RemoteItem]:
        """List a folder, following ``@odata.nextLink`` pages."""
        items: list[RemoteItem] = []
        endpoint: str | None = self._children_endpoint(folder)
        while endpoint:
            data = self._transport.get(endpoint).json()
            items.extend(item_from_graph(entry, folder.strip("/")) for entry in data.get("value", []))
            endpoint = data.get("@odata.nextLink")
        logger.debug(f"Listed {len(items)} items in '{folder or '/'}'")
        return items

    def get_item(self, path: str) -> RemoteItem:
        """Look up an item by path."""
        data = self._transport.get(f"/me/drive/root:/{encode_drive_path(path)}").json()
        parent = path.strip("/").rpartition("/")[0]
        return item_from_graph(data, parent)

    def upload_file(
        self,
        local_path: Path,
        remote_path: str,
        on_progress: UploadProgress | None = None,
    ) -> RemoteItem:
        """Upload a file, choosing simple or session upload by size."""
        local_path = Path(local_path)
        size = local_path.stat().st_size
        parent = remote_path.strip("/").rpartition("/")[0]
        if size < SIMPLE_UPLOAD_LIMIT:
            item = self._simple_upload(local_path, remote_path)
            if on_progress:
                on_progress(size, size)
        else:
            item = self._session_upload(local_path, remote_path, size, on_progress)
        item = item_from_graph(item, parent)
        logger.info(f"Uploaded {remote_path} ({item.size} bytes)")
        return item

    def _simple_upload(self, local_path: Path, remote_path: str) -> dict[str, Any]:
        response = self._transport.put(
            f"/me/drive/root:/{encode_drive_path(remote_path)}:/content",
            content=local_path.read_bytes(),
            headers={"Content-Type": "application/octet-stream"},
        )
        return dict(response.json())

    def _session_upload(
        self,
        local_path: Path,
        remote_path: str,
        size: int,
        on_progress: UploadProgress | None,
    ) -> dict[str, Any]:
        session = self._transport.post(
            f"/me/drive/root:/{encode_drive_path(remote_path)}:/createUploadSession",
            json={"item": {"@microsoft.graph.conflictBehavior": "replace"}},
        ).json()
        upload_url = session.get("uploadUrl")
        if not upload_url:
            raise UploadError(f"No upload URL returned for {remote_path}")
        logger.debug(f"Upload session created for {remote_path}")

        result: dict[str, Any] | None = None
        for chunk in iter_windows(local_path, SESSION_WINDOW_SIZE):
            response = self._transport.put(
                upload_url,
                content=chunk.data,
                headers={
                    "Content-Range": f"bytes {chunk.offset}-{chunk.end}/{size}",
                    "Content-Length": str(chunk.size),
                },
                skip_auth=True,
            )
            logger.debug(f"Uploaded bytes {chunk.offset}-{chunk.end}/{size}")
            if on_progress:
                on_progress(chunk.end + 1, size)
            body = response.json() if response.content else {}
            if "id" in body:
                result = body

        if result is None:
            raise UploadError(f"Upload session for {remote_path} finished without an item")
        return result

    def download_file(self, remote_id: str, local_path: Path) -> None:
        """Resolve the pre-authenticated download URL and fetch the content."""
        data = self._transport.get(f"/me/drive/items/{quote(remote_id, safe='')}").json()
        download_url = data.get("@microsoft.graph.downloadUrl")
        if not download_url:
            raise DownloadError(f"No download URL for item {remote_id}")
        response = self._transport.get(download_url, skip_auth=True)
        Path(local_path).write_bytes(response.content)
        logger.debug(f"Downloaded item {remote_id} ({len(response.content)} bytes)")

    def create_folder(self, path: str) -> RemoteItem:
        """Create a folder under its parent; return the existing one on 409."""
        parent, _, name = path.strip("/").rpartition("/")
        if not name or any(c in INVALID_NAME_CHARS for c in name):
            raise ValidationError(f"Invalid folder name: {name!r}")
        try:
            response = self._transport.post(
                self._children_endpoint(parent),
                json={
                    "name": name,
                    "folder": {},
                    "@microsoft.graph.conflictBehavior": "fail",
                },
            )
        except APIError as e:
            if e.status_code == 409:
                logger.debug(f"Folder {path} already exists")
                return self.get_item(path)
            raise
        logger.info(f"Created folder {path}")
        return item_from_graph(response.json(), parent)

    def get_quota(self) -> StorageQuota:
        quota = self._transport.get("/me/drive").json().get("quota", {})
        return StorageQuota(
            total=int(quota.get("total", 0)),
            used=int(quota.get("used", 0)),
            remaining=int(quota.get("remaining", 0)),
        )

    def delete_file(self, item: RemoteItem) -> None:
        self._transport.delete(f"/me/drive/items/{quote(item.id, safe='')}")
        logger.info(f"Deleted {item.path or item.name}")
