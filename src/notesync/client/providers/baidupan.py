"""Baidu Netdisk client over the xpan open API.

Uploads follow precreate -> slice upload -> create:

1. Cut the file into 4 MiB slices and MD5 each one.
2. ``precreate`` with the MD5 list; the response names the slice
   indices the server still needs and an ``uploadid``. An empty list
   still means slice 0 must be sent.
3. POST each needed slice as multipart to ``superfile2`` on the upload host.
4. ``create`` with the same MD5 list and ``uploadid`` to commit.

The API reports most failures as HTTP 200 with a non-zero ``errno``;
those are mapped onto the notesync error taxonomy here.
"""

from __future__ import annotations

import json
import logging
import posixpath
from pathlib import Path
from typing import Any

from notesync.client.providers.base import RemoteItem, StorageQuota, UploadProgress
from notesync.client.transport import RetryingTransport
from notesync.core.chunking import SLICE_SIZE, read_slice, slice_hashes
from notesync.core.config import BAIDU_UPLOAD_URL
from notesync.core.errors import (
    APIError,
    AuthenticationError,
    DownloadError,
    NotFoundError,
    QuotaExceededError,
    TransportError,
    ValidationError,
)
from notesync.core.types import Provider

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100
ERRNO_ALREADY_EXISTS = -8

_AUTH_ERRNOS = frozenset({-6, 110, 111})
_QUOTA_ERRNOS = frozenset({-10})
_NOT_FOUND_ERRNOS = frozenset({-9, 31066})
_RATE_LIMIT_ERRNOS = frozenset({31034})


def raise_for_errno(data: dict[str, Any], context: str) -> dict[str, Any]:
    """Raise the mapped error when a response carries a non-zero errno."""
    errno = data.get("errno") or data.get("error_code") or 0
    if not errno:
        return data
    errno = int(errno)
    message = f"{context} failed (errno {errno})"
    if data.get("errmsg") or data.get("error_msg"):
        message += f": {data.get('errmsg') or data.get('error_msg')}"
    if errno in _AUTH_ERRNOS:
        raise AuthenticationError(message, provider_code=errno)
    if errno in _QUOTA_ERRNOS:
        raise QuotaExceededError(message, provider_code=errno)
    if errno in _NOT_FOUND_ERRNOS:
        raise NotFoundError(message, provider_code=errno)
    if errno in _RATE_LIMIT_ERRNOS:
        raise TransportError(message, provider_code=errno)
    raise APIError(message, provider_code=errno)


def item_from_xpan(data: dict[str, Any]) -> RemoteItem:
    """Build a RemoteItem from an xpan file record (mtimes are in seconds)."""
    path = data.get("path", "")
    return RemoteItem(
        id=str(data["fs_id"]),
        name=data.get("server_filename") or posixpath.basename(path),
        size=int(data.get("size", 0)),
        modified_at=int(data.get("server_mtime") or data.get("mtime") or 0) * 1000,
        is_folder=bool(int(data.get("isdir", 0))),
        path=path or None,
    )


class BaiduPanClient:
    """ProviderClient for Baidu Netdisk.

    The transport must send the access token as the ``access_token``
    query parameter and the ``pan.baidu.com`` User-Agent.
    """

    provider = Provider.BAIDUPAN

    def __init__(self, transport: RetryingTransport, upload_url: str = BAIDU_UPLOAD_URL) -> None:
        self._transport = transport
        self._upload_url = upload_url.rstrip("/")

    def _json(self, response: Any, context: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"{context}: invalid JSON response") from e
        return raise_for_errno(dict(data), context)

    def list_files(self, folder: str = "/") -> list[RemoteItem]:
        """List a folder, 100 entries per request."""
        directory = folder if folder.startswith("/") else f"/{folder}"
        items: list[RemoteItem] = []
        start = 0
        while True:
            response = self._transport.get(
                "/rest/2.0/xpan/file",
                params={
                    "method": "list",
                    "dir": directory,
                    "start": start,
                    "limit": LIST_PAGE_SIZE,
                    "order": "time",
                    "desc": 1,
                },
            )
            page = self._json(response, f"List {directory}").get("list", [])
            items.extend(item_from_xpan(entry) for entry in page)
            if len(page) < LIST_PAGE_SIZE:
                break
            start += LIST_PAGE_SIZE
        logger.debug(f"Listed {len(items)} items in '{directory}'")
        return items

    def upload_file(
        self,
        local_path: Path,
        remote_path: str,
        on_progress: UploadProgress | None = None,
    ) -> RemoteItem:
        """Upload with precreate, per-slice upload and create.

        Raises:
            ValidationError: If the file is empty (rejected before any request).
        """
        local_path = Path(local_path)
        size = local_path.stat().st_size
        if size == 0:
            raise ValidationError(f"Refusing to upload empty file {local_path.name}")

        block_list = slice_hashes(local_path, SLICE_SIZE)
        precreate = self._precreate(remote_path, size, block_list)
        upload_id = precreate.get("uploadid")
        if not upload_id:
            raise APIError(f"Precreate for {remote_path} returned no uploadid")
        needed = precreate.get("block_list") or [0]
        logger.debug(f"Precreate {remote_path}: {len(needed)}/{len(block_list)} slices needed")

        for position, index in enumerate(needed):
            self._upload_slice(remote_path, upload_id, int(index), read_slice(local_path, int(index)))
            if on_progress:
                on_progress(position + 1, len(needed))

        created = self._create(remote_path, size, upload_id, block_list)
        logger.info(f"Uploaded {remote_path} ({created.size} bytes)")
        return created

    def _precreate(self, remote_path: str, size: int, block_list: list[str]) -> dict[str, Any]:
        response = self._transport.post(
            "/rest/2.0/xpan/file",
            params={"method": "precreate"},
            data={
                "path": remote_path,
                "size": str(size),
                "isdir": "0",
                "autoinit": "1",
                "rtype": "3",
                "block_list": json.dumps(block_list),
            },
        )
        return self._json(response, f"Precreate {remote_path}")

    def _upload_slice(self, remote_path: str, upload_id: str, partseq: int, data: bytes) -> None:
        response = self._transport.post(
            f"{self._upload_url}/rest/2.0/pcs/superfile2",
            params={
                "method": "upload",
                "type": "tmpfile",
                "path": remote_path,
                "uploadid": upload_id,
                "partseq": partseq,
            },
            files={"file": (f"chunk_{partseq}", data, "application/octet-stream")},
        )
        result = self._json(response, f"Upload slice {partseq} of {remote_path}")
        logger.debug(f"Slice {partseq} uploaded, md5={result.get('md5', 'unknown')}")

    def _create(
        self, remote_path: str, size: int, upload_id: str, block_list: list[str]
    ) -> RemoteItem:
        response = self._transport.post(
            "/rest/2.0/xpan/file",
            params={"method": "create"},
            data={
                "path": remote_path,
                "size": str(size),
                "isdir": "0",
                "rtype": "3",
                "uploadid": upload_id,
                "block_list": json.dumps(block_list),
            },
        )
        return item_from_xpan(self._json(response, f"Create {remote_path}"))

    def download_file(self, remote_id: str, local_path: Path) -> None:
        """Resolve the dlink of an fs_id and fetch it with the access token."""
        response = self._transport.get(
            "/rest/2.0/xpan/multimedia",
            params={"method": "filemetas", "fsids": f"[{int(remote_id)}]", "dlink": 1},
        )
        entries = self._json(response, f"File metas {remote_id}").get("list") or []
        if not entries or not entries[0].get("dlink"):
            raise DownloadError(f"No download link for fs_id {remote_id}")
        content = self._transport.get(entries[0]["dlink"]).content
        Path(local_path).write_bytes(content)
        logger.debug(f"Downloaded fs_id {remote_id} ({len(content)} bytes)")

    def create_folder(self, path: str) -> RemoteItem:
        """Create a folder; errno -8 (already exists) counts as success."""
        path = path if path.startswith("/") else f"/{path}"
        response = self._transport.post(
            "/rest/2.0/xpan/file",
            params={"method": "create"},
            data={"path": path, "size": "0", "isdir": "1", "rtype": "0"},
        )
        data = response.json()
        if data.get("errno") == ERRNO_ALREADY_EXISTS:
            logger.debug(f"Folder {path} already exists")
            return RemoteItem(id="", name=posixpath.basename(path), is_folder=True, path=path)
        raise_for_errno(data, f"Create folder {path}")
        logger.info(f"Created folder {path}")
        return RemoteItem(
            id=str(data.get("fs_id", "")),
            name=posixpath.basename(path),
            modified_at=int(data.get("mtime") or 0) * 1000,
            is_folder=True,
            path=path,
        )

    def get_quota(self) -> StorageQuota:
        response = self._transport.get("/api/quota", params={"checkfree": 1, "checkexpire": 1})
        data = self._json(response, "Quota")
        total = int(data.get("total", 0))
        used = int(data.get("used", 0))
        return StorageQuota(total=total, used=used, remaining=int(data.get("free", total - used)))

    def delete_file(self, item: RemoteItem) -> None:
        if not item.path:
            raise ValidationError(f"Cannot delete {item.name}: Baidu deletes by path")
        response = self._transport.post(
            "/rest/2.0/xpan/file",
            params={"method": "filemanager", "opera": "delete"},
            data={"async": "0", "filelist": json.dumps([item.path])},
        )
        self._json(response, f"Delete {item.path}")
        logger.info(f"Deleted {item.path}")
