"""Tests for the Baidu Netdisk xpan client."""

import json
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from notesync.client.providers import create_transport
from notesync.client.providers.base import RemoteItem
from notesync.client.providers.baidupan import BaiduPanClient, raise_for_errno
from notesync.core.crypto import md5_hex
from notesync.core.errors import (
    APIError,
    AuthenticationError,
    NotFoundError,
    QuotaExceededError,
    TransportError,
    ValidationError,
)
from notesync.core.types import Provider


class StaticToken:
    def get_access_token(self) -> str:
        return "baidu-token"

    def refresh_access_token(self) -> str:
        return "baidu-token"

    def disconnect(self) -> None:
        pass


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def client():  # type: ignore[no-untyped-def]
    transport = create_transport(Provider.BAIDUPAN, StaticToken(), sleep=lambda _: None)
    yield BaiduPanClient(transport)
    transport.close()


class TestErrnoMapping:
    """Tests for errno to error mapping."""

    @pytest.mark.parametrize(
        ("errno", "error_type"),
        [
            (-6, AuthenticationError),
            (111, AuthenticationError),
            (-10, QuotaExceededError),
            (-9, NotFoundError),
            (31066, NotFoundError),
            (31034, TransportError),
            (2, APIError),
        ],
    )
    def test_errno_mapping(self, errno: int, error_type: type) -> None:
        """Provider errnos should map onto the shared error taxonomy."""
        with pytest.raises(error_type) as exc_info:
            raise_for_errno({"errno": errno, "errmsg": "nope"}, "Test")
        assert exc_info.value.provider_code == errno

    def test_zero_errno_passes(self) -> None:
        """errno 0 should return the payload."""
        assert raise_for_errno({"errno": 0, "list": []}, "Test") == {"errno": 0, "list": []}


class TestUpload:
    """Tests for precreate / slice upload / create."""

    def test_upload_single_slice(self, httpx_mock, client, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """A small file should precreate, upload slice 0 and create."""
        path = tmp_path / "n1.note"
        data = b'{"id": "n1"}'
        path.write_bytes(data)
        httpx_mock.add_response(method="POST", json={"errno": 0, "uploadid": "up-1", "block_list": []})
        httpx_mock.add_response(method="POST", json={"md5": md5_hex(data)})
        httpx_mock.add_response(
            method="POST",
            json={
                "errno": 0,
                "fs_id": 987,
                "path": "/apps/NoteSync/n1.note",
                "size": len(data),
                "mtime": 1_700_000_000,
            },
        )
        progress: list[tuple[int, int]] = []

        item = client.upload_file(path, "/apps/NoteSync/n1.note", lambda c, t: progress.append((c, t)))

        precreate, upload, create = httpx_mock.get_requests()
        assert precreate.url.params["method"] == "precreate"
        assert precreate.url.params["access_token"] == "baidu-token"
        assert precreate.headers["User-Agent"] == "pan.baidu.com"
        assert json.loads(form(precreate)["block_list"]) == [md5_hex(data)]
        assert upload.url.host == "d.pcs.baidu.com"
        assert upload.url.params["uploadid"] == "up-1"
        assert upload.url.params["partseq"] == "0"
        assert b"chunk_0" in upload.content
        assert create.url.params["method"] == "create"
        assert form(create)["uploadid"] == "up-1"
        assert item.id == "987"
        assert item.name == "n1.note"
        assert item.size == len(data)
        assert item.modified_at == 1_700_000_000_000
        assert progress == [(1, 1)]

    def test_upload_only_needed_slices(self, httpx_mock, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """Only the slice indices named by precreate should be sent."""
        transport = create_transport(Provider.BAIDUPAN, StaticToken(), sleep=lambda _: None)
        client = BaiduPanClient(transport)
        path = tmp_path / "big.note"
        path.write_bytes(b"a" * (4 * 1024 * 1024) + b"b" * 10)
        httpx_mock.add_response(method="POST", json={"errno": 0, "uploadid": "up-2", "block_list": [1]})
        httpx_mock.add_response(method="POST", json={"md5": "x"})
        httpx_mock.add_response(
            method="POST", json={"errno": 0, "fs_id": 5, "path": "/apps/NoteSync/big.note", "size": 4194314}
        )

        client.upload_file(path, "/apps/NoteSync/big.note")
        transport.close()

        requests = httpx_mock.get_requests()
        assert len(requests) == 3
        assert requests[1].url.params["partseq"] == "1"
        assert len(json.loads(form(requests[2])["block_list"])) == 2

    def test_empty_file_rejected(self, httpx_mock, client, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """Zero-byte files should fail before any request."""
        path = tmp_path / "empty.note"
        path.write_bytes(b"")

        with pytest.raises(ValidationError):
            client.upload_file(path, "/apps/NoteSync/empty.note")
        assert httpx_mock.get_requests() == []

    def test_precreate_errno_raises(self, httpx_mock, client, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """A quota errno from precreate should surface as QuotaExceededError."""
        path = tmp_path / "n.note"
        path.write_bytes(b"data")
        httpx_mock.add_response(method="POST", json={"errno": -10})

        with pytest.raises(QuotaExceededError):
            client.upload_file(path, "/apps/NoteSync/n.note")


class TestOtherOperations:
    """Tests for listing, download and folders."""

    def test_list_pages_of_100(self, httpx_mock, client) -> None:  # type: ignore[no-untyped-def]
        """Listing should request further pages while pages are full."""
        full = [
            {"fs_id": i, "server_filename": f"{i}.note", "path": f"/apps/NoteSync/{i}.note", "isdir": 0}
            for i in range(100)
        ]
        httpx_mock.add_response(method="GET", json={"errno": 0, "list": full})
        httpx_mock.add_response(
            method="GET",
            json={"errno": 0, "list": [{"fs_id": 100, "server_filename": "x.note", "server_mtime": 5}]},
        )

        items = client.list_files("/apps/NoteSync")

        first, second = httpx_mock.get_requests()
        assert len(items) == 101
        assert first.url.params["dir"] == "/apps/NoteSync"
        assert second.url.params["start"] == "100"
        assert items[-1].modified_at == 5000

    def test_download_via_dlink(self, httpx_mock, client, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """Should resolve the dlink and fetch it with the access token."""
        httpx_mock.add_response(
            method="GET", json={"errno": 0, "list": [{"fs_id": 7, "dlink": "https://d.pcs.baidu.com/file/7"}]}
        )
        httpx_mock.add_response(method="GET", content=b"note-bytes")
        target = tmp_path / "out"

        client.download_file("7", target)

        metas, fetch = httpx_mock.get_requests()
        assert metas.url.params["fsids"] == "[7]"
        assert fetch.url.host == "d.pcs.baidu.com"
        assert fetch.url.params["access_token"] == "baidu-token"
        assert target.read_bytes() == b"note-bytes"

    def test_create_existing_folder(self, httpx_mock, client) -> None:  # type: ignore[no-untyped-def]
        """errno -8 on folder creation means it already exists."""
        httpx_mock.add_response(method="POST", json={"errno": -8})

        folder = client.create_folder("/apps/NoteSync")

        assert folder.is_folder is True
        assert folder.path == "/apps/NoteSync"
        assert form(httpx_mock.get_request())["isdir"] == "1"

    def test_get_quota(self, httpx_mock, client) -> None:  # type: ignore[no-untyped-def]
        """Should read total, used and free bytes."""
        httpx_mock.add_response(method="GET", json={"errno": 0, "total": 100, "used": 40, "free": 60})

        quota = client.get_quota()

        assert (quota.total, quota.used, quota.remaining) == (100, 40, 60)

    def test_delete_file(self, httpx_mock, client) -> None:  # type: ignore[no-untyped-def]
        """Should delete by path through filemanager."""
        httpx_mock.add_response(method="POST", json={"errno": 0, "info": []})

        client.delete_file(RemoteItem(id="7", name="n1.note", path="/apps/NoteSync/n1.note"))

        request = httpx_mock.get_request()
        assert request.url.path == "/rest/2.0/xpan/file"
        assert request.url.params["method"] == "filemanager"
        assert request.url.params["opera"] == "delete"
        assert request.url.params["access_token"] == "baidu-token"
        sent = form(request)
        assert sent["async"] == "0"
        assert json.loads(sent["filelist"]) == ["/apps/NoteSync/n1.note"]

    def test_delete_requires_path(self, client) -> None:  # type: ignore[no-untyped-def]
        """Baidu deletes by path, so an item without one is rejected locally."""
        with pytest.raises(ValidationError):
            client.delete_file(RemoteItem(id="7", name="n1.note"))
