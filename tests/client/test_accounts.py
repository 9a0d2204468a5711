"""Tests for account settings and per-account wiring."""

import json
from pathlib import Path

import pytest

from notesync.client.accounts import (
    ACCOUNTS_FILE_NAME,
    TOKENS_DIR_NAME,
    AccountNotFoundError,
    AccountsManager,
    open_account,
    remove_account_tokens,
)
from notesync.client.auth import TokenStore
from notesync.client.providers import BaiduPanClient, OneDriveClient
from notesync.core.config import baidupan_oauth_config, onedrive_oauth_config
from notesync.core.crypto import generate_key
from notesync.core.models import TokenData, UserInfo
from notesync.core.types import Provider


class TestAccountsManager:
    """Tests for the accounts settings file."""

    def test_first_account_becomes_default(self, tmp_path: Path) -> None:
        """The first created account should be the default."""
        manager = AccountsManager(tmp_path)
        first = manager.create(Provider.ONEDRIVE, "Work")
        manager.create(Provider.BAIDUPAN, "Pan")

        assert manager.default_account_id == first.id
        assert first.sync_folder == "NoteSync"

    def test_baidu_default_folder(self, tmp_path: Path) -> None:
        """Baidu accounts should default to the app folder."""
        account = AccountsManager(tmp_path).create(Provider.BAIDUPAN, "Pan")
        assert account.sync_folder == "/apps/NoteSync"

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        """Changes should be written to remote-accounts.json."""
        manager = AccountsManager(tmp_path)
        account = manager.create(Provider.ONEDRIVE, "Work")
        manager.update_sync_settings(account.id, wifi_only=True, save_conflict_copy=False)
        manager.mark_connected(account.id, UserInfo("u1", "Ann"))

        reloaded = AccountsManager(tmp_path).get(account.id)

        assert reloaded.connected is True
        assert reloaded.user_info == UserInfo("u1", "Ann")
        assert reloaded.sync_settings.wifi_only is True
        assert reloaded.to_sync_settings().save_conflict_copy is False
        data = json.loads((tmp_path / ACCOUNTS_FILE_NAME).read_text())
        assert data["accounts"][0]["syncSettings"] == {"wifiOnly": True, "saveConflictCopy": False}

    def test_delete_reassigns_default(self, tmp_path: Path) -> None:
        """Deleting the default should promote the next account."""
        manager = AccountsManager(tmp_path)
        first = manager.create(Provider.ONEDRIVE, "A")
        second = manager.create(Provider.ONEDRIVE, "B")

        manager.delete(first.id)

        assert manager.default_account_id == second.id
        with pytest.raises(AccountNotFoundError):
            manager.get(first.id)

    def test_set_sync_folder_normalizes(self, tmp_path: Path) -> None:
        """Folder changes should be normalized like SyncSettings."""
        manager = AccountsManager(tmp_path)
        account = manager.create(Provider.ONEDRIVE, "A")
        assert manager.set_sync_folder(account.id, "Notes/Work/").sync_folder == "Notes/Work"

    def test_corrupt_file_resets(self, tmp_path: Path) -> None:
        """An unreadable settings file should load as empty."""
        (tmp_path / ACCOUNTS_FILE_NAME).write_text("[broken")
        manager = AccountsManager(tmp_path)
        assert manager.list_accounts() == []
        assert manager.get_default() is None


class TestOpenAccount:
    """Tests for per-account service wiring."""

    def test_wires_provider_client(self, tmp_path: Path) -> None:
        """Each provider tag should get its own client."""
        manager = AccountsManager(tmp_path)
        onedrive = manager.create(Provider.ONEDRIVE, "A")
        baidu = manager.create(Provider.BAIDUPAN, "B")
        key = generate_key()

        with open_account(onedrive, tmp_path, oauth=onedrive_oauth_config("cid"), key=key) as ctx:
            assert isinstance(ctx.provider, OneDriveClient)
            assert ctx.tokens.is_authenticated is False
        with open_account(baidu, tmp_path, oauth=baidupan_oauth_config("ak", "sk"), key=key) as ctx:
            assert isinstance(ctx.provider, BaiduPanClient)

    def test_tokens_isolated_per_account(self, tmp_path: Path) -> None:
        """Tokens saved for one account should not be visible to another."""
        manager = AccountsManager(tmp_path)
        a = manager.create(Provider.ONEDRIVE, "A")
        b = manager.create(Provider.ONEDRIVE, "B")
        key = generate_key()
        oauth = onedrive_oauth_config("cid")

        TokenStore(tmp_path / TOKENS_DIR_NAME, a.id, key).save(TokenData("ta", "ra", 1))
        with open_account(b, tmp_path, oauth=oauth, key=key) as ctx:
            assert ctx.tokens.is_authenticated is False
        with open_account(a, tmp_path, oauth=oauth, key=key) as ctx:
            assert ctx.tokens.is_authenticated is True

        remove_account_tokens(tmp_path, a.id)
        with open_account(a, tmp_path, oauth=oauth, key=key) as ctx:
            assert ctx.tokens.is_authenticated is False
