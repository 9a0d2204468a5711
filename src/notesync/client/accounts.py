"""Remote accounts and per-account service wiring.

This module provides:
- Account / AccountSyncSettings: one connected cloud account
- AccountsManager: the ``remote-accounts.json`` settings file
- open_account: builds TokenStore -> TokenManager -> RetryingTransport ->
  ProviderClient for one account, passing each dependency explicitly
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from notesync.client.auth import AuthorizationFlow, TokenManager, TokenStore
from notesync.client.keystore import KeyStore
from notesync.client.providers import ProviderClient, create_provider_client, create_transport
from notesync.client.transport import RetryingTransport
from notesync.core.config import BAIDU_DEFAULT_FOLDER, OAuthConfig, SyncSettings, load_oauth_config
from notesync.core.models import UserInfo, now_ms
from notesync.core.types import Provider

logger = logging.getLogger(__name__)

ACCOUNTS_FILE_NAME = "remote-accounts.json"
DEFAULT_ONEDRIVE_FOLDER = "NoteSync"
TOKENS_DIR_NAME = "tokens"


class AccountNotFoundError(KeyError):
    """No account with the given id."""


@dataclass
class AccountSyncSettings:
    """Per-account sync flags."""

    wifi_only: bool = False
    save_conflict_copy: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountSyncSettings:
        return cls(
            wifi_only=bool(data.get("wifiOnly", False)),
            save_conflict_copy=bool(data.get("saveConflictCopy", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"wifiOnly": self.wifi_only, "saveConflictCopy": self.save_conflict_copy}


@dataclass
class Account:
    """A configured remote storage account."""

    id: str
    provider: Provider
    display_name: str
    sync_folder: str
    connected: bool = False
    sync_settings: AccountSyncSettings = field(default_factory=AccountSyncSettings)
    user_info: UserInfo | None = None
    created_at: int = 0
    last_used_at: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        """Create from the settings file representation."""
        user_info = data.get("userInfo")
        return cls(
            id=data["id"],
            provider=Provider(data["provider"]),
            display_name=data.get("displayName", ""),
            sync_folder=data.get("syncFolder", ""),
            connected=bool(data.get("connected", False)),
            sync_settings=AccountSyncSettings.from_dict(data.get("syncSettings") or {}),
            user_info=UserInfo.from_dict(user_info) if user_info else None,
            created_at=int(data.get("createdAt", 0)),
            last_used_at=int(data.get("lastUsedAt", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "provider": self.provider.value,
            "displayName": self.display_name,
            "syncFolder": self.sync_folder,
            "connected": self.connected,
            "syncSettings": self.sync_settings.to_dict(),
            "createdAt": self.created_at,
            "lastUsedAt": self.last_used_at,
        }
        if self.user_info is not None:
            result["userInfo"] = self.user_info.to_dict()
        return result

    def to_sync_settings(self) -> SyncSettings:
        """Settings consumed by the sync engine."""
        return SyncSettings(
            sync_folder=self.sync_folder,
            wifi_only=self.sync_settings.wifi_only,
            save_conflict_copy=self.sync_settings.save_conflict_copy,
        )


def generate_account_id(provider: Provider) -> str:
    """Return ``<provider>-<ms>-<random>``."""
    return f"{provider.value}-{now_ms()}-{secrets.token_hex(4)}"


class AccountsManager:
    """Persists accounts and the default account id in one JSON file."""

    def __init__(self, config_dir: Path) -> None:
        self._path = Path(config_dir) / ACCOUNTS_FILE_NAME
        self._accounts: list[Account] = []
        self._default_id: str | None = None
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def default_account_id(self) -> str | None:
        return self._default_id

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            self._accounts = [Account.from_dict(a) for a in data.get("accounts", [])]
            self._default_id = data.get("defaultAccountId")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Resetting unreadable accounts file {self._path}: {e}")
            self._accounts = []
            self._default_id = None

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "accounts": [a.to_dict() for a in self._accounts],
            "defaultAccountId": self._default_id,
        }
        tmp_path = self._path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        tmp_path.replace(self._path)

    def list_accounts(self) -> list[Account]:
        return list(self._accounts)

    def get(self, account_id: str) -> Account:
        for account in self._accounts:
            if account.id == account_id:
                return account
        raise AccountNotFoundError(account_id)

    def get_default(self) -> Account | None:
        if self._default_id is None:
            return None
        try:
            return self.get(self._default_id)
        except AccountNotFoundError:
            return None

    def create(
        self,
        provider: Provider,
        display_name: str,
        sync_folder: str | None = None,
    ) -> Account:
        """Add an account; the first account becomes the default."""
        if sync_folder is None:
            sync_folder = BAIDU_DEFAULT_FOLDER if provider is Provider.BAIDUPAN else DEFAULT_ONEDRIVE_FOLDER
        timestamp = now_ms()
        account = Account(
            id=generate_account_id(provider),
            provider=provider,
            display_name=display_name,
            sync_folder=sync_folder,
            created_at=timestamp,
            last_used_at=timestamp,
        )
        self._accounts.append(account)
        if self._default_id is None:
            self._default_id = account.id
        self._save()
        logger.info(f"Created {provider.value} account {account.id}")
        return account

    def delete(self, account_id: str) -> None:
        """Remove an account; the default moves to the first remaining one."""
        account = self.get(account_id)
        self._accounts.remove(account)
        if self._default_id == account_id:
            self._default_id = self._accounts[0].id if self._accounts else None
        self._save()
        logger.info(f"Deleted account {account_id}")

    def set_default(self, account_id: str) -> None:
        self.get(account_id)
        self._default_id = account_id
        self._save()

    def set_sync_folder(self, account_id: str, folder: str) -> Account:
        account = self.get(account_id)
        account.sync_folder = SyncSettings(folder).sync_folder
        self._save()
        return account

    def update_sync_settings(
        self,
        account_id: str,
        wifi_only: bool | None = None,
        save_conflict_copy: bool | None = None,
    ) -> Account:
        account = self.get(account_id)
        if wifi_only is not None:
            account.sync_settings.wifi_only = wifi_only
        if save_conflict_copy is not None:
            account.sync_settings.save_conflict_copy = save_conflict_copy
        self._save()
        return account

    def mark_connected(self, account_id: str, user_info: UserInfo) -> Account:
        account = self.get(account_id)
        account.connected = True
        account.user_info = user_info
        account.last_used_at = now_ms()
        self._save()
        return account

    def mark_disconnected(self, account_id: str) -> Account:
        account = self.get(account_id)
        account.connected = False
        self._save()
        return account

    def touch(self, account_id: str) -> None:
        self.get(account_id).last_used_at = now_ms()
        self._save()


@dataclass
class AccountContext:
    """Services bound to one account."""

    account: Account
    tokens: TokenManager
    transport: RetryingTransport
    provider: ProviderClient

    def close(self) -> None:
        self.transport.close()
        self.tokens.close()

    def __enter__(self) -> AccountContext:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def open_account(
    account: Account,
    config_dir: Path,
    flow: AuthorizationFlow | None = None,
    oauth: OAuthConfig | None = None,
    key: bytes | None = None,
) -> AccountContext:
    """Wire the token manager, transport and provider client for an account.

    Args:
        account: The account to open.
        config_dir: Directory holding token files and the keyfile.
        flow: Consent surface for authenticate(); optional for syncing.
        oauth: Provider application settings (default from environment).
        key: Token storage key (default from the OS keyring).
    """
    config_dir = Path(config_dir)
    oauth = oauth or load_oauth_config(account.provider)
    key = key or KeyStore(config_dir).storage_key
    store = TokenStore(config_dir / TOKENS_DIR_NAME, account.id, key)
    tokens = TokenManager(oauth, store, flow=flow)
    transport = create_transport(account.provider, tokens, timeout=oauth.timeout)
    provider = create_provider_client(account.provider, transport)
    return AccountContext(account=account, tokens=tokens, transport=transport, provider=provider)


def remove_account_tokens(config_dir: Path, account_id: str) -> None:
    """Delete an account's token file, if any."""
    path = TokenStore.path_for(Path(config_dir) / TOKENS_DIR_NAME, account_id)
    path.unlink(missing_ok=True)
