"""Tests for shared configuration classes."""

import pytest

from notesync.core.config import (
    ENV_BAIDU_CLIENT_ID,
    ENV_BAIDU_CLIENT_SECRET,
    ENV_ONEDRIVE_CLIENT_ID,
    ConfigError,
    OAuthConfig,
    SyncSettings,
    load_oauth_config,
)
from notesync.core.types import Provider


class TestOAuthConfig:
    """Tests for OAuth settings."""

    def test_onedrive_from_env(self) -> None:
        """Should build OneDrive settings from the client id variable."""
        config = load_oauth_config(Provider.ONEDRIVE, {ENV_ONEDRIVE_CLIENT_ID: "cid"})

        assert config.client_id == "cid"
        assert config.token_request_method == "POST"
        assert "offline_access" in config.scope
        assert config.force_params == {"prompt": "select_account"}

    def test_baidu_from_env(self) -> None:
        """Should build Baidu settings with secret and query-token style."""
        env = {ENV_BAIDU_CLIENT_ID: "ak", ENV_BAIDU_CLIENT_SECRET: "sk"}
        config = load_oauth_config(Provider.BAIDUPAN, env)

        assert config.client_secret == "sk"
        assert config.token_request_method == "GET"
        assert config.token_in_query is True
        assert config.force_params == {"force_login": "1"}

    def test_missing_client_id(self) -> None:
        """Should raise ConfigError when credentials are not configured."""
        with pytest.raises(ConfigError):
            load_oauth_config(Provider.ONEDRIVE, {})

    def test_baidu_requires_secret(self) -> None:
        """Baidu is a confidential client and needs its secret."""
        with pytest.raises(ConfigError):
            load_oauth_config(Provider.BAIDUPAN, {ENV_BAIDU_CLIENT_ID: "ak"})

    def test_rejects_unknown_method(self) -> None:
        """Only GET and POST token requests are supported."""
        with pytest.raises(ConfigError):
            OAuthConfig(
                provider=Provider.ONEDRIVE,
                client_id="cid",
                authorize_url="https://a",
                token_url="https://t",
                user_info_url="https://u",
                redirect_uri="http://localhost/cb",
                scope="s",
                token_request_method="PATCH",
            )


class TestSyncSettings:
    """Tests for SyncSettings normalization."""

    @pytest.mark.parametrize(
        ("folder", "expected"),
        [("NoteSync/", "NoteSync"), (" /apps/NoteSync/ ", "/apps/NoteSync"), ("/", "/"), ("", "")],
    )
    def test_folder_normalized(self, folder: str, expected: str) -> None:
        """Trailing slashes and whitespace should be stripped, root kept."""
        assert SyncSettings(folder).sync_folder == expected
