"""
Tests for the authentication module.

Tests OAuth2 authentication, token storage, refresh and account email
lookup with mocked Google libraries.
"""

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from pagen_sync.auth.google_auth import (
    CREDENTIALS_FILE,
    SCOPES,
    TOKEN_FILE,
    USERINFO_URL,
    AuthenticationError,
    GoogleAuth,
)


@pytest.fixture
def auth(tmp_path):
    """Create a GoogleAuth instance with temp config dir."""
    return GoogleAuth(config_dir=tmp_path)


def write_token(tmp_path, data=None):
    token_path = tmp_path / TOKEN_FILE
    token_path.write_text(json.dumps(data if data is not None else {"token": "t"}))
    return token_path


class TestGoogleAuthInitialization:
    """Tests for GoogleAuth initialization."""

    def test_default_config_dir(self):
        """Test the default config dir is in the user's home."""
        with patch.dict(os.environ, {}, clear=True):
            auth = GoogleAuth()
            assert auth.config_dir == (Path.home() / ".pagen-sync").resolve()

    def test_config_dir_from_environment_variable(self, tmp_path):
        """Test that config dir can be set via environment variable."""
        with patch.dict(os.environ, {"PAGEN_SYNC_CONFIG_DIR": str(tmp_path)}):
            assert GoogleAuth().config_dir == tmp_path.resolve()

    def test_paths(self, tmp_path):
        """Test credentials and token paths live in the config dir."""
        auth = GoogleAuth(config_dir=tmp_path)
        assert auth.credentials_path == tmp_path.resolve() / CREDENTIALS_FILE
        assert auth.token_path == tmp_path.resolve() / TOKEN_FILE

    def test_scopes_are_read_only(self):
        """Test every Google data scope is read-only."""
        data_scopes = [s for s in SCOPES if "googleapis.com/auth/" in s and "userinfo" not in s]
        assert len(data_scopes) == 3
        assert all(s.endswith(".readonly") for s in data_scopes)


class TestConfigDirCreation:
    """Tests for config directory creation."""

    def test_ensure_config_dir_creates_directory(self, tmp_path):
        """Test the config dir is created with owner-only permissions."""
        config_dir = tmp_path / "new_config"
        auth = GoogleAuth(config_dir=config_dir)

        auth._ensure_config_dir()

        assert config_dir.exists()
        assert config_dir.stat().st_mode & 0o777 == 0o700


class TestCredentialLoading:
    """Tests for credential loading from the token file."""

    def test_load_credentials_no_file(self, auth):
        """Test loading credentials when token file doesn't exist."""
        assert auth._load_credentials() is None

    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_load_credentials_from_file(self, mock_creds_class, auth, tmp_path):
        """Test loading credentials from existing token file."""
        token_path = write_token(tmp_path)
        mock_creds = MagicMock()
        mock_creds_class.from_authorized_user_file.return_value = mock_creds

        result = auth._load_credentials()

        mock_creds_class.from_authorized_user_file.assert_called_once_with(
            str(token_path.resolve()), SCOPES
        )
        assert result == mock_creds

    def test_load_credentials_invalid_json(self, auth, tmp_path):
        """Test loading credentials from invalid JSON file."""
        (tmp_path / TOKEN_FILE).write_text("invalid json {{{")
        assert auth._load_credentials() is None

    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_load_credentials_value_error(self, mock_creds_class, auth, tmp_path):
        """Test loading credentials when Credentials raises ValueError."""
        write_token(tmp_path)
        mock_creds_class.from_authorized_user_file.side_effect = ValueError("bad")

        assert auth._load_credentials() is None


class TestCredentialSaving:
    """Tests for credential saving."""

    def test_save_credentials_with_email(self, auth, tmp_path):
        """Test the token is saved together with the account email."""
        mock_creds = MagicMock()
        mock_creds.to_json.return_value = '{"token": "test"}'

        auth._save_credentials(mock_creds, email="me@example.com")

        saved = json.loads((tmp_path / TOKEN_FILE).read_text())
        assert saved == {"token": "test", "email": "me@example.com"}
        assert (tmp_path / TOKEN_FILE).stat().st_mode & 0o777 == 0o600

    def test_save_credentials_keeps_previous_email(self, auth, tmp_path):
        """Test refreshing a token keeps the stored email."""
        write_token(tmp_path, {"token": "old", "email": "me@example.com"})
        mock_creds = MagicMock()
        mock_creds.to_json.return_value = '{"token": "new"}'

        auth._save_credentials(mock_creds)

        assert auth.get_account_email() == "me@example.com"
        assert json.loads((tmp_path / TOKEN_FILE).read_text())["token"] == "new"


class TestCredentialRefresh:
    """Tests for credential refresh."""

    def test_refresh_credentials_no_refresh_token(self, auth):
        """Test refresh returns False when no refresh token available."""
        mock_creds = MagicMock()
        mock_creds.refresh_token = None
        assert auth._refresh_credentials(mock_creds) is False

    @patch("pagen_sync.auth.google_auth.Request")
    def test_refresh_credentials_failure(self, mock_request_class, auth):
        """Test credential refresh failure."""
        from google.auth.exceptions import RefreshError

        mock_creds = MagicMock()
        mock_creds.refresh_token = "refresh_token"
        mock_creds.refresh.side_effect = RefreshError("Refresh failed")

        assert auth._refresh_credentials(mock_creds) is False


class TestGetCredentials:
    """Tests for get_credentials."""

    def test_no_token_file(self, auth):
        """Test None is returned without a token."""
        assert auth.get_credentials() is None
        assert not auth.is_authenticated()

    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_valid_credentials(self, mock_creds_class, auth, tmp_path):
        """Test valid credentials are returned as-is."""
        write_token(tmp_path)
        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_creds_class.from_authorized_user_file.return_value = mock_creds

        assert auth.get_credentials() == mock_creds
        assert auth.is_authenticated()

    @patch("pagen_sync.auth.google_auth.Request")
    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_expired_refreshes(self, mock_creds_class, mock_request, auth, tmp_path):
        """Test expired credentials are refreshed and saved."""
        write_token(tmp_path, {"token": "old", "email": "me@example.com"})
        mock_creds = MagicMock()
        mock_creds.valid = False
        mock_creds.expired = True
        mock_creds.refresh_token = "refresh_token"
        mock_creds.to_json.return_value = '{"token": "refreshed"}'
        mock_creds_class.from_authorized_user_file.return_value = mock_creds

        assert auth.get_credentials() == mock_creds
        mock_creds.refresh.assert_called_once()
        saved = json.loads((tmp_path / TOKEN_FILE).read_text())
        assert saved == {"token": "refreshed", "email": "me@example.com"}

    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_invalid_without_refresh_token(self, mock_creds_class, auth, tmp_path):
        """Test unusable credentials yield None."""
        write_token(tmp_path)
        mock_creds = MagicMock()
        mock_creds.valid = False
        mock_creds.expired = True
        mock_creds.refresh_token = None
        mock_creds_class.from_authorized_user_file.return_value = mock_creds

        assert auth.get_credentials() is None


class TestAuthenticate:
    """Tests for authenticate."""

    @pytest.fixture
    def auth(self, tmp_path):
        """Create a GoogleAuth instance with a client secrets file."""
        (tmp_path / CREDENTIALS_FILE).write_text(
            json.dumps(
                {
                    "installed": {
                        "client_id": "test_client",
                        "client_secret": "test_secret",
                        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                        "token_uri": "https://oauth2.googleapis.com/token",
                    }
                }
            )
        )
        return GoogleAuth(config_dir=tmp_path)

    def test_missing_credentials_file(self, tmp_path):
        """Test authenticate raises FileNotFoundError when credentials missing."""
        with pytest.raises(FileNotFoundError, match="OAuth credentials file not found"):
            GoogleAuth(config_dir=tmp_path).authenticate()

    @patch("pagen_sync.auth.google_auth.Credentials")
    def test_uses_existing_credentials(self, mock_creds_class, auth, tmp_path):
        """Test authenticate returns existing valid credentials."""
        write_token(tmp_path)
        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_creds_class.from_authorized_user_file.return_value = mock_creds

        assert auth.authenticate() == mock_creds

    @patch("pagen_sync.auth.google_auth.AuthorizedSession")
    @patch("pagen_sync.auth.google_auth.InstalledAppFlow")
    def test_starts_oauth_flow(self, mock_flow_class, mock_session_class, auth, tmp_path):
        """Test the browser flow runs and the account email is stored."""
        mock_new_creds = MagicMock()
        mock_new_creds.to_json.return_value = '{"token": "new"}'
        mock_flow = mock_flow_class.from_client_secrets_file.return_value
        mock_flow.run_local_server.return_value = mock_new_creds
        session = mock_session_class.return_value
        session.get.return_value.json.return_value = {"email": "me@example.com"}

        result = auth.authenticate()

        assert result == mock_new_creds
        mock_flow.run_local_server.assert_called_once_with(port=0)
        session.get.assert_called_once_with(USERINFO_URL, timeout=auth.auth_timeout)
        session.close.assert_called_once()
        assert auth.get_account_email() == "me@example.com"

    @patch("pagen_sync.auth.google_auth.AuthorizedSession")
    @patch("pagen_sync.auth.google_auth.InstalledAppFlow")
    def test_email_lookup_failure_still_saves(
        self, mock_flow_class, mock_session_class, auth, tmp_path
    ):
        """Test a failing userinfo request does not fail authentication."""
        mock_new_creds = MagicMock()
        mock_new_creds.to_json.return_value = '{"token": "new"}'
        mock_flow_class.from_client_secrets_file.return_value.run_local_server.return_value = (
            mock_new_creds
        )
        mock_session_class.return_value.get.side_effect = requests.ConnectionError("down")

        auth.authenticate(force_reauth=True)

        assert (tmp_path / TOKEN_FILE).exists()
        assert auth.get_account_email() is None

    @patch("pagen_sync.auth.google_auth.InstalledAppFlow")
    def test_oauth_flow_failure(self, mock_flow_class, auth):
        """Test authenticate raises AuthenticationError on OAuth failure."""
        mock_flow_class.from_client_secrets_file.return_value.run_local_server.side_effect = (
            Exception("OAuth failed")
        )

        with pytest.raises(AuthenticationError, match="Failed to authenticate"):
            auth.authenticate(force_reauth=True)


class TestClearCredentials:
    """Tests for clear_credentials."""

    def test_removes_file(self, auth, tmp_path):
        """Test the token file is removed."""
        token_path = write_token(tmp_path)
        assert auth.clear_credentials() is True
        assert not token_path.exists()

    def test_nonexistent_file(self, auth):
        """Test clearing without a token."""
        assert auth.clear_credentials() is False


class TestGetAccountEmail:
    """Tests for get_account_email."""

    def test_no_token(self, auth):
        """Test None without a token."""
        assert auth.get_account_email() is None

    def test_no_email_field(self, auth, tmp_path):
        """Test None when the token has no email."""
        write_token(tmp_path)
        assert auth.get_account_email() is None

    def test_invalid_json(self, auth, tmp_path):
        """Test None when the token is unreadable."""
        (tmp_path / TOKEN_FILE).write_text("not json")
        assert auth.get_account_email() is None
