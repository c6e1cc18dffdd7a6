"""
OAuth2 authentication module for the Google data sources.

Provides OAuth 2.0 authentication with support for:
- Read-only access to Gmail, Google Calendar and Google Contacts
- Automatic token refresh
- Secure credential storage in the configuration directory
"""

import json
import logging
from pathlib import Path
from typing import Optional

import requests
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from pagen_sync.utils.paths import resolve_config_dir

# OAuth2 scopes; every source is read-only
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",  # Required by Google when requesting userinfo.email
]

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

TOKEN_FILE = "token.json"
CREDENTIALS_FILE = "credentials.json"

# Default auth timeout for network requests (in seconds)
DEFAULT_AUTH_TIMEOUT = 10

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


class GoogleAuth:
    """
    OAuth2 authentication manager for the user's Google account.

    Attributes:
        config_dir: Directory for storing credentials and tokens
        credentials_path: Path to OAuth client credentials file
        token_path: Path to the stored user token

    Usage:
        auth = GoogleAuth()
        creds = auth.authenticate()

        # Later, without user interaction
        creds = auth.get_credentials()
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        auth_timeout: int = DEFAULT_AUTH_TIMEOUT,
    ):
        """
        Initialize the authentication manager.

        Args:
            config_dir: Directory for storing credentials and tokens.
                       Defaults to ~/.pagen-sync/ or $PAGEN_SYNC_CONFIG_DIR
            auth_timeout: Timeout in seconds for network requests
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.credentials_path = self.config_dir / CREDENTIALS_FILE
        self.token_path = self.config_dir / TOKEN_FILE
        self.auth_timeout = auth_timeout

    def _ensure_config_dir(self) -> None:
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, mode=0o700)
            logger.debug(f"Created config directory: {self.config_dir}")

    def _load_credentials(self) -> Optional[Credentials]:
        """Load credentials from the token file if it exists."""
        if not self.token_path.exists():
            logger.debug("No token file found")
            return None

        try:
            creds: Credentials = Credentials.from_authorized_user_file(
                str(self.token_path), SCOPES
            )
            return creds
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid token file: {e}")
            return None

    def _save_credentials(self, creds: Credentials, email: Optional[str] = None) -> None:
        """Save credentials (and the account email) with owner-only permissions."""
        self._ensure_config_dir()

        token_data = json.loads(creds.to_json())
        if email:
            token_data["email"] = email
        elif self.token_path.exists():
            previous = self.get_account_email()
            if previous:
                token_data["email"] = previous

        self.token_path.write_text(json.dumps(token_data))
        self.token_path.chmod(0o600)
        logger.debug(f"Saved credentials to {self.token_path}")

    def _refresh_credentials(self, creds: Credentials) -> bool:
        if not creds.refresh_token:
            logger.debug("No refresh token available")
            return False

        try:
            creds.refresh(Request())
            logger.debug("Successfully refreshed credentials")
            return True
        except RefreshError as e:
            logger.warning(f"Failed to refresh credentials: {e}")
            return False

    def _fetch_user_email(self, creds: Credentials) -> Optional[str]:
        """
        Fetch the authenticated user's email address from Google.

        Args:
            creds: Valid credentials with userinfo.email scope

        Returns:
            Email address if available, None otherwise
        """
        session = AuthorizedSession(creds)
        try:
            response = session.get(USERINFO_URL, timeout=self.auth_timeout)
            response.raise_for_status()
            email: Optional[str] = response.json().get("email")
            return email
        except requests.RequestException as e:
            logger.debug(f"Failed to fetch user email: {e}")
            return None
        finally:
            session.close()

    def get_credentials(self) -> Optional[Credentials]:
        """
        Get valid credentials if available, refreshing them when expired.

        Returns:
            Valid Credentials object, or None if not available
        """
        creds = self._load_credentials()
        if creds is None:
            return None

        if creds.valid:
            return creds

        if creds.expired and creds.refresh_token and self._refresh_credentials(creds):
            self._save_credentials(creds)
            return creds

        return None

    def authenticate(self, force_reauth: bool = False) -> Credentials:
        """
        Authenticate the Google account.

        Returns existing valid credentials unless force_reauth is set;
        otherwise runs the installed-app OAuth flow in the browser.

        Args:
            force_reauth: If True, ignore existing credentials

        Returns:
            Valid Credentials object

        Raises:
            AuthenticationError: If authentication fails
            FileNotFoundError: If credentials.json is not found
        """
        if not force_reauth:
            creds = self.get_credentials()
            if creds is not None:
                logger.info("Using existing credentials")
                return creds

        if not self.credentials_path.exists():
            raise FileNotFoundError(
                f"OAuth credentials file not found: {self.credentials_path}\n"
                "Please download your OAuth client credentials from "
                "Google Cloud Console and save them to this location."
            )

        logger.info("Starting OAuth flow")

        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                str(self.credentials_path), SCOPES
            )
            new_creds: Credentials = flow.run_local_server(port=0)
        except Exception as e:
            logger.error(f"Authentication failed: {e}")
            raise AuthenticationError(f"Failed to authenticate: {e}") from e

        email = self._fetch_user_email(new_creds)
        self._save_credentials(new_creds, email=email)
        logger.info(f"Successfully authenticated {email or 'Google account'}")
        return new_creds

    def is_authenticated(self) -> bool:
        return self.get_credentials() is not None

    def clear_credentials(self) -> bool:
        """
        Remove the stored token.

        Returns:
            True if a token was removed, False if none existed
        """
        if self.token_path.exists():
            self.token_path.unlink()
            logger.info("Cleared stored credentials")
            return True
        return False

    def get_account_email(self) -> Optional[str]:
        """Email address stored alongside the token, if any."""
        if not self.token_path.exists():
            return None
        try:
            token_data: dict[str, str] = json.loads(self.token_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Could not read token file: {e}")
            return None
        return token_data.get("email")
