"""
OAuth credential handling for Drive Watch.

Loads, refreshes and saves the authorized-user token the monitor acts as.
Token acquisition itself is a one-off interactive step (sign_in).
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from ..constants import OAUTH_SCOPES
from ..errors import AuthError

logger = logging.getLogger(__name__)


class FileCredentialProvider:
    """
    Credential provider backed by an authorized-user token file.

    The same file is written back whenever a refresh produces a new
    access token, so restarts pick up the latest credential.
    """

    def __init__(self, token_path: Path, scopes: Optional[list[str]] = None):
        """
        Initialize credential provider.

        Args:
            token_path: Path to save/load token
            scopes: OAuth scopes the token was granted for
        """
        self.token_path = Path(token_path)
        self.scopes = scopes or OAUTH_SCOPES

    @property
    def has_token(self) -> bool:
        """Check if we have a saved token."""
        return self.token_path.exists()

    def get_credential(self) -> Credentials:
        """
        Load the stored credential.

        Raises:
            AuthError: if no token is stored or it cannot be parsed
        """
        if not self.token_path.exists():
            raise AuthError(f"No stored token at {self.token_path}. Run sign-in first.")
        try:
            return Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except (ValueError, OSError) as e:
            raise AuthError(f"Could not read token {self.token_path}: {e}")

    def refresh_if_needed(self, credential: Credentials) -> Credentials:
        """Refresh an expired credential in place and return it."""
        if credential.valid:
            return credential
        if not credential.refresh_token:
            raise AuthError("Access token expired and no refresh token is available")
        try:
            credential.refresh(Request())
        except GoogleAuthError as e:
            raise AuthError(f"Token refresh failed: {e}")
        return credential

    def persist(self, credential: Credentials):
        """Save credential to token file."""
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.token_path, "w") as f:
            f.write(credential.to_json())

    def sign_in(self, client_secrets_path: Path) -> Credentials:
        """
        Interactive sign-in flow. Opens browser for user to authorize.

        Returns:
            The new credential (already persisted)
        """
        if not Path(client_secrets_path).exists():
            raise AuthError(f"OAuth client secrets not found at {client_secrets_path}")

        flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets_path), self.scopes)
        credential = flow.run_local_server(port=0)
        self.persist(credential)
        logger.info("Signed in; token saved to %s", self.token_path)
        return credential

    def clear_token(self):
        """Remove saved token (force re-authentication)."""
        if self.token_path.exists():
            self.token_path.unlink()


class CredentialTokenSource:
    """
    Callable handing DriveClient a bearer token.

    Each call runs get -> refresh_if_needed and persists the credential
    when the refresh changed the access token.
    """

    def __init__(self, provider):
        self.provider = provider
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            credential = self.provider.get_credential()
            before = credential.token
            credential = self.provider.refresh_if_needed(credential)
            if not credential.token:
                raise AuthError("Credential has no access token")
            if credential.token != before:
                self.provider.persist(credential)
            return credential.token
