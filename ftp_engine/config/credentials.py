"""Secure credential storage for the FTP engine.

Passwords for "address + username" pairs are kept in the system
keyring (Windows Credential Manager, macOS Keychain, Linux Secret
Service), never in the settings file.
"""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger("ftp_engine.credentials")


class CredentialManager:
    """Keyring-backed password store keyed by server address and user."""

    SERVICE_NAME = "ftp-engine"

    def __init__(self, service_name: str = SERVICE_NAME):
        """
        Initialize the credential manager.

        Args:
            service_name: Keyring service the passwords are filed under
        """
        self._service_name = service_name

    @staticmethod
    def make_key(address: str, username: str) -> str:
        """Keyring entry name, e.g. "anonymous@ftp.example.com:2121"."""
        return f"{username}@{address.strip().lower()}"

    def save_password(self, address: str, username: str, password: str) -> bool:
        """
        Store a password.

        Returns:
            True if the keyring accepted it
        """
        try:
            keyring.set_password(self._service_name, self.make_key(address, username), password)
            return True
        except KeyringError as e:
            logger.warning(f"Could not store password for {username}@{address}: {e}")
            return False

    def get_password(self, address: str, username: str) -> Optional[str]:
        """
        Look up a stored password.

        Returns:
            Password string or None if absent or the keyring is unavailable
        """
        try:
            return keyring.get_password(self._service_name, self.make_key(address, username))
        except KeyringError as e:
            logger.warning(f"Keyring lookup failed for {username}@{address}: {e}")
            return None

    def delete_password(self, address: str, username: str) -> bool:
        """
        Forget a stored password.

        Returns:
            True if an entry was removed
        """
        try:
            keyring.delete_password(self._service_name, self.make_key(address, username))
            return True
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            logger.warning(f"Could not delete password for {username}@{address}: {e}")
            return False

    def resolve_password(self, address: str, username: str, password: Optional[str]) -> str:
        """
        Pick the password to log in with.

        An explicit password wins; anonymous logins (no username) never
        consult the keyring.

        Returns:
            The password, or "" when none is known
        """
        if password:
            return password
        if not username:
            return ""
        return self.get_password(address, username) or ""
