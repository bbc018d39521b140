"""At-rest encryption for secret bundle members.

The ``versions.env`` snapshot stored in a bundle can carry credentials, so
it is encrypted with a Fernet key (AES-128-CBC + HMAC-SHA256) kept outside
the bundle in the secrets directory.  The key is generated on first use and
must be copied to the target host through a separate channel.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.integrity.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

KEY_FILENAME = "bundle.key"
SECRET_FILE_MODE = 0o600
SECRETS_DIR_MODE = 0o700


class SecretsVault:
    """Encrypts and decrypts files with a key stored in *secrets_dir*.

    Parameters
    ----------
    secrets_dir:
        Directory holding ``bundle.key``.  Created with mode 0700 when the
        key is first generated.
    """

    def __init__(self, secrets_dir: Path) -> None:
        self._secrets_dir = secrets_dir

    def __repr__(self) -> str:
        return f"SecretsVault(secrets_dir={str(self._secrets_dir)!r})"

    @property
    def key_path(self) -> Path:
        return self._secrets_dir / KEY_FILENAME

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    def ensure_key(self) -> bytes:
        """Return the vault key, generating and storing it if absent."""
        if self.key_path.is_file():
            return self._read_key()

        try:
            self._secrets_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self._secrets_dir, SECRETS_DIR_MODE)
        except OSError as exc:
            raise BundleIOError(
                f"Cannot create secrets directory {self._secrets_dir}: {exc}"
            ) from exc

        key = Fernet.generate_key()
        atomic_write_bytes(self.key_path, key + b"\n", mode=SECRET_FILE_MODE)
        logger.info("Generated new bundle encryption key: %s", self.key_path)
        return key

    def _read_key(self) -> bytes:
        try:
            key = self.key_path.read_bytes().strip()
        except OSError as exc:
            raise BundleIOError(f"Cannot read encryption key {self.key_path}: {exc}") from exc
        if not key:
            raise InvalidInputError(f"Encryption key file is empty: {self.key_path}")
        return key

    def _fernet(self, create: bool) -> Fernet:
        key = self.ensure_key() if create else self._read_key()
        try:
            return Fernet(key)
        except ValueError as exc:
            raise InvalidInputError(f"Invalid encryption key in {self.key_path}") from exc

    # ------------------------------------------------------------------
    # File operations
    # ------------------------------------------------------------------

    def encrypt_file(self, source: Path, destination: Path) -> Path:
        """Encrypt *source* into *destination* (mode 0600, atomic).

        Raises
        ------
        BundleIOError
            If *source* cannot be read or *destination* cannot be written.
        """
        try:
            plaintext = source.read_bytes()
        except OSError as exc:
            raise BundleIOError(f"Cannot read secret file {source}: {exc}") from exc

        token = self._fernet(create=True).encrypt(plaintext)
        atomic_write_bytes(destination, token, mode=SECRET_FILE_MODE)
        logger.info("Stored encrypted snapshot of %s at %s", source.name, destination)
        return destination

    def decrypt_file(self, source: Path) -> bytes:
        """Return the plaintext of an encrypted file.

        Raises
        ------
        BundleIOError
            If the file or the key cannot be read.
        InvalidInputError
            If the ciphertext was produced with a different key or altered.
        """
        try:
            token = source.read_bytes()
        except OSError as exc:
            raise BundleIOError(f"Cannot read encrypted file {source}: {exc}") from exc
        try:
            return self._fernet(create=False).decrypt(token)
        except InvalidToken:
            raise InvalidInputError(
                f"Cannot decrypt {source}: wrong key or corrupted content"
            ) from None


__all__ = [
    "KEY_FILENAME",
    "SECRET_FILE_MODE",
    "SecretsVault",
]
