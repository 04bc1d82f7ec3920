"""At-rest encryption for provider credentials.

Uses Fernet symmetric encryption from the ``cryptography`` library.
Encrypted values carry an ``ENC:`` prefix, so credentials stored in plaintext
by older versions still read back and are encrypted on their next write.

The Fernet key lives in ``<data_dir>/.key`` with owner-only permissions,
separate from the collection files.
"""

import logging
import os
import platform
import subprocess
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENC_PREFIX = "ENC:"


def set_strict_permissions(filepath: Path) -> None:
    """Set owner-only read/write permissions on *filepath*.

    Failures are logged as warnings; a permissive file is still usable.
    """
    try:
        if platform.system() == "Windows":
            username = os.environ.get("USERNAME", "")
            if not username:
                logger.warning(
                    "Cannot set permissions on %s: USERNAME env var not set",
                    filepath,
                )
                return
            result = subprocess.run(
                ["icacls", str(filepath), "/inheritance:r", "/grant:r", f"{username}:F"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode != 0:
                logger.warning("icacls failed for %s: %s", filepath, result.stderr.strip())
        else:
            os.chmod(str(filepath), 0o600)
    except FileNotFoundError:
        logger.warning("Cannot set permissions: %s does not exist", filepath)
    except subprocess.TimeoutExpired:
        logger.warning("Timeout setting permissions on %s", filepath)
    except OSError as e:
        logger.warning("Failed to set permissions on %s: %s", filepath, e)


def is_encrypted(value: str) -> bool:
    return bool(value) and value.startswith(ENC_PREFIX)


class SecretBox:
    """Encrypts and decrypts credential strings with a per-data-dir key."""

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self._key_file = Path(data_dir) / ".key"
        self._fernet: Optional[Fernet] = None

    def _get_or_create_key(self) -> bytes:
        self._key_file.parent.mkdir(parents=True, exist_ok=True)
        if self._key_file.exists():
            key = self._key_file.read_bytes().strip()
            try:
                Fernet(key)
                return key
            except ValueError:
                logger.warning("Existing .key file is invalid, generating a new key")

        key = Fernet.generate_key()
        self._key_file.write_bytes(key)
        set_strict_permissions(self._key_file)
        logger.info("Generated new encryption key at %s", self._key_file)
        return key

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._get_or_create_key())
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a non-empty string into ``"ENC:<fernet-token>"``."""
        if not plaintext or is_encrypted(plaintext):
            return plaintext
        token = self._get_fernet().encrypt(plaintext.encode("utf-8"))
        return ENC_PREFIX + token.decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an ``"ENC:..."`` string.

        Plaintext passes through unchanged.  A token that no longer decrypts
        (key replaced or file corrupted) reads as an empty credential so the
        user can re-enter it.
        """
        if not is_encrypted(ciphertext):
            return ciphertext
        token = ciphertext[len(ENC_PREFIX):]
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.warning(
                "Failed to decrypt a stored credential (key may have changed); "
                "treating it as empty"
            )
            return ""
