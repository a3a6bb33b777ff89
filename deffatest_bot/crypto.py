# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Encryption of secrets stored at rest.

Workspace bot tokens and linked Deffatest API keys are encrypted with
AES-256-GCM before they reach the record store. Stored values use the
format ``iv:tag:ciphertext`` with every segment hex-encoded; changing that
order requires re-encrypting every stored secret.
"""

import hashlib
import re
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from deffatest_bot.config import BotConfig
from deffatest_bot.errors import AuthenticationError, FormatError, ServerConfigurationError
from deffatest_bot.logging_config import get_logger


logger = get_logger(__name__)


IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_SEGMENT = re.compile(r"(?:[0-9a-fA-F]{2})+")


class SecretCipher:
    """
    Handles AES-256-GCM encryption and decryption of stored secrets.

    The key is read once at construction and never changes for the life of
    the instance. Every ``encrypt`` call draws a fresh random IV.
    """

    def __init__(self, encryption_key: Optional[str]):
        """
        Initialize the cipher with a 256-bit key.

        Args:
            encryption_key: 64 hex characters (32 bytes)

        Raises:
            ServerConfigurationError: If the key is missing or malformed
        """
        if not encryption_key:
            raise ServerConfigurationError("ENCRYPTION_KEY is not configured")

        try:
            key = bytes.fromhex(encryption_key)
        except ValueError:
            raise ServerConfigurationError(
                "ENCRYPTION_KEY must be 64 hex characters (32 bytes)"
            ) from None

        if len(encryption_key) != KEY_LENGTH * 2 or len(key) != KEY_LENGTH:
            raise ServerConfigurationError(
                "ENCRYPTION_KEY must be 64 hex characters (32 bytes)"
            )

        self._key = key

    @classmethod
    def from_config(cls, config: BotConfig) -> "SecretCipher":
        """Create a cipher from the process configuration."""
        return cls(config.encryption_key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a secret for storage.

        Args:
            plaintext: Secret to encrypt; empty or ``None`` passes through

        Returns:
            ``iv:tag:ciphertext`` hex triple, or ``None`` for empty input
        """
        if not plaintext:
            return None

        iv = secrets.token_bytes(IV_LENGTH)
        encryptor = Cipher(algorithms.AES(self._key), modes.GCM(iv)).encryptor()
        ciphertext = encryptor.update(plaintext.encode('utf-8')) + encryptor.finalize()

        return f"{iv.hex()}:{encryptor.tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, encoded: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored ``iv:tag:ciphertext`` triple.

        Args:
            encoded: Value produced by ``encrypt``; empty or ``None`` passes through

        Returns:
            Original plaintext, or ``None`` for empty input

        Raises:
            FormatError: If the value is not a well-formed triple
            AuthenticationError: If the tag does not verify (tampering or wrong key)
        """
        if not encoded:
            return None

        iv, tag, ciphertext = self._parse(encoded)

        decryptor = Cipher(algorithms.AES(self._key), modes.GCM(iv, tag)).decryptor()
        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag:
            logger.warning("Stored secret failed authentication")
            raise AuthenticationError("Encrypted secret failed authentication") from None

        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError:
            raise FormatError("Decrypted secret is not valid UTF-8") from None

    def hash(self, data: str) -> str:
        """
        One-way SHA-256 digest for fingerprinting, not for secret storage.

        Args:
            data: Value to hash

        Returns:
            64-character hex digest
        """
        return hashlib.sha256(data.encode('utf-8')).hexdigest()

    @staticmethod
    def generate_secure_token(length: int = 32) -> str:
        """Return ``length`` random bytes as a hex string."""
        return secrets.token_hex(length)

    @staticmethod
    def _parse(encoded: str) -> Tuple[bytes, bytes, bytes]:
        parts = encoded.split(':')
        if len(parts) != 3:
            raise FormatError(
                f"Encrypted secret must have 3 segments, got {len(parts)}"
            )

        for name, part in zip(("iv", "tag", "ciphertext"), parts):
            if not _HEX_SEGMENT.fullmatch(part):
                raise FormatError(f"Encrypted secret {name} segment is not valid hex")

        iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)

        if len(iv) != IV_LENGTH:
            raise FormatError(f"IV must be {IV_LENGTH} bytes")
        if len(tag) != AUTH_TAG_LENGTH:
            raise FormatError(f"Authentication tag must be {AUTH_TAG_LENGTH} bytes")

        return iv, tag, ciphertext
