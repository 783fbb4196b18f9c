"""Symmetric encryption of JSON payloads with a locally generated 256-bit key."""
import json
import logging
import secrets
import threading
from typing import Any, Union

from jose import jwe
from jose.exceptions import JOSEError

from errors import EncryptionError, SecureStorageError
from secure_storage import SecureStorage

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_NAME = "encryptionKey"
KEY_BYTES = 32

# Compact JWE: direct key agreement, AES-256-GCM content encryption
JWE_ALGORITHM = "dir"
JWE_ENCRYPTION = "A256GCM"


class DataCipher:
    """Encrypts any JSON-serializable value into a compact JWE string.

    The key lives in secure storage as hex and is created on first use.
    ``allow_plaintext_fallback`` keeps the old behaviour of returning the
    unencrypted JSON when encryption fails; by default the failure is raised.
    """

    def __init__(self, storage: SecureStorage, allow_plaintext_fallback: bool = False):
        self.storage = storage
        self.allow_plaintext_fallback = allow_plaintext_fallback
        self._lock = threading.Lock()

    def generate_encryption_key(self) -> str:
        """Return the stored key, creating and persisting a random one if absent."""
        with self._lock:
            key = self.storage.get_item(ENCRYPTION_KEY_NAME)
            if not key:
                key = secrets.token_hex(KEY_BYTES)
                self.storage.set_item(ENCRYPTION_KEY_NAME, key)
                logger.info("Generated new encryption key")
            return key

    def _key_bytes(self) -> bytes:
        key = self.generate_encryption_key()
        try:
            raw = bytes.fromhex(key)
        except ValueError:
            raise EncryptionError("Stored encryption key is not valid hex")
        if len(raw) != KEY_BYTES:
            raise EncryptionError("Stored encryption key is not 256 bits")
        return raw

    def encrypt_data(self, value: Any) -> str:
        try:
            plaintext = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Value is not JSON serializable: {exc}") from exc

        try:
            token = jwe.encrypt(
                plaintext,
                self._key_bytes(),
                algorithm=JWE_ALGORITHM,
                encryption=JWE_ENCRYPTION,
            )
        except (JOSEError, EncryptionError, SecureStorageError) as exc:
            if self.allow_plaintext_fallback:
                logger.error(f"Error encrypting data, storing it unencrypted: {exc}")
                return plaintext
            raise EncryptionError(f"Could not encrypt data: {exc}") from exc

        return token.decode("ascii") if isinstance(token, bytes) else token

    def decrypt_data(self, blob: Union[str, bytes]) -> Any:
        """Decrypt a payload produced by ``encrypt_data``.

        Payloads that are plain JSON (written before encryption existed, or
        during a fallback) are parsed as-is.
        """
        try:
            plaintext = jwe.decrypt(blob, self._key_bytes())
            return json.loads(plaintext)
        except (JOSEError, EncryptionError, SecureStorageError, TypeError, ValueError) as exc:
            logger.warning(f"Decryption failed, reading payload as plain JSON: {exc}")

        try:
            return json.loads(blob)
        except (TypeError, ValueError) as exc:
            if self.allow_plaintext_fallback:
                logger.error(f"Error decrypting data: {exc}")
                return None
            raise EncryptionError("Payload is neither encrypted nor valid JSON") from exc

    def forget_key(self) -> None:
        with self._lock:
            self.storage.remove_item(ENCRYPTION_KEY_NAME)
