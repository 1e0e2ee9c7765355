"""
AES-256-GCM codec for dataset chunks.

The key is derived with PBKDF2-HMAC-SHA256 from a passphrase and salt that
ship with the deployment, so every context configured with the same
constants can decrypt every other context's writes.

SECURITY NOTES:
- Nonces are 12 random bytes from os.urandom, fresh for every encryption
- Confidentiality holds against casual inspection of the storage only;
  whoever can read the deployed constants can derive the key

Dependencies:
- cryptography
"""

import asyncio
import json
import os
import threading
from typing import Any, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from common.constants import (
    AES_KEY_LENGTH_BYTES,
    DEFAULT_PASSPHRASE,
    DEFAULT_SALT,
    GCM_NONCE_LENGTH_BYTES,
    PBKDF2_ITERATIONS,
)
from common.exceptions import AuthenticationError
from common.logging_config import get_logger
from common.types import EncryptedBlock

logger = get_logger(__name__)


def derive_key(
    passphrase: str,
    salt: str,
    iterations: int = PBKDF2_ITERATIONS,
    length: int = AES_KEY_LENGTH_BYTES
) -> bytes:
    """
    Derive a symmetric key with PBKDF2-HMAC-SHA256.

    Deterministic: the same passphrase, salt and iteration count always give
    the same key.

    Args:
        passphrase: Passphrase constant
        salt: Salt constant
        iterations: PBKDF2 iteration count
        length: Key length in bytes (32 for AES-256)

    Returns:
        bytes: Derived key
    """
    if iterations < 1:
        raise ValueError("Iterations must be at least 1")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt.encode('utf-8'),
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode('utf-8'))


class EncryptionCodec:
    """
    Authenticated encryption of byte blocks and record batches.

    The derived key is memoized per instance. One instance belongs to one
    execution context.
    """

    def __init__(
        self,
        passphrase: str = DEFAULT_PASSPHRASE,
        salt: str = DEFAULT_SALT,
        iterations: int = PBKDF2_ITERATIONS
    ):
        self._passphrase = passphrase
        self._salt = salt
        self._iterations = iterations
        self._key: Optional[bytes] = None
        self._key_lock = threading.Lock()

    @property
    def key_derived(self) -> bool:
        return self._key is not None

    def derive_key(self) -> bytes:
        """Return the memoized key, deriving it on first use."""
        with self._key_lock:
            if self._key is None:
                self._key = derive_key(self._passphrase, self._salt, self._iterations)
                logger.debug(f"Derived AES-GCM key ({self._iterations} PBKDF2 iterations)")
            return self._key

    def encrypt(self, plaintext: bytes) -> EncryptedBlock:
        """
        Encrypt plaintext under a fresh random nonce.

        Args:
            plaintext: Bytes to seal

        Returns:
            EncryptedBlock with ciphertext (tag appended) and nonce
        """
        nonce = os.urandom(GCM_NONCE_LENGTH_BYTES)
        ciphertext = AESGCM(self.derive_key()).encrypt(nonce, plaintext, None)
        return EncryptedBlock(ciphertext=ciphertext, nonce=nonce)

    def decrypt(self, block: EncryptedBlock) -> bytes:
        """
        Decrypt and verify an encrypted block.

        Raises:
            AuthenticationError: If the tag does not verify (wrong key or tampering)
        """
        try:
            return AESGCM(self.derive_key()).decrypt(block.nonce, block.ciphertext, None)
        except InvalidTag as e:
            raise AuthenticationError("Encrypted block failed authentication") from e
        except ValueError as e:
            raise AuthenticationError(f"Malformed encrypted block: {e}") from e

    def encrypt_records(self, records: List[Any]) -> EncryptedBlock:
        """Seal a batch of records as a UTF-8 JSON array."""
        payload = json.dumps(records, ensure_ascii=False).encode('utf-8')
        return self.encrypt(payload)

    def decrypt_records(self, block: EncryptedBlock) -> List[Any]:
        """
        Open a batch sealed by encrypt_records.

        Raises:
            AuthenticationError: If the block does not verify or does not hold a JSON array
        """
        plaintext = self.decrypt(block)
        try:
            records = json.loads(plaintext.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise AuthenticationError(f"Decrypted block is not a record batch: {e}") from e
        if not isinstance(records, list):
            raise AuthenticationError("Decrypted block is not a record batch")
        return records

    async def warm_up(self) -> None:
        """Derive the key in the default executor so the event loop stays free."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.derive_key)

    async def encrypt_records_async(self, records: List[Any]) -> EncryptedBlock:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.encrypt_records, records)

    async def decrypt_records_async(self, block: EncryptedBlock) -> List[Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.decrypt_records, block)
