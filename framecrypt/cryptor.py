"""AES-128-GCM frame cryptor with truncated authentication tags."""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

__all__ = [
    "AES_GCM_128_KEY_BYTES",
    "AES_GCM_128_NONCE_BYTES",
    "AES_GCM_128_TRUNCATED_TAG_BYTES",
    "DecryptionError",
    "AesGcmCryptor",
    "create_cryptor",
]

log = logging.getLogger(__name__)

AES_GCM_128_KEY_BYTES = 16
AES_GCM_128_NONCE_BYTES = 12
AES_GCM_128_TRUNCATED_TAG_BYTES = 8


class DecryptionError(Exception):
    """Raised when a ciphertext fails authentication."""


class AesGcmCryptor:
    """Encrypts and decrypts with AES-128-GCM using an 8-byte tag."""

    def __init__(self, key: bytes) -> None:
        key = bytes(key)
        if len(key) != AES_GCM_128_KEY_BYTES:
            raise ValueError(
                f"AES-128-GCM key must be {AES_GCM_128_KEY_BYTES} bytes, got {len(key)}"
            )
        self._algorithm = algorithms.AES(key)

    @staticmethod
    def _check_nonce(nonce: bytes) -> bytes:
        nonce = bytes(nonce)
        if len(nonce) != AES_GCM_128_NONCE_BYTES:
            raise ValueError(
                f"nonce must be {AES_GCM_128_NONCE_BYTES} bytes, got {len(nonce)}"
            )
        return nonce

    def encrypt(
        self, plaintext: bytes, nonce: bytes, additional_data: bytes = b""
    ) -> tuple[bytes, bytes]:
        """Return ``(ciphertext, truncated_tag)`` for the plaintext."""
        nonce = self._check_nonce(nonce)
        encryptor = Cipher(self._algorithm, modes.GCM(nonce)).encryptor()
        encryptor.authenticate_additional_data(bytes(additional_data))
        ciphertext = encryptor.update(bytes(plaintext)) + encryptor.finalize()
        return ciphertext, encryptor.tag[:AES_GCM_128_TRUNCATED_TAG_BYTES]

    def decrypt(
        self,
        ciphertext: bytes,
        tag: bytes,
        nonce: bytes,
        additional_data: bytes = b"",
    ) -> bytes:
        """Return the plaintext, or raise DecryptionError if authentication fails."""
        nonce = self._check_nonce(nonce)
        tag = bytes(tag)
        if len(tag) != AES_GCM_128_TRUNCATED_TAG_BYTES:
            raise ValueError(
                f"tag must be {AES_GCM_128_TRUNCATED_TAG_BYTES} bytes, got {len(tag)}"
            )
        decryptor = Cipher(
            self._algorithm,
            modes.GCM(nonce, tag, min_tag_length=AES_GCM_128_TRUNCATED_TAG_BYTES),
        ).decryptor()
        decryptor.authenticate_additional_data(bytes(additional_data))
        plaintext = decryptor.update(bytes(ciphertext))
        try:
            return plaintext + decryptor.finalize()
        except InvalidTag as exc:
            raise DecryptionError("authentication tag mismatch") from exc


def create_cryptor(key: bytes) -> AesGcmCryptor | None:
    """Build a cryptor for the key, or return None if the key is unusable."""
    try:
        return AesGcmCryptor(key)
    except (ValueError, TypeError) as exc:
        log.error("Failed to initialize AEAD context: %s", exc)
        return None