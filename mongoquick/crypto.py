"""Symmetric encryption for connection strings at rest."""

from __future__ import annotations

import os

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_SIZE = 16


class DecryptionError(ValueError):
    """Raised when a stored ciphertext cannot be turned back into a URI."""


def derive_key(secret: str) -> bytes:
    """Hash the configured secret into a 256-bit AES key."""

    digest = hashes.Hash(hashes.SHA256())
    digest.update(secret.encode("utf-8"))
    return digest.finalize()


class UriCipher:
    """AES-256-CBC with PKCS7 padding; ciphertext and IV are hex encoded."""

    def __init__(self, secret: str) -> None:
        self._key = derive_key(secret)

    def encrypt(self, plaintext: str) -> tuple[str, str]:
        """Encrypt with a fresh random IV; returns ``(ciphertext, iv)``."""

        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return ciphertext.hex(), iv.hex()

    def decrypt(self, ciphertext: str, iv: str) -> str:
        try:
            raw = bytes.fromhex(ciphertext)
            iv_bytes = bytes.fromhex(iv)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv_bytes)).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except ValueError as exc:
            raise DecryptionError(f"Unable to decrypt value: {exc}") from exc


__all__ = ["DecryptionError", "IV_SIZE", "UriCipher", "derive_key"]
