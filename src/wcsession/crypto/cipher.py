"""Symmetric envelope cipher used for every message on the bridge.

The default :class:`AESCipher` follows the bridge protocol's format:
AES-256-CBC with PKCS7 padding, a fresh 16-byte IV per message, and
``HMAC-SHA256(key, ciphertext || iv)`` as the integrity tag. All three
parts travel as lowercase hex in an :class:`EncryptedPayload`.
"""
from __future__ import annotations
import abc
import secrets

from wcsession.client.errors import CipherError
from wcsession.crypto.primitives import hmac_sha256, safe_compare
from wcsession.protocol.constants import IV_BYTES, KEY_BYTES
from wcsession.protocol.models import EncryptedPayload
from wcsession.protocol.validation import validate_hex


def require_aes():
    try:
        from cryptography.hazmat.primitives.ciphers import Cipher as _Cipher, algorithms, modes
        from cryptography.hazmat.primitives import padding
        return _Cipher, algorithms, modes, padding
    except ImportError as e:
        raise RuntimeError("Missing dependency 'cryptography'") from e


class Cipher(abc.ABC):
    @abc.abstractmethod
    async def encrypt(self, key: bytes, plaintext: str) -> EncryptedPayload:
        ...

    @abc.abstractmethod
    async def decrypt(self, key: bytes, payload: EncryptedPayload) -> str:
        ...


class AESCipher(Cipher):
    async def encrypt(self, key: bytes, plaintext: str) -> EncryptedPayload:
        return self.encrypt_sync(key, plaintext)

    async def decrypt(self, key: bytes, payload: EncryptedPayload) -> str:
        return self.decrypt_sync(key, payload)

    def encrypt_sync(self, key: bytes, plaintext: str, iv: bytes | None = None) -> EncryptedPayload:
        _check_key(key)
        _Cipher, algorithms, modes, padding = require_aes()
        iv = iv if iv is not None else secrets.token_bytes(IV_BYTES)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        enc = _Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ct = enc.update(padded) + enc.finalize()

        tag = hmac_sha256(key, ct + iv)
        return EncryptedPayload(data=ct.hex(), hmac=tag.hex(), iv=iv.hex())

    def decrypt_sync(self, key: bytes, payload: EncryptedPayload) -> str:
        _check_key(key)
        _Cipher, algorithms, modes, padding = require_aes()
        try:
            ct = validate_hex(payload.data, "data", 16)
            iv = validate_hex(payload.iv, "iv", IV_BYTES, IV_BYTES)
            tag = validate_hex(payload.hmac, "hmac", 32, 32)
        except ValueError as e:
            raise CipherError(str(e)) from e

        if len(ct) % 16:
            raise CipherError("ciphertext is not a whole number of blocks")
        # authenticate before touching the block cipher
        if not safe_compare(hmac_sha256(key, ct + iv), tag, 32):
            raise CipherError("HMAC mismatch")

        dec = _Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = dec.update(ct) + dec.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            raw = unpadder.update(padded) + unpadder.finalize()
            return raw.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CipherError(f"bad plaintext: {e}") from e


def _check_key(key: bytes):
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
        raise CipherError(f"key must be {KEY_BYTES} bytes")
