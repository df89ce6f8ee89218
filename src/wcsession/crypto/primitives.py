from __future__ import annotations
import hashlib
import hmac
import secrets


def hmac_sha256(k: bytes, b: bytes) -> bytes:
    return hmac.new(k, b, hashlib.sha256).digest()


def safe_compare(a: bytes, b: bytes, expected_length: int | None = None) -> bool:
    if expected_length and (len(a) != expected_length or len(b) != expected_length):
        return False
    return hmac.compare_digest(a, b)


def random_key(n: int = 32) -> bytes:
    return secrets.token_bytes(n)
