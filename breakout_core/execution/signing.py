"""
Request signing for the exchange REST API.

Prehash is timestamp + METHOD + path + body. The signature is the base64 of
HMAC-SHA256 over the prehash, keyed with the base64-decoded secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

from breakout_core.errors import SigningError


def prehash(timestamp: str, method: str, path: str, body: str = "") -> str:
    return f"{timestamp}{method.upper()}{path}{body}"


def decode_secret(secret: str) -> bytes:
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"access secret is not valid base64: {e}") from e
    if not key:
        raise SigningError("access secret decodes to an empty key")
    return key


def sign(secret: str, timestamp: str, method: str, path: str, body: str = "") -> str:
    """Base64 HMAC-SHA256 signature of the canonical message."""
    key = decode_secret(secret)
    digest = hmac.new(key, prehash(timestamp, method, path, body).encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def auth_headers(
    *,
    key: str,
    secret: str,
    passphrase: str,
    timestamp: str,
    method: str,
    path: str,
    body: str = "",
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "CB-ACCESS-KEY": key,
        "CB-ACCESS-SIGN": sign(secret, timestamp, method, path, body),
        "CB-ACCESS-TIMESTAMP": timestamp,
        "CB-ACCESS-PASSPHRASE": passphrase,
    }
