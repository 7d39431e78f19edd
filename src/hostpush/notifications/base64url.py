"""Unpadded URL-safe base64, as used throughout Web Push."""

import base64
import binascii
import re

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def b64url_encode(data: bytes) -> str:
    """Encode bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    """Decode unpadded URL-safe base64.

    Raises ValueError for characters outside the base64url alphabet
    or an impossible length.
    """
    if not _B64URL_RE.fullmatch(value):
        raise ValueError("invalid base64url string")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as e:
        raise ValueError(f"invalid base64url string: {e}") from e
