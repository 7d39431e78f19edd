"""VAPID (RFC 8292) signing for Web Push requests."""

import json
import time
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from hostpush.notifications.base64url import (
    b64url_decode,
    b64url_encode,
)

MAX_EXPIRY_SECONDS = 24 * 60 * 60

_JWT_HEADER = {"typ": "JWT", "alg": "ES256"}
_COORD_LEN = 32


class VapidKeyError(ValueError):
    """VAPID key material is missing, malformed or inconsistent."""


def audience_for(endpoint: str) -> str:
    """Origin (scheme://host[:port]) of a push endpoint."""
    parts = urlsplit(endpoint)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"endpoint is not an absolute URL: {endpoint!r}")
    return f"{parts.scheme}://{parts.netloc}"


def _pad_to_32(value: bytes) -> bytes:
    if len(value) > _COORD_LEN:
        # DER sign byte (or leading zeros) in front of a 32-byte integer
        if any(value[: len(value) - _COORD_LEN]):
            raise ValueError("DER integer does not fit in 32 bytes")
        return value[-_COORD_LEN:]
    return value.rjust(_COORD_LEN, b"\x00")


def _der_int(sig: bytes, len_offset: int) -> bytes:
    if sig[len_offset - 1] != 0x02:
        raise ValueError("expected DER INTEGER tag")
    length = sig[len_offset]
    start = len_offset + 1
    if length == 0 or length > _COORD_LEN + 1 or start + length > len(sig):
        raise ValueError("bad DER INTEGER length")
    return sig[start : start + length]


def normalize_signature(sig: bytes) -> bytes:
    """Return an ECDSA P-256 signature as 64-byte raw r||s.

    A 64-byte input is already raw. Anything else is parsed as DER
    ``SEQUENCE { INTEGER r, INTEGER s }``; each integer is
    left-padded with zeros, or stripped of its sign byte, to 32 bytes.
    """
    if len(sig) == 2 * _COORD_LEN:
        return sig
    if len(sig) < 8 or sig[0] != 0x30:
        raise ValueError("signature is neither raw r||s nor DER")
    try:
        r = _der_int(sig, 3)
        s = _der_int(sig, 5 + len(r))
    except IndexError as e:
        raise ValueError("truncated DER signature") from e
    return _pad_to_32(r) + _pad_to_32(s)


def _compact_json(obj: dict) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode()


class VapidSigner:
    """Signs VAPID JWTs with a static P-256 key pair.

    Both keys are unpadded base64url: the public key is the 65-byte
    uncompressed point, the private key the 32-byte scalar. The pair
    is checked for consistency once, on construction.
    """

    def __init__(self, public_key: str, private_key: str) -> None:
        if not public_key or not private_key:
            raise VapidKeyError("VAPID public and private keys are required")
        try:
            public_bytes = b64url_decode(public_key)
            private_bytes = b64url_decode(private_key)
        except ValueError as e:
            raise VapidKeyError(f"VAPID key is not base64url: {e}") from e

        if len(public_bytes) != 65 or public_bytes[0] != 0x04:
            raise VapidKeyError("VAPID public key must be a 65-byte uncompressed P-256 point")
        if len(private_bytes) != _COORD_LEN:
            raise VapidKeyError("VAPID private key must be a 32-byte scalar")

        try:
            key = ec.derive_private_key(
                int.from_bytes(private_bytes, "big"),
                ec.SECP256R1(),
            )
        except ValueError as e:
            raise VapidKeyError(f"invalid VAPID private key: {e}") from e

        numbers = key.public_key().public_numbers()
        x = int.from_bytes(public_bytes[1:33], "big")
        y = int.from_bytes(public_bytes[33:65], "big")
        if (numbers.x, numbers.y) != (x, y):
            raise VapidKeyError("VAPID public key does not match the private key")

        self._key = key
        self._public_key_b64 = b64url_encode(public_bytes)

    @property
    def public_key(self) -> str:
        """Application server key (base64url)."""
        return self._public_key_b64

    def create_jwt(
        self,
        audience: str,
        subject: str,
        expiry_seconds: int,
        now: int | None = None,
    ) -> str:
        """Build and sign a compact ES256 JWT for a push service."""
        if not 0 < expiry_seconds <= MAX_EXPIRY_SECONDS:
            raise ValueError(f"expiry must be within (0, {MAX_EXPIRY_SECONDS}] seconds")
        issued = int(time.time()) if now is None else now
        claims = {
            "aud": audience,
            "exp": issued + expiry_seconds,
            "sub": subject,
        }
        signing_input = (
            b64url_encode(_compact_json(_JWT_HEADER)) + "." + b64url_encode(_compact_json(claims))
        )
        der = self._key.sign(
            signing_input.encode("ascii"),
            ec.ECDSA(hashes.SHA256()),
        )
        return f"{signing_input}.{b64url_encode(normalize_signature(der))}"

    def authorization(
        self,
        audience: str,
        subject: str,
        expiry_seconds: int,
    ) -> str:
        """``Authorization`` header value for one push request."""
        token = self.create_jwt(audience, subject, expiry_seconds)
        return f"vapid t={token}, k={self._public_key_b64}"
