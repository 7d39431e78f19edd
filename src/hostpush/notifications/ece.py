"""Web Push message encryption (RFC 8291, ``aes128gcm`` coding).

The body produced here is a single RFC 8188 record::

    salt (16) | rs (uint32 BE) | idlen (1) | keyid (65) | ciphertext+tag

where ``keyid`` is the sender's ephemeral P-256 public key. The
browser reverses it with its subscription private key and the
shared ``auth`` secret.
"""

import os
import struct

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
)

from hostpush.notifications.base64url import b64url_decode

CONTENT_ENCODING = "aes128gcm"

RECORD_SIZE_LIMIT = 4096
SALT_LEN = 16
KEY_LEN = 65
AUTH_LEN = 16
TAG_LEN = 16
HEADER_LEN = SALT_LEN + 4 + 1 + KEY_LEN

# Final-record delimiter; no further padding is added.
PAD_DELIMITER = b"\x02"

KEY_INFO = b"WebPush: info\x00"
CEK_INFO = b"Content-Encoding: aes128gcm\x00"
NONCE_INFO = b"Content-Encoding: nonce\x00"

MAX_PLAINTEXT_LEN = RECORD_SIZE_LIMIT - len(PAD_DELIMITER) - TAG_LEN - HEADER_LEN


class EncryptionError(ValueError):
    """Subscription key material cannot be used for encryption."""


class PayloadTooLargeError(EncryptionError):
    """Plaintext does not fit a single 4096-byte record."""


def _hkdf(salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    ).derive(ikm)


def _raw_public(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(
        encoding=Encoding.X962,
        format=PublicFormat.UncompressedPoint,
    )


def record_size(plaintext_len: int) -> int:
    """Value of the ``rs`` header field for a plaintext length."""
    return min(plaintext_len + len(PAD_DELIMITER) + TAG_LEN + HEADER_LEN, RECORD_SIZE_LIMIT)


def check_payload_size(plaintext: bytes) -> None:
    if len(plaintext) > MAX_PLAINTEXT_LEN:
        raise PayloadTooLargeError(
            f"payload is {len(plaintext)} bytes; at most {MAX_PLAINTEXT_LEN} fit one record"
        )


def _decode_subscription_keys(
    p256dh: str, auth: str
) -> tuple[bytes, ec.EllipticCurvePublicKey, bytes]:
    try:
        ua_public = b64url_decode(p256dh)
        auth_secret = b64url_decode(auth)
    except ValueError as e:
        raise EncryptionError(f"subscription key is not base64url: {e}") from e
    if len(ua_public) != KEY_LEN or ua_public[0] != 0x04:
        raise EncryptionError("p256dh must be a 65-byte uncompressed P-256 point")
    if len(auth_secret) != AUTH_LEN:
        raise EncryptionError("auth secret must be 16 bytes")
    try:
        ua_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)
    except ValueError as e:
        raise EncryptionError(f"p256dh is not a point on P-256: {e}") from e
    return ua_public, ua_key, auth_secret


def encrypt(
    p256dh: str,
    auth: str,
    plaintext: str | bytes,
    *,
    server_key: ec.EllipticCurvePrivateKey | None = None,
    salt: bytes | None = None,
) -> bytes:
    """Encrypt a push message for one subscription.

    Args:
        p256dh: Subscriber public key, base64url.
        auth: Subscriber authentication secret, base64url.
        plaintext: Message; str is encoded as UTF-8.
        server_key: Ephemeral key to use instead of a fresh one.
        salt: 16-byte salt to use instead of a random one.

    Returns:
        The complete ``aes128gcm`` request body.
    """
    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
    check_payload_size(data)

    ua_public, ua_key, auth_secret = _decode_subscription_keys(p256dh, auth)

    if server_key is None:
        server_key = ec.generate_private_key(ec.SECP256R1())
    if salt is None:
        salt = os.urandom(SALT_LEN)
    if len(salt) != SALT_LEN:
        raise ValueError("salt must be 16 bytes")

    as_public = _raw_public(server_key.public_key())
    ecdh_secret = server_key.exchange(ec.ECDH(), ua_key)

    # PRK_key = HMAC(auth_secret, ecdh_secret)
    ikm = _hkdf(auth_secret, ecdh_secret, KEY_INFO + ua_public + as_public, 32)
    cek = _hkdf(salt, ikm, CEK_INFO, 16)
    nonce = _hkdf(salt, ikm, NONCE_INFO, 12)

    ciphertext = AESGCM(cek).encrypt(nonce, data + PAD_DELIMITER, None)

    header = salt + struct.pack("!IB", record_size(len(data)), KEY_LEN) + as_public
    return header + ciphertext
