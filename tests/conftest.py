import os
import struct
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
)

from hostpush.config import Settings, override_settings
from hostpush.main import app
from hostpush.notifications.base64url import b64url_encode
from hostpush.notifications.vapid import VapidSigner


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly selected."""
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        return

    skip_integration = pytest.mark.skip(reason="use -m integration to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def _test_settings(tmp_path):
    """Override settings so tests use an isolated state dir."""
    override_settings(
        Settings(
            state_dir=str(tmp_path),
        )
    )
    yield
    override_settings(None)


def raw_point(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(
        encoding=Encoding.X962,
        format=PublicFormat.UncompressedPoint,
    )


def _hkdf(salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


@dataclass
class Subscriber:
    """Browser side of a push subscription; decrypts what we send it."""

    private_key: ec.EllipticCurvePrivateKey
    auth_secret: bytes

    @property
    def p256dh(self) -> str:
        return b64url_encode(raw_point(self.private_key.public_key()))

    @property
    def auth(self) -> str:
        return b64url_encode(self.auth_secret)

    def decrypt(self, body: bytes) -> bytes:
        salt = body[:16]
        rs, idlen = struct.unpack("!IB", body[16:21])
        keyid = body[21 : 21 + idlen]
        ciphertext = body[21 + idlen :]
        assert len(ciphertext) <= rs

        sender = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), keyid)
        ecdh_secret = self.private_key.exchange(ec.ECDH(), sender)
        ua_public = raw_point(self.private_key.public_key())

        ikm = _hkdf(self.auth_secret, ecdh_secret, b"WebPush: info\x00" + ua_public + keyid, 32)
        cek = _hkdf(salt, ikm, b"Content-Encoding: aes128gcm\x00", 16)
        nonce = _hkdf(salt, ikm, b"Content-Encoding: nonce\x00", 12)

        padded = AESGCM(cek).decrypt(nonce, ciphertext, None).rstrip(b"\x00")
        assert padded.endswith(b"\x02"), "last record must end with 0x02"
        return padded[:-1]


@pytest.fixture
def subscriber() -> Subscriber:
    return Subscriber(
        private_key=ec.generate_private_key(ec.SECP256R1()),
        auth_secret=os.urandom(16),
    )


@pytest.fixture
def vapid_keys() -> tuple[str, str]:
    """(public, private) VAPID keys as unpadded base64url."""
    key = ec.generate_private_key(ec.SECP256R1())
    private = key.private_numbers().private_value.to_bytes(32, "big")
    return b64url_encode(raw_point(key.public_key())), b64url_encode(private)


@pytest.fixture
def signer(vapid_keys) -> VapidSigner:
    return VapidSigner(*vapid_keys)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[httpx.AsyncClient]:
    """Async test client.

    Test modules should set app.state.push_store and
    app.state.push_notifier before using this client.
    """
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
