# backend/tests/conftest.py

import base64
import hashlib
import hmac
import json
import os
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv

# Load the test environment FIRST, before any flowgate import builds its settings.
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env.test")

from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import padding  # noqa: E402
from cryptography.hazmat.primitives.ciphers.aead import AESGCM  # noqa: E402

from flowgate.config.settings import settings  # noqa: E402
from flowgate.main import app  # noqa: E402
from flowgate.models.context import ChannelConfig  # noqa: E402
from flowgate.services.cache_service import cache_service  # noqa: E402
from flowgate.services.crypto_service import CryptoChannel  # noqa: E402
from flowgate.services.db_service import db_service  # noqa: E402
from flowgate.services.http_fetcher import http_fetcher  # noqa: E402
from flowgate.utils.dependencies import get_channel_config  # noqa: E402


class FlowClientCrypto:
    """Plays the WhatsApp client side of the channel: encrypts requests and reads responses."""

    def __init__(self, public_pem: str):
        self.public_key = serialization.load_pem_public_key(public_pem.encode("utf-8"))

    def encrypt_request(self, payload: dict):
        aes_key = os.urandom(16)
        iv = os.urandom(16)
        wrapped_key = self.public_key.encrypt(
            aes_key,
            padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
        )
        ciphertext = AESGCM(aes_key).encrypt(iv, json.dumps(payload).encode("utf-8"), None)
        envelope = {
            "encrypted_flow_data": base64.b64encode(ciphertext).decode("utf-8"),
            "encrypted_aes_key": base64.b64encode(wrapped_key).decode("utf-8"),
            "initial_vector": base64.b64encode(iv).decode("utf-8"),
        }
        return envelope, aes_key, iv

    @staticmethod
    def decrypt_response(text: str, aes_key: bytes, iv: bytes) -> dict:
        flipped = bytes(byte ^ 0xFF for byte in iv)
        return json.loads(AESGCM(aes_key).decrypt(flipped, base64.b64decode(text), None))


def sign(body: bytes, secret: str = None) -> str:
    secret = secret or settings.whatsapp_app_secret
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture(scope="session")
def rsa_key_pair():
    """(public_pem, private_pem), generated once per test session."""
    return CryptoChannel.generate_key_pair()


@pytest.fixture
def flow_client(rsa_key_pair):
    return FlowClientCrypto(rsa_key_pair[0])


@pytest.fixture
def channel_config(rsa_key_pair):
    return ChannelConfig(
        version=1,
        app_secret=settings.whatsapp_app_secret,
        private_key_pem=rsa_key_pair[1],
    )


@pytest.fixture
def sign_body():
    return sign


@pytest.fixture(scope="function")
def test_client(mocker, channel_config):
    """
    Provides a TestClient for API integration tests. The lifespan runs, but
    index creation and client shutdown are mocked so no MongoDB or Redis is
    needed, and the channel secrets come from the generated key pair.
    """
    mocker.patch.object(db_service, "create_indexes", new_callable=AsyncMock)
    mocker.patch.object(http_fetcher, "close", new_callable=AsyncMock)
    mocker.patch.object(cache_service, "close", new_callable=AsyncMock)

    app.dependency_overrides[get_channel_config] = lambda: channel_config
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
