# /flowgate/services/crypto_service.py

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from flowgate.services.errors import DecryptionError, EncryptionError

# This service implements the Flow channel cryptography: RSA-OAEP unwrap of the
# per-request AES key, AES-128-GCM for request and response bodies, and the
# HMAC-SHA256 request signature.

logger = logging.getLogger(__name__)

AES_KEY_SIZE = 16
TAG_SIZE = 16
SIGNATURE_PREFIX = "sha256="

PrivateKeyLike = Union[rsa.RSAPrivateKey, str, bytes]


@dataclass(frozen=True)
class DecryptedRequest:
    body: Dict[str, Any]
    aes_key: bytes
    initial_vector: bytes


class CryptoChannel:
    @staticmethod
    def load_private_key(pem: Union[str, bytes], passphrase: Optional[str] = None) -> rsa.RSAPrivateKey:
        if isinstance(pem, str):
            pem = pem.encode("utf-8")
        password = passphrase.encode("utf-8") if passphrase else None
        key = serialization.load_pem_private_key(pem, password=password)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("Flow private key must be an RSA key")
        return key

    @staticmethod
    def generate_key_pair(key_size: int = 2048) -> Tuple[str, str]:
        """Returns (public_pem, private_pem). Used for development and tests."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")
        return public_pem, private_pem

    @staticmethod
    def flip_iv(initial_vector: bytes) -> bytes:
        return bytes(byte ^ 0xFF for byte in initial_vector)

    @classmethod
    def decrypt_request(
        cls,
        encrypted_flow_data: str,
        encrypted_aes_key: str,
        initial_vector: str,
        private_key: PrivateKeyLike,
        passphrase: Optional[str] = None,
    ) -> DecryptedRequest:
        try:
            flow_data = base64.b64decode(encrypted_flow_data)
            wrapped_key = base64.b64decode(encrypted_aes_key)
            iv = base64.b64decode(initial_vector)

            if not isinstance(private_key, rsa.RSAPrivateKey):
                private_key = cls.load_private_key(private_key, passphrase)

            aes_key = private_key.decrypt(
                wrapped_key,
                padding.OAEP(
                    mgf=padding.MGF1(algorithm=hashes.SHA256()),
                    algorithm=hashes.SHA256(),
                    label=None,
                ),
            )
            if len(aes_key) != AES_KEY_SIZE:
                raise ValueError(f"unwrapped key is {len(aes_key)} bytes, expected {AES_KEY_SIZE}")
            if len(flow_data) <= TAG_SIZE:
                raise ValueError("encrypted body is shorter than the authentication tag")

            # AESGCM expects ciphertext || tag, which is exactly the wire layout.
            plaintext = AESGCM(aes_key).decrypt(iv, flow_data, None)
            body = json.loads(plaintext.decode("utf-8"))
            if not isinstance(body, dict):
                raise ValueError("decrypted payload is not a JSON object")
        except InvalidTag:
            logger.error("Failed to decrypt Flow request: authentication tag mismatch")
            raise DecryptionError("Decryption failed: authentication tag mismatch")
        except Exception as e:
            logger.error(f"Failed to decrypt Flow request: {e}")
            raise DecryptionError(f"Decryption failed: {e}") from e

        logger.debug("Flow request decrypted successfully")
        return DecryptedRequest(body=body, aes_key=aes_key, initial_vector=iv)

    @classmethod
    def encrypt_response(cls, response: Dict[str, Any], aes_key: bytes, initial_vector: bytes) -> str:
        """
        Encrypts a plaintext response. The response IV is the request IV with
        every byte complemented; reusing the request IV verbatim is rejected
        by the client.
        """
        try:
            payload = json.dumps(response).encode("utf-8")
            encrypted = AESGCM(aes_key).encrypt(cls.flip_iv(initial_vector), payload, None)
            return base64.b64encode(encrypted).decode("utf-8")
        except Exception as e:
            logger.error(f"Failed to encrypt Flow response: {e}")
            raise EncryptionError(f"Encryption failed: {e}") from e

    @staticmethod
    def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
        try:
            expected = SIGNATURE_PREFIX + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
            return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
        except Exception as e:
            logger.warning(f"Signature verification failed: {e}")
            return False
