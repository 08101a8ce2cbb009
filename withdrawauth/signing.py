"""
Withdrawal Authorization Signing

Ed25519 signers for the custody administrator's approval. Key material
stays behind the Signer interface; the orchestrator only ever asks for a
public key and a detached signature over a 32-byte digest.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .addresses import Address

SEED_SIZE = 32
SECRET_KEY_SIZE = 64


class Signer(ABC):
    """Abstract Ed25519 signing authority."""

    @property
    @abstractmethod
    def public_key(self) -> Address:
        """Address of the signing key."""
        pass

    @abstractmethod
    def sign(self, message: bytes) -> bytes:
        """Return a 64-byte detached signature over `message`."""
        pass


class KeypairSigner(Signer):
    """Signer backed by an in-process PyNaCl signing key."""

    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key
        self._public_key = Address(bytes(signing_key.verify_key))

    @classmethod
    def generate(cls) -> 'KeypairSigner':
        return cls(SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> 'KeypairSigner':
        if len(seed) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes")
        return cls(SigningKey(bytes(seed)))

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> 'KeypairSigner':
        """
        Load a 64-byte secret key (seed followed by public key).

        Raises:
            ValueError: wrong size, or the public half does not match the seed
        """
        if len(secret_key) != SECRET_KEY_SIZE:
            raise ValueError(f"Secret key must be {SECRET_KEY_SIZE} bytes")
        signer = cls.from_seed(secret_key[:SEED_SIZE])
        if bytes(signer.public_key) != bytes(secret_key[SEED_SIZE:]):
            raise ValueError("Secret key public half does not match its seed")
        return signer

    @property
    def public_key(self) -> Address:
        return self._public_key

    @property
    def secret_key(self) -> bytes:
        return bytes(self._sk) + bytes(self._public_key)

    def sign(self, message: bytes) -> bytes:
        return self._sk.sign(bytes(message)).signature


class AwsKmsEd25519Signer(Signer):
    """
    AWS KMS signer using an Ed25519 SIGN_VERIFY key.

    Uses the KMS Sign API with SigningAlgorithm ED25519_SHA_512 and
    MessageType RAW. The public key is fetched once and cached.
    """

    def __init__(self, kms_key_id: str, region: Optional[str] = None, client=None):
        self._kms_key_id = kms_key_id
        self._region = region
        self._client = client
        self._public_key: Optional[Address] = None
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError(
                    "boto3 required for AWS KMS signing. Install with: pip install withdrawauth[kms]"
                ) from e
            self._client = boto3.client("kms", region_name=self._region)
        return self._client

    @property
    def public_key(self) -> Address:
        with self._lock:
            if self._public_key is None:
                resp = self._get_client().get_public_key(KeyId=self._kms_key_id)
                # DER SubjectPublicKeyInfo; the raw key is the trailing 32 bytes
                self._public_key = Address(bytes(resp["PublicKey"])[-32:])
            return self._public_key

    def sign(self, message: bytes) -> bytes:
        resp = self._get_client().sign(
            KeyId=self._kms_key_id,
            Message=bytes(message),
            MessageType="RAW",
            SigningAlgorithm="ED25519_SHA_512",
        )
        return bytes(resp["Signature"])


def verify_signature(message: bytes, signature: bytes, public_key) -> bool:
    """Verify a detached Ed25519 signature."""
    try:
        VerifyKey(bytes(public_key)).verify(bytes(message), bytes(signature))
        return True
    except (BadSignatureError, ValueError):
        return False
