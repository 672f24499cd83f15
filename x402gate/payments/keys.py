"""
Ed25519 signing keys for x402 payment intents

Keys travel as base58 strings; signatures are raw 64-byte Ed25519 signatures.
Signing and verification are pure functions of their inputs.
"""

import base58
from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

PUBLIC_KEY_SIZE = 32
SEED_SIZE = 32
SIGNATURE_SIZE = 64


def encode_key(raw: bytes) -> str:
    """Encode raw key or signature bytes as base58"""
    return base58.b58encode(raw).decode("ascii")


def decode_key(text: str, size: int = PUBLIC_KEY_SIZE) -> bytes:
    """
    Decode a base58 string and check its width.

    Raises:
        ValueError: If the text is not base58 or has the wrong width
    """
    try:
        raw = base58.b58decode(text.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base58 value: {e}") from e
    if len(raw) != size:
        raise ValueError(f"Expected {size} bytes, got {len(raw)}")
    return raw


class SigningKey:
    """
    Requester-owned Ed25519 keypair.

    Holds nothing but its own key material; safe to share read-only across
    concurrent negotiations.
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key: bytes = private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw
        )

    @classmethod
    def generate(cls) -> "SigningKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "SigningKey":
        if len(seed) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_base58(cls, text: str) -> "SigningKey":
        return cls.from_seed(decode_key(text, SEED_SIZE))

    @property
    def public_key_b58(self) -> str:
        return encode_key(self.public_key)

    def export_seed_b58(self) -> str:
        """Export the private seed, for writing into configuration only"""
        seed = self._private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        )
        return encode_key(seed)

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def __repr__(self) -> str:
        return f"SigningKey(public_key={self.public_key_b58})"


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check a detached Ed25519 signature; malformed inputs verify as False"""
    if len(public_key) != PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
    except (_CryptoInvalidSignature, ValueError):
        return False
    return True
