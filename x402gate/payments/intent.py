"""
Canonical byte encoding of x402 payment intents

Layout (big-endian, no padding):

    offset  width  field
    0       1      version byte (0x01)
    1       32     requester public key
    33      32     authorizer public key
    65      8      amount    (u64)
    73      8      nonce     (u64)
    81      8      deadline  (i64, unix seconds)
    89      2+n    asset_id    (u16 length + UTF-8)
    ...     2+m    resource_id (u16 length + UTF-8)

Requester and Authorizer both sign/verify over exactly these bytes. Any
change here breaks every deployed counterpart.
"""

import hashlib
import struct
from dataclasses import dataclass

from x402gate.payments.errors import MalformedIntent
from x402gate.payments.keys import PUBLIC_KEY_SIZE, SigningKey
from x402gate.payments.models import (
    Challenge,
    MAX_ASSET_ID_BYTES,
    MAX_RESOURCE_ID_BYTES,
    U64_MAX,
    I64_MIN,
    I64_MAX,
)

INTENT_VERSION = 0x01

_HEADER = struct.Struct(">B32s32sQQq")
_LENGTH = struct.Struct(">H")


@dataclass(frozen=True)
class PaymentIntent:
    """Signed assertion: pay ``amount`` of ``asset_id`` to ``authorizer``"""

    requester: bytes
    authorizer: bytes
    amount: int
    nonce: int
    deadline: int
    asset_id: str
    resource_id: str = ""

    def __post_init__(self):
        if not isinstance(self.requester, bytes) or len(self.requester) != PUBLIC_KEY_SIZE:
            raise MalformedIntent("requester key must be 32 bytes")
        if not isinstance(self.authorizer, bytes) or len(self.authorizer) != PUBLIC_KEY_SIZE:
            raise MalformedIntent("authorizer key must be 32 bytes")
        for name in ("amount", "nonce", "deadline"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise MalformedIntent(f"{name} must be an integer")
        if not 0 < self.amount <= U64_MAX:
            raise MalformedIntent(f"amount out of range: {self.amount}")
        if not 0 <= self.nonce <= U64_MAX:
            raise MalformedIntent(f"nonce out of range: {self.nonce}")
        if not I64_MIN <= self.deadline <= I64_MAX:
            raise MalformedIntent(f"deadline out of range: {self.deadline}")
        if not isinstance(self.asset_id, str) or not isinstance(self.resource_id, str):
            raise MalformedIntent("asset_id and resource_id must be strings")
        if len(self.asset_id.encode("utf-8")) > MAX_ASSET_ID_BYTES:
            raise MalformedIntent("asset_id too long")
        if len(self.resource_id.encode("utf-8")) > MAX_RESOURCE_ID_BYTES:
            raise MalformedIntent("resource_id too long")

    @classmethod
    def from_challenge(cls, challenge: Challenge, requester: bytes) -> "PaymentIntent":
        """Build the intent that satisfies ``challenge`` exactly"""
        return cls(
            requester=requester,
            authorizer=challenge.authorizer_key,
            amount=challenge.amount,
            nonce=challenge.nonce,
            deadline=challenge.deadline,
            asset_id=challenge.asset_id,
            resource_id=challenge.resource_id,
        )

    def encode(self) -> bytes:
        asset = self.asset_id.encode("utf-8")
        resource = self.resource_id.encode("utf-8")
        return b"".join((
            _HEADER.pack(
                INTENT_VERSION,
                self.requester,
                self.authorizer,
                self.amount,
                self.nonce,
                self.deadline,
            ),
            _LENGTH.pack(len(asset)),
            asset,
            _LENGTH.pack(len(resource)),
            resource,
        ))

    @classmethod
    def decode(cls, data: bytes) -> "PaymentIntent":
        """
        Parse canonical bytes back into an intent.

        Raises:
            MalformedIntent: On truncation, trailing bytes, unknown version
                or invalid strings
        """
        if len(data) < _HEADER.size:
            raise MalformedIntent("intent truncated")

        version, requester, authorizer, amount, nonce, deadline = _HEADER.unpack_from(data)
        if version != INTENT_VERSION:
            raise MalformedIntent(f"unsupported intent version: {version}")

        offset = _HEADER.size
        asset_id, offset = _read_string(data, offset)
        resource_id, offset = _read_string(data, offset)
        if offset != len(data):
            raise MalformedIntent("trailing bytes after intent")

        return cls(
            requester=requester,
            authorizer=authorizer,
            amount=amount,
            nonce=nonce,
            deadline=deadline,
            asset_id=asset_id,
            resource_id=resource_id,
        )

    def sign(self, key: SigningKey) -> bytes:
        if key.public_key != self.requester:
            raise ValueError("Signing key does not match intent requester")
        return key.sign(self.encode())

    def digest(self) -> str:
        """sha256 of the canonical bytes, used as the settlement reference"""
        return hashlib.sha256(self.encode()).hexdigest()


def _read_string(data: bytes, offset: int):
    if offset + _LENGTH.size > len(data):
        raise MalformedIntent("intent truncated")
    (length,) = _LENGTH.unpack_from(data, offset)
    offset += _LENGTH.size
    end = offset + length
    if end > len(data):
        raise MalformedIntent("intent truncated")
    try:
        return data[offset:end].decode("utf-8"), end
    except UnicodeDecodeError as e:
        raise MalformedIntent(f"invalid UTF-8 in intent: {e}") from e
