"""
x402 wire models shared by the gateway and the paying agent

The JSON/header representation here is textual (decimal integers, base58
keys) and is deliberately separate from the signed byte encoding in
``x402gate.payments.intent``.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from x402gate.payments.errors import MalformedChallenge, MalformedIntent
from x402gate.payments.keys import (
    PUBLIC_KEY_SIZE,
    SIGNATURE_SIZE,
    decode_key,
    encode_key,
)

X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

U64_MAX = 2 ** 64 - 1
I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1
MAX_ASSET_ID_BYTES = 255
MAX_RESOURCE_ID_BYTES = 1024

_INTEGER = re.compile(r"-?[0-9]+")

CHALLENGE_WIRE_FIELDS = ("gateway_id", "cost", "mint", "nonce", "deadline", "service_id")


class Challenge(BaseModel):
    """Unsigned payment terms issued by the gateway with a 402"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    authorizer_id: str = Field(alias="gateway_id", description="Gateway public key (base58)")
    amount: int = Field(alias="cost", gt=0, le=U64_MAX, description="Amount in smallest asset unit")
    asset_id: str = Field(alias="mint", min_length=1, description="Accepted asset identifier")
    nonce: int = Field(ge=0, le=U64_MAX)
    deadline: int = Field(ge=I64_MIN, le=I64_MAX, description="Unix seconds after which the challenge is void")
    resource_id: str = Field(alias="service_id", description="Priced route bound into the signature")

    @field_validator("authorizer_id")
    @classmethod
    def validate_authorizer_id(cls, v):
        decode_key(v, PUBLIC_KEY_SIZE)
        return v

    @field_validator("asset_id")
    @classmethod
    def validate_asset_id(cls, v):
        if len(v.encode("utf-8")) > MAX_ASSET_ID_BYTES:
            raise ValueError("asset id too long")
        return v

    @field_validator("resource_id")
    @classmethod
    def validate_resource_id(cls, v):
        if len(v.encode("utf-8")) > MAX_RESOURCE_ID_BYTES:
            raise ValueError("resource id too long")
        return v

    @property
    def authorizer_key(self) -> bytes:
        return decode_key(self.authorizer_id, PUBLIC_KEY_SIZE)

    def is_live(self, now: float) -> bool:
        return now < self.deadline

    def to_wire(self) -> Dict[str, str]:
        """All fields as strings, keyed by their wire names"""
        return {key: str(value) for key, value in self.model_dump(by_alias=True).items()}

    @classmethod
    def from_wire(cls, fields: Mapping[str, object]) -> "Challenge":
        """
        Parse a challenge received in a 402 response.

        Raises:
            MalformedChallenge: If any field is missing or invalid
        """
        if not isinstance(fields, Mapping):
            raise MalformedChallenge("Challenge must be an object")

        missing = [name for name in CHALLENGE_WIRE_FIELDS if name not in fields]
        if missing:
            raise MalformedChallenge(f"Challenge missing fields: {', '.join(missing)}")

        for name in ("cost", "nonce", "deadline"):
            value = fields[name]
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                raise MalformedChallenge(f"Challenge field {name} must be an integer")
            if isinstance(value, str) and not _INTEGER.fullmatch(value):
                raise MalformedChallenge(f"Challenge field {name} is not an integer: {value!r}")

        try:
            return cls.model_validate({name: fields[name] for name in CHALLENGE_WIRE_FIELDS})
        except ValidationError as e:
            raise MalformedChallenge(f"Invalid challenge: {e.errors()[0]['msg']}") from e


class PaymentRequiredBody(BaseModel):
    """JSON body of an HTTP 402 response"""

    x402Version: int = X402_VERSION
    error: str = "Payment required"
    reason: Optional[str] = Field(default=None, description="Error kind of a rejected proof")
    challenge: Dict[str, str]


class Receipt(BaseModel):
    """Verified payment handed to the settlement path"""

    requester: str
    authorizer: str
    amount: int
    asset_id: str
    nonce: int
    resource_id: str
    intent_hash: str
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PaymentProof:
    """
    Contents of the X-PAYMENT header.

    Format: ``sig=<base58>;agent=<base58>;nonce=<int>`` with optional
    ``amount=<int>`` and ``deadline=<int>`` pairs.
    """

    signature: bytes
    agent: bytes
    nonce: int
    amount: Optional[int] = None
    deadline: Optional[int] = None

    def format_header(self) -> str:
        parts = [
            f"sig={encode_key(self.signature)}",
            f"agent={encode_key(self.agent)}",
            f"nonce={self.nonce}",
        ]
        if self.amount is not None:
            parts.append(f"amount={self.amount}")
        if self.deadline is not None:
            parts.append(f"deadline={self.deadline}")
        return ";".join(parts)

    @classmethod
    def parse_header(cls, value: str) -> "PaymentProof":
        """
        Parse an X-PAYMENT header value.

        Raises:
            MalformedIntent: If the header is not well-formed
        """
        pairs: Dict[str, str] = {}
        for part in value.split(";"):
            part = part.strip()
            if not part:
                continue
            key, sep, val = part.partition("=")
            key = key.strip().lower()
            if not sep or not key:
                raise MalformedIntent(f"Invalid proof segment: {part!r}")
            if key in pairs:
                raise MalformedIntent(f"Duplicate proof field: {key}")
            pairs[key] = val.strip()

        for required in ("sig", "agent", "nonce"):
            if required not in pairs:
                raise MalformedIntent(f"Proof missing {required}")

        try:
            signature = decode_key(pairs["sig"], SIGNATURE_SIZE)
            agent = decode_key(pairs["agent"], PUBLIC_KEY_SIZE)
        except ValueError as e:
            raise MalformedIntent(f"Invalid proof key material: {e}") from e

        return cls(
            signature=signature,
            agent=agent,
            nonce=_parse_int(pairs["nonce"], "nonce", 0, U64_MAX),
            amount=_parse_int(pairs["amount"], "amount", 1, U64_MAX) if "amount" in pairs else None,
            deadline=_parse_int(pairs["deadline"], "deadline", I64_MIN, I64_MAX) if "deadline" in pairs else None,
        )


def _parse_int(text: str, name: str, low: int, high: int) -> int:
    if not _INTEGER.fullmatch(text):
        raise MalformedIntent(f"Proof field {name} is not an integer")
    value = int(text)
    if not low <= value <= high:
        raise MalformedIntent(f"Proof field {name} out of range")
    return value
