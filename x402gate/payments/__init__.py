"""
x402 Payment Protocol Core
Challenge wire format, canonical payment intents and Ed25519 signing
"""

from x402gate.payments.errors import (
    X402Error,
    MalformedChallenge,
    InsufficientFunds,
    PaymentRejected,
    RetriesExhausted,
    NetworkTimeout,
    VerificationError,
    MalformedIntent,
    StaleIntent,
    UnknownNonce,
    ReplayedNonce,
    AmountMismatch,
    TermsMismatch,
    InvalidSignature,
    LedgerFull,
)
from x402gate.payments.keys import SigningKey, verify_signature, encode_key, decode_key
from x402gate.payments.models import (
    Challenge,
    PaymentProof,
    PaymentRequiredBody,
    Receipt,
    X402_VERSION,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
)
from x402gate.payments.intent import PaymentIntent, INTENT_VERSION

__all__ = [
    "X402Error",
    "MalformedChallenge",
    "InsufficientFunds",
    "PaymentRejected",
    "RetriesExhausted",
    "NetworkTimeout",
    "VerificationError",
    "MalformedIntent",
    "StaleIntent",
    "UnknownNonce",
    "ReplayedNonce",
    "AmountMismatch",
    "TermsMismatch",
    "InvalidSignature",
    "LedgerFull",
    "SigningKey",
    "verify_signature",
    "encode_key",
    "decode_key",
    "Challenge",
    "PaymentProof",
    "PaymentRequiredBody",
    "Receipt",
    "X402_VERSION",
    "X_PAYMENT_HEADER",
    "X_PAYMENT_RESPONSE_HEADER",
    "PaymentIntent",
    "INTENT_VERSION",
]
