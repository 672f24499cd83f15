"""
Error taxonomy for the x402 payment protocol

Every failure carries a stable ``kind`` string so that callers, telemetry and
the 402 response body can report it without matching on messages.
"""

from typing import Optional


class X402Error(Exception):
    """Base class for all protocol errors"""

    kind = "x402_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


# ===== REQUESTER SIDE =====

class MalformedChallenge(X402Error):
    """Challenge is structurally invalid or already expired; never signed"""

    kind = "malformed_challenge"


class InsufficientFunds(X402Error):
    """Local solvency check failed before signing"""

    kind = "insufficient_funds"

    def __init__(self, asset_id: str, required: int, available: int):
        super().__init__(
            f"Insufficient {asset_id} balance: {available} < {required}"
        )
        self.asset_id = asset_id
        self.required = required
        self.available = available


class PaymentRejected(X402Error):
    """Authorizer refused a submitted proof"""

    kind = "payment_rejected"

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or f"Payment rejected: {reason or 'unknown'}")
        self.reason = reason


class RetriesExhausted(X402Error):
    """Negotiation used its whole retry budget without success"""

    kind = "retries_exhausted"

    def __init__(self, attempts: int, last_error: Optional[X402Error] = None):
        super().__init__(f"Gave up after {attempts} payment attempts")
        self.attempts = attempts
        self.last_error = last_error


class NetworkTimeout(X402Error):
    """A round trip did not complete in time"""

    kind = "network_timeout"


# ===== AUTHORIZER SIDE =====

class VerificationError(X402Error):
    """A submitted intent failed verification"""

    kind = "verification_failed"


class MalformedIntent(VerificationError):
    kind = "malformed_intent"


class StaleIntent(VerificationError):
    kind = "stale_intent"


class UnknownNonce(VerificationError):
    kind = "unknown_nonce"


class ReplayedNonce(VerificationError):
    """Nonce was already consumed. Always a security event."""

    kind = "replayed_nonce"


class AmountMismatch(VerificationError):
    kind = "amount_mismatch"


class TermsMismatch(VerificationError):
    kind = "terms_mismatch"


class InvalidSignature(VerificationError):
    kind = "invalid_signature"


class LedgerFull(X402Error):
    """Nonce ledger is at capacity even after eviction"""

    kind = "ledger_full"
