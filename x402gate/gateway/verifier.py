"""
Payment intent verification for the x402 gateway

Checks run in a fixed order and stop at the first failure. The ledger is
only mutated by the final compare-and-swap, so a rejected attempt never
burns its nonce.
"""

import time
from datetime import datetime, timezone
from typing import Callable

import structlog

from x402gate.gateway.nonce_ledger import NonceLedger, NonceState
from x402gate.payments.errors import (
    AmountMismatch,
    InvalidSignature,
    MalformedIntent,
    ReplayedNonce,
    StaleIntent,
    TermsMismatch,
    UnknownNonce,
)
from x402gate.payments.intent import PaymentIntent
from x402gate.payments.keys import SIGNATURE_SIZE, decode_key, encode_key, verify_signature
from x402gate.payments.models import PaymentProof, Receipt

logger = structlog.get_logger()


class Verifier:
    """Validates signed intents against the challenges this gateway issued"""

    def __init__(
        self,
        authorizer_id: str,
        ledger: NonceLedger,
        clock: Callable[[], float] = time.time,
    ):
        self.authorizer_id = authorizer_id
        self.authorizer_key = decode_key(authorizer_id)
        self.ledger = ledger
        self.clock = clock

    def verify(self, intent: PaymentIntent, signature: bytes) -> Receipt:
        """
        Verify an intent and consume its nonce.

        Returns:
            Receipt for the settlement path

        Raises:
            VerificationError: One of MalformedIntent, StaleIntent,
                UnknownNonce, ReplayedNonce, AmountMismatch, TermsMismatch
                or InvalidSignature
        """
        # 1. Structure
        if not isinstance(intent, PaymentIntent):
            raise MalformedIntent("not a payment intent")
        if not isinstance(signature, bytes) or len(signature) != SIGNATURE_SIZE:
            raise MalformedIntent(f"signature must be {SIGNATURE_SIZE} bytes")
        if intent.authorizer != self.authorizer_key:
            raise MalformedIntent("intent is addressed to a different gateway")

        # 2. Freshness
        now = self.clock()
        if now > intent.deadline:
            raise StaleIntent(f"deadline {intent.deadline} has passed")

        # 3. Nonce lookup
        entry = self.ledger.get(self.authorizer_id, intent.nonce)
        if entry is None or entry.is_expired(now):
            raise UnknownNonce(f"nonce {intent.nonce} was not issued or has expired")
        if entry.state is NonceState.CONSUMED:
            self._log_replay(intent)
            raise ReplayedNonce(f"nonce {intent.nonce} already consumed")

        # 4. Terms
        challenge = entry.challenge
        if intent.amount != challenge.amount:
            raise AmountMismatch(f"expected {challenge.amount}, got {intent.amount}")
        if (
            intent.deadline != challenge.deadline
            or intent.asset_id != challenge.asset_id
            or intent.resource_id != challenge.resource_id
        ):
            raise TermsMismatch("intent does not match the issued challenge")

        # 5. Signature
        if not verify_signature(intent.requester, intent.encode(), signature):
            raise InvalidSignature("signature does not match requester key")

        # 6. Consume
        if not self.ledger.consume(self.authorizer_id, intent.nonce, now):
            self._log_replay(intent)
            raise ReplayedNonce(f"nonce {intent.nonce} already consumed")

        receipt = Receipt(
            requester=encode_key(intent.requester),
            authorizer=self.authorizer_id,
            amount=intent.amount,
            asset_id=intent.asset_id,
            nonce=intent.nonce,
            resource_id=intent.resource_id,
            intent_hash=intent.digest(),
            verified_at=datetime.fromtimestamp(now, tz=timezone.utc),
        )
        logger.info(
            "payment_verified",
            requester=receipt.requester,
            amount=receipt.amount,
            nonce=receipt.nonce,
            resource_id=receipt.resource_id,
        )
        return receipt

    def verify_proof(self, proof: PaymentProof, resource_id: str) -> Receipt:
        """
        Rebuild the intent from an X-PAYMENT proof plus the stored challenge,
        then verify it.

        ``resource_id`` is the route actually being requested, so a proof
        issued for one route fails with TermsMismatch on another.
        """
        entry = self.ledger.get(self.authorizer_id, proof.nonce)
        if entry is None:
            raise UnknownNonce(f"nonce {proof.nonce} was not issued or has expired")

        challenge = entry.challenge
        intent = PaymentIntent(
            requester=proof.agent,
            authorizer=self.authorizer_key,
            amount=proof.amount if proof.amount is not None else challenge.amount,
            nonce=proof.nonce,
            deadline=proof.deadline if proof.deadline is not None else challenge.deadline,
            asset_id=challenge.asset_id,
            resource_id=resource_id,
        )
        return self.verify(intent, proof.signature)

    def _log_replay(self, intent: PaymentIntent) -> None:
        logger.warning(
            "nonce_replay_detected",
            requester=encode_key(intent.requester),
            nonce=intent.nonce,
            resource_id=intent.resource_id,
        )
