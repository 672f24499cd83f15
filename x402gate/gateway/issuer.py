"""
Challenge issuance for the x402 gateway
"""

import secrets
import time
from typing import Callable

import structlog

from x402gate.gateway.nonce_ledger import NonceLedger
from x402gate.payments.models import Challenge, U64_MAX

logger = structlog.get_logger()

MAX_CHALLENGE_TTL_SECONDS = 300
NONCE_ATTEMPTS = 8


class ChallengeIssuer:
    """
    Mints fresh challenges and reserves their nonces.

    Every challenge is recorded as pending in the ledger before it is
    returned, so an unredeemed challenge still blocks nonce reuse until it
    expires.
    """

    def __init__(
        self,
        authorizer_id: str,
        asset_id: str,
        ledger: NonceLedger,
        ttl_seconds: int = 30,
        grace_seconds: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        if not 0 < ttl_seconds <= MAX_CHALLENGE_TTL_SECONDS:
            raise ValueError(f"ttl_seconds must be between 1 and {MAX_CHALLENGE_TTL_SECONDS}")
        if grace_seconds < 0:
            raise ValueError("grace_seconds must not be negative")

        self.authorizer_id = authorizer_id
        self.asset_id = asset_id
        self.ledger = ledger
        self.ttl_seconds = ttl_seconds
        self.grace_seconds = grace_seconds
        self.clock = clock

    def issue(self, resource_id: str, requested_amount: int) -> Challenge:
        """
        Issue a challenge for one priced request.

        Args:
            resource_id: Route the payment is bound to
            requested_amount: Price in the smallest unit of the asset

        Returns:
            Challenge whose nonce is reserved as pending

        Raises:
            ValueError: If the amount is not a positive u64
            LedgerFull: If the ledger cannot hold another entry
        """
        if isinstance(requested_amount, bool) or not isinstance(requested_amount, int):
            raise ValueError("requested_amount must be an integer")
        if not 0 < requested_amount <= U64_MAX:
            raise ValueError(f"requested_amount out of range: {requested_amount}")

        now = self.clock()
        deadline = int(now) + self.ttl_seconds

        for _ in range(NONCE_ATTEMPTS):
            challenge = Challenge(
                authorizer_id=self.authorizer_id,
                amount=requested_amount,
                asset_id=self.asset_id,
                nonce=secrets.randbits(64),
                deadline=deadline,
                resource_id=resource_id,
            )
            if self.ledger.reserve(challenge, expires_at=deadline + self.grace_seconds, now=now):
                logger.debug(
                    "challenge_issued",
                    resource_id=resource_id,
                    amount=requested_amount,
                    nonce=challenge.nonce,
                    deadline=deadline,
                )
                return challenge

            logger.warning("nonce_collision", nonce=challenge.nonce)

        raise RuntimeError(f"Could not reserve a unique nonce after {NONCE_ATTEMPTS} attempts")
