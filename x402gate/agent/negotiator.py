"""
x402 payment negotiation for the paying agent

Drives one outgoing call through request -> 402 -> sign -> retry. The
progress of each call lives in an explicit ``Negotiation`` record rather
than in control flow, so callers and tests can inspect every state the
call went through.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import httpx
import structlog

from x402gate.agent.balance import BalanceSource
from x402gate.agent.telemetry import NullTelemetrySink, TelemetrySink
from x402gate.payments.errors import (
    InsufficientFunds,
    MalformedChallenge,
    NetworkTimeout,
    PaymentRejected,
    RetriesExhausted,
    X402Error,
)
from x402gate.payments.intent import PaymentIntent
from x402gate.payments.keys import SigningKey
from x402gate.payments.models import Challenge, PaymentProof, X_PAYMENT_HEADER

logger = structlog.get_logger()


class NegotiationState(str, Enum):
    UNATTEMPTED = "unattempted"
    CHALLENGE_RECEIVED = "challenge_received"
    SIGNED = "signed"
    RETRIED = "retried"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


TERMINAL_STATES = frozenset({
    NegotiationState.FULFILLED,
    NegotiationState.REJECTED,
    NegotiationState.EXHAUSTED,
})


@dataclass
class Negotiation:
    """State of one paid call"""

    method: str
    url: str
    state: NegotiationState = NegotiationState.UNATTEMPTED
    history: List[NegotiationState] = field(default_factory=lambda: [NegotiationState.UNATTEMPTED])
    signings: int = 0
    timeouts: int = 0
    challenge: Optional[Challenge] = None
    intent: Optional[PaymentIntent] = None
    paid_nonces: Set[int] = field(default_factory=set)
    last_error: Optional[X402Error] = None
    response: Optional[httpx.Response] = None

    @property
    def attempts(self) -> int:
        """Retry budget consumed so far"""
        return self.signings + self.timeouts

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, state: NegotiationState) -> None:
        if self.done:
            raise RuntimeError(f"Negotiation already finished in state {self.state.value}")
        self.state = state
        self.history.append(state)


class Negotiator:
    """
    Pays for HTTP calls that answer 402.

    Safe to share across concurrent calls: per-call state lives in the
    Negotiation, the key is read-only and the balance source is read-mostly.
    """

    def __init__(
        self,
        key: SigningKey,
        balance_source: Optional[BalanceSource],
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        timeout: float = 10.0,
        max_amount: Optional[int] = None,
        telemetry: Optional[TelemetrySink] = None,
        clock=time.time,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.key = key
        self.balance_source = balance_source
        self.client = client or httpx.AsyncClient()
        self.max_retries = max_retries
        self.timeout = timeout
        self.max_amount = max_amount
        self.telemetry = telemetry or NullTelemetrySink()
        self.clock = clock

    async def __aenter__(self) -> "Negotiator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def start(self, method: str, url: str) -> Negotiation:
        return Negotiation(method=method.upper(), url=url)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make a call, paying for it if the server asks"""
        return await self.run(self.start(method, url), **kwargs)

    async def run(self, negotiation: Negotiation, **kwargs: Any) -> httpx.Response:
        """
        Drive a negotiation to a terminal state.

        Returns:
            The final non-402 response

        Raises:
            MalformedChallenge, InsufficientFunds, PaymentRejected,
            RetriesExhausted or NetworkTimeout; never returns silently on
            failure
        """
        started = time.monotonic()
        try:
            response = await self._negotiate(negotiation, kwargs)
        except X402Error as e:
            self._record(negotiation, started, False, e.kind)
            raise
        except httpx.HTTPError:
            if not negotiation.done:
                negotiation.transition(NegotiationState.REJECTED)
            self._record(negotiation, started, False, "transport_error")
            raise

        self._record(negotiation, started, True, None)
        return response

    async def _negotiate(self, negotiation: Negotiation, kwargs: Dict[str, Any]) -> httpx.Response:
        proof_header: Optional[str] = None

        while True:
            try:
                response = await self._send(negotiation, proof_header, kwargs)
            except NetworkTimeout as e:
                negotiation.timeouts += 1
                negotiation.last_error = e
                if negotiation.attempts >= self.max_retries:
                    negotiation.transition(NegotiationState.EXHAUSTED)
                    raise
                logger.warning("payment_round_trip_timeout", url=negotiation.url, attempts=negotiation.attempts)
                continue

            if response.status_code != 402:
                negotiation.response = response
                negotiation.transition(NegotiationState.FULFILLED)
                if negotiation.signings:
                    self._invalidate_balance()
                    logger.info(
                        "payment_fulfilled",
                        url=negotiation.url,
                        amount=negotiation.challenge.amount,
                        nonce=negotiation.challenge.nonce,
                        signings=negotiation.signings,
                    )
                return response

            body = _json_body(response)

            if negotiation.state is NegotiationState.RETRIED:
                rejection = PaymentRejected(reason=body.get("reason"))
                negotiation.last_error = rejection
                logger.warning("payment_rejected", url=negotiation.url, reason=rejection.reason)
                if not isinstance(body.get("challenge"), dict):
                    negotiation.transition(NegotiationState.REJECTED)
                    raise rejection

            if negotiation.attempts >= self.max_retries:
                negotiation.transition(NegotiationState.EXHAUSTED)
                raise RetriesExhausted(negotiation.signings, negotiation.last_error)

            challenge = self._accept_challenge(negotiation, body)
            await self._check_solvency(negotiation, challenge)
            proof_header = self._sign(negotiation, challenge)

    async def _send(
        self,
        negotiation: Negotiation,
        proof_header: Optional[str],
        kwargs: Dict[str, Any],
    ) -> httpx.Response:
        headers = dict(kwargs.get("headers") or {})
        if proof_header is not None:
            headers[X_PAYMENT_HEADER] = proof_header
            if negotiation.state is NegotiationState.SIGNED:
                negotiation.transition(NegotiationState.RETRIED)

        request_kwargs = {k: v for k, v in kwargs.items() if k != "headers"}
        # httpx timeouts apply per phase; wait_for bounds the whole round trip
        try:
            return await asyncio.wait_for(
                self.client.request(
                    negotiation.method,
                    negotiation.url,
                    headers=headers,
                    timeout=self.timeout,
                    **request_kwargs,
                ),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise NetworkTimeout(f"{negotiation.method} {negotiation.url} timed out after {self.timeout}s") from e

    def _accept_challenge(self, negotiation: Negotiation, body: Dict[str, Any]) -> Challenge:
        try:
            if "challenge" not in body:
                raise MalformedChallenge("402 response carries no challenge")
            challenge = Challenge.from_wire(body["challenge"])
            if not challenge.is_live(self.clock()):
                raise MalformedChallenge(f"Challenge already expired at {challenge.deadline}")
            if self.max_amount is not None and challenge.amount > self.max_amount:
                raise MalformedChallenge(f"Challenge amount {challenge.amount} exceeds limit {self.max_amount}")
        except MalformedChallenge as e:
            negotiation.last_error = e
            negotiation.transition(NegotiationState.REJECTED)
            logger.warning("challenge_malformed", url=negotiation.url, error=e.message)
            raise

        if challenge.nonce in negotiation.paid_nonces:
            rejection = PaymentRejected(
                f"Gateway repeated challenge nonce {challenge.nonce}",
                reason=negotiation.last_error.kind if negotiation.last_error else None,
            )
            negotiation.last_error = rejection
            negotiation.transition(NegotiationState.REJECTED)
            raise rejection

        negotiation.challenge = challenge
        negotiation.transition(NegotiationState.CHALLENGE_RECEIVED)
        return challenge

    def _sign(self, negotiation: Negotiation, challenge: Challenge) -> str:
        intent = PaymentIntent.from_challenge(challenge, self.key.public_key)
        signature = intent.sign(self.key)

        negotiation.intent = intent
        negotiation.signings += 1
        negotiation.paid_nonces.add(challenge.nonce)
        negotiation.transition(NegotiationState.SIGNED)
        logger.debug("intent_signed", url=negotiation.url, nonce=challenge.nonce, amount=challenge.amount)

        return PaymentProof(
            signature=signature,
            agent=self.key.public_key,
            nonce=challenge.nonce,
        ).format_header()

    async def _check_solvency(self, negotiation: Negotiation, challenge: Challenge) -> None:
        if self.balance_source is None:
            return
        try:
            balances = await asyncio.to_thread(self.balance_source.get_balance, self.key.public_key_b58)
        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning("balance_check_unavailable", error=str(e))
            return

        available = balances.get(challenge.asset_id, 0)
        if available < challenge.amount:
            error = InsufficientFunds(challenge.asset_id, challenge.amount, available)
            negotiation.last_error = error
            negotiation.transition(NegotiationState.REJECTED)
            raise error

    def _invalidate_balance(self) -> None:
        invalidate = getattr(self.balance_source, "invalidate", None) if self.balance_source else None
        if invalidate is not None:
            invalidate(self.key.public_key_b58)

    def _record(self, negotiation: Negotiation, started: float, success: bool, error_kind: Optional[str]) -> None:
        try:
            self.telemetry.record(
                vendor_id=httpx.URL(negotiation.url).host,
                success=success,
                latency=time.monotonic() - started,
                error_kind=error_kind,
            )
        except Exception as e:
            logger.warning("telemetry_record_failed", error=str(e))


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
