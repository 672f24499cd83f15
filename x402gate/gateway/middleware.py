"""
FastAPI middleware enforcing x402 payment on priced routes.

This module provides HTTP middleware that:
1. Lets unpriced routes through untouched
2. Answers unpaid requests with 402 and a fresh challenge
3. Verifies the X-PAYMENT proof against the nonce ledger
4. Serves the route only after verification succeeds
5. Hands the receipt to the settlement emitter once the route succeeded
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import structlog
from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from x402gate.gateway.issuer import ChallengeIssuer
from x402gate.gateway.settlement import SettlementEmitter
from x402gate.gateway.verifier import Verifier
from x402gate.payments.errors import LedgerFull, ReplayedNonce, VerificationError
from x402gate.payments.models import (
    PaymentProof,
    PaymentRequiredBody,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class PricedRoute:
    amount: int
    resource_id: str


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment enforcement for FastAPI.

    ``prices`` maps ``(METHOD, path)`` to the amount charged and the resource
    id bound into the signature. There is no "serve now, bill later" path:
    any verification failure gets a 402 and the route is never called.
    """

    def __init__(
        self,
        app,
        issuer: ChallengeIssuer,
        verifier: Verifier,
        emitter: SettlementEmitter,
        prices: Dict[Tuple[str, str], PricedRoute],
        enabled: bool = True,
    ):
        super().__init__(app)
        self.issuer = issuer
        self.verifier = verifier
        self.emitter = emitter
        self.enabled = enabled
        self.prices = {
            (method.upper(), _normalize_path(path)): route
            for (method, path), route in prices.items()
        }

    def price_for(self, method: str, path: str) -> Optional[PricedRoute]:
        return self.prices.get((method.upper(), _normalize_path(path)))

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not self.enabled:
            return await call_next(request)

        route = self.price_for(request.method, request.url.path)
        if route is None:
            return await call_next(request)

        header = request.headers.get(X_PAYMENT_HEADER)
        if not header:
            logger.info("payment_required", resource_id=route.resource_id, amount=route.amount)
            return await self._payment_required(route, "X-PAYMENT header is required")

        try:
            proof = PaymentProof.parse_header(header)
            receipt = await run_in_threadpool(self.verifier.verify_proof, proof, route.resource_id)
        except ReplayedNonce as e:
            return await self._payment_required(route, "Payment proof already used", e.kind)
        except VerificationError as e:
            logger.info("payment_rejected", resource_id=route.resource_id, reason=e.kind, detail=e.message)
            return await self._payment_required(route, "Payment verification failed", e.kind)

        response = await call_next(request)

        if 200 <= response.status_code < 300:
            await run_in_threadpool(self.emitter.emit, receipt)
            response.headers[X_PAYMENT_RESPONSE_HEADER] = receipt.intent_hash
        else:
            logger.warning(
                "paid_request_failed",
                resource_id=route.resource_id,
                status_code=response.status_code,
                nonce=receipt.nonce,
            )

        return response

    async def _payment_required(
        self,
        route: PricedRoute,
        error: str,
        reason: Optional[str] = None,
    ) -> Response:
        try:
            challenge = await run_in_threadpool(self.issuer.issue, route.resource_id, route.amount)
        except LedgerFull:
            return JSONResponse(
                status_code=503,
                content={"error": "Service temporarily unavailable", "detail": "payment capacity exhausted"},
            )

        body = PaymentRequiredBody(error=error, reason=reason, challenge=challenge.to_wire())
        return JSONResponse(status_code=402, content=body.model_dump())
