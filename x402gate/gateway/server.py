"""
x402-gate Gateway Server
FastAPI app serving priced routes behind x402 payment
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import structlog
import uvicorn
from fastapi import FastAPI, Request

from x402gate.config import AuthorizerConfig, get_authorizer_config
from x402gate.gateway.issuer import ChallengeIssuer
from x402gate.gateway.middleware import PricedRoute, X402Middleware
from x402gate.gateway.nonce_ledger import InMemoryNonceLedger, NonceLedger, RedisNonceLedger
from x402gate.gateway.settlement import (
    HttpSettlementSink,
    LogSettlementSink,
    SettlementEmitter,
    SettlementSink,
)
from x402gate.gateway.tasks import run_eviction_loop
from x402gate.gateway.verifier import Verifier
from x402gate.log import configure_logging
from x402gate.payments.keys import SigningKey
from x402gate.payments.models import X402_VERSION

logger = structlog.get_logger()


def build_ledger(config: AuthorizerConfig) -> NonceLedger:
    if config.ledger_backend == "redis":
        if not config.upstash_redis_rest_url or not config.upstash_redis_rest_token:
            raise ValueError("Redis ledger requires UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN")
        return RedisNonceLedger.from_url(config.upstash_redis_rest_url, config.upstash_redis_rest_token)
    return InMemoryNonceLedger(max_entries=config.ledger_max_entries)


def build_sink(config: AuthorizerConfig) -> SettlementSink:
    if config.settlement_url:
        return HttpSettlementSink(config.settlement_url, timeout=config.settlement_timeout)
    return LogSettlementSink()


def default_prices(config: AuthorizerConfig) -> Dict[Tuple[str, str], PricedRoute]:
    return {
        ("GET", "/api/v1/quote"): PricedRoute(amount=config.default_price, resource_id="quote"),
        ("POST", "/api/v1/echo"): PricedRoute(amount=config.default_price * 2, resource_id="echo"),
    }


def create_app(
    config: Optional[AuthorizerConfig] = None,
    ledger: Optional[NonceLedger] = None,
    sink: Optional[SettlementSink] = None,
    prices: Optional[Dict[Tuple[str, str], PricedRoute]] = None,
) -> FastAPI:
    """Wire up the gateway: identity, ledger, issuer, verifier and settlement"""
    config = config or get_authorizer_config()

    if config.gateway_signing_seed:
        gateway_key = SigningKey.from_base58(config.gateway_signing_seed)
    else:
        gateway_key = SigningKey.generate()
        logger.warning("gateway_key_generated", public_key=gateway_key.public_key_b58)

    ledger = ledger if ledger is not None else build_ledger(config)
    prices = prices if prices is not None else default_prices(config)

    issuer = ChallengeIssuer(
        authorizer_id=gateway_key.public_key_b58,
        asset_id=config.asset_id,
        ledger=ledger,
        ttl_seconds=config.challenge_ttl_seconds,
        grace_seconds=config.nonce_grace_seconds,
    )
    verifier = Verifier(authorizer_id=gateway_key.public_key_b58, ledger=ledger)
    emitter = SettlementEmitter(sink or build_sink(config))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the FastAPI app"""
        logger.info(
            "gateway_starting",
            gateway_id=gateway_key.public_key_b58,
            asset_id=config.asset_id,
            ledger=config.ledger_backend,
        )
        eviction_task = asyncio.create_task(
            run_eviction_loop(ledger, interval_seconds=config.eviction_interval_seconds)
        )
        yield
        eviction_task.cancel()
        try:
            await eviction_task
        except asyncio.CancelledError:
            pass
        logger.info("gateway_shutting_down")

    app = FastAPI(
        title="x402 Gateway",
        description="Pay-per-call API gateway using the x402 protocol",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.gateway_id = gateway_key.public_key_b58
    app.state.ledger = ledger
    app.state.issuer = issuer
    app.state.verifier = verifier

    app.add_middleware(
        X402Middleware,
        issuer=issuer,
        verifier=verifier,
        emitter=emitter,
        prices=prices,
        enabled=config.x402_enabled,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/x402.json")
    async def get_x402_manifest():
        """Machine-readable payment terms for this gateway"""
        return {
            "x402Version": X402_VERSION,
            "gateway_id": gateway_key.public_key_b58,
            "mint": config.asset_id,
            "challenge_ttl_seconds": config.challenge_ttl_seconds,
            "routes": [
                {"method": method, "path": path, "cost": str(route.amount), "service_id": route.resource_id}
                for (method, path), route in prices.items()
            ],
        }

    @app.get("/api/v1/quote")
    async def quote():
        return {"quote": "Pay per call, settle later.", "served_at": datetime.now(timezone.utc).isoformat()}

    @app.post("/api/v1/echo")
    async def echo(request: Request):
        return {"echo": (await request.body()).decode("utf-8", errors="replace")}

    return app


if __name__ == "__main__":
    config = get_authorizer_config()
    configure_logging(config.log_level, config.log_format)
    uvicorn.run(create_app(config), host=config.gateway_host, port=config.gateway_port)
