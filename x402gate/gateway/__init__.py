"""
x402 Gateway (Authorizer role)
Challenge issuance, verification, nonce ledger and settlement hand-off
"""

from x402gate.gateway.nonce_ledger import (
    NonceLedger,
    NonceState,
    LedgerEntry,
    InMemoryNonceLedger,
    RedisNonceLedger,
)
from x402gate.gateway.issuer import ChallengeIssuer
from x402gate.gateway.verifier import Verifier
from x402gate.gateway.settlement import (
    SettlementEmitter,
    LogSettlementSink,
    QueueSettlementSink,
    HttpSettlementSink,
)
from x402gate.gateway.middleware import X402Middleware, PricedRoute

__all__ = [
    "NonceLedger",
    "NonceState",
    "LedgerEntry",
    "InMemoryNonceLedger",
    "RedisNonceLedger",
    "ChallengeIssuer",
    "Verifier",
    "SettlementEmitter",
    "LogSettlementSink",
    "QueueSettlementSink",
    "HttpSettlementSink",
    "X402Middleware",
    "PricedRoute",
]
