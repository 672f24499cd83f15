"""
x402 Paying Agent (Requester role)
Negotiates 402 challenges, signs payment intents and retries with proof
"""

from x402gate.agent.balance import (
    BalanceSource,
    StaticBalanceSource,
    HttpBalanceSource,
    CachedBalanceSource,
)
from x402gate.agent.negotiator import Negotiator, Negotiation, NegotiationState
from x402gate.agent.telemetry import TelemetrySink, LogTelemetrySink, NullTelemetrySink

__all__ = [
    "BalanceSource",
    "StaticBalanceSource",
    "HttpBalanceSource",
    "CachedBalanceSource",
    "Negotiator",
    "Negotiation",
    "NegotiationState",
    "TelemetrySink",
    "LogTelemetrySink",
    "NullTelemetrySink",
]
