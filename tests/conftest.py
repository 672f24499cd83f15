"""
Pytest configuration and shared fixtures
"""

import pytest

from x402gate.config import AuthorizerConfig
from x402gate.gateway.issuer import ChallengeIssuer
from x402gate.gateway.nonce_ledger import InMemoryNonceLedger
from x402gate.gateway.settlement import QueueSettlementSink
from x402gate.gateway.verifier import Verifier
from x402gate.payments.keys import SigningKey

GATEWAY_SEED = bytes.fromhex("9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae3d55")
AGENT_SEED = bytes.fromhex("4ccd089b28ff96da9db6c346ec114e0f5b8a319f35aba624da8cf6ed4d0bd6f0")

START_TIME = 1_700_000_000.0


class FakeClock:
    """Controllable replacement for time.time"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway_key() -> SigningKey:
    """Deterministic gateway identity"""
    return SigningKey.from_seed(GATEWAY_SEED)


@pytest.fixture
def agent_key() -> SigningKey:
    """Deterministic agent identity"""
    return SigningKey.from_seed(AGENT_SEED)


@pytest.fixture
def ledger() -> InMemoryNonceLedger:
    return InMemoryNonceLedger(max_entries=1000)


@pytest.fixture
def issuer(gateway_key, ledger, clock) -> ChallengeIssuer:
    return ChallengeIssuer(
        authorizer_id=gateway_key.public_key_b58,
        asset_id="USDC",
        ledger=ledger,
        ttl_seconds=30,
        grace_seconds=5,
        clock=clock,
    )


@pytest.fixture
def verifier(gateway_key, ledger, clock) -> Verifier:
    return Verifier(authorizer_id=gateway_key.public_key_b58, ledger=ledger, clock=clock)


@pytest.fixture
def settlement_sink() -> QueueSettlementSink:
    return QueueSettlementSink(maxsize=100)


@pytest.fixture
def gateway_config(gateway_key) -> AuthorizerConfig:
    """Gateway configuration with a fixed identity and no external services"""
    return AuthorizerConfig(
        gateway_signing_seed=gateway_key.export_seed_b58(),
        asset_id="USDC",
        default_price=1000,
        challenge_ttl_seconds=30,
        ledger_backend="memory",
        settlement_url="",
    )
