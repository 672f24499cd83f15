"""
Tests for the nonce ledgers
"""

import threading
from unittest.mock import MagicMock

import pytest

from x402gate.gateway.nonce_ledger import (
    InMemoryNonceLedger,
    NonceState,
    RedisNonceLedger,
)
from x402gate.payments.errors import LedgerFull

from tests.conftest import START_TIME
from tests.factories import GATEWAY_KEY, ChallengeFactory

NOW = START_TIME
EXPIRES = START_TIME + 35


class TestInMemoryNonceLedger:
    """Test the single-node ledger"""

    def test_reserve_and_get(self, ledger):
        challenge = ChallengeFactory()
        assert ledger.reserve(challenge, EXPIRES, NOW) is True

        entry = ledger.get(challenge.authorizer_id, challenge.nonce)
        assert entry.state is NonceState.PENDING
        assert entry.challenge == challenge
        assert entry.expires_at == EXPIRES

    def test_get_unknown(self, ledger):
        assert ledger.get(GATEWAY_KEY.public_key_b58, 1) is None

    def test_reserve_collision(self, ledger):
        challenge = ChallengeFactory(nonce=7)
        assert ledger.reserve(challenge, EXPIRES, NOW) is True
        assert ledger.reserve(ChallengeFactory(nonce=7, amount=5), EXPIRES, NOW) is False
        assert ledger.get(challenge.authorizer_id, 7).challenge.amount == 1000

    def test_same_nonce_different_authorizer(self, ledger, agent_key):
        assert ledger.reserve(ChallengeFactory(nonce=7), EXPIRES, NOW) is True
        other = ChallengeFactory(nonce=7, authorizer_id=agent_key.public_key_b58)
        assert ledger.reserve(other, EXPIRES, NOW) is True
        assert len(ledger) == 2

    def test_reserve_over_expired_entry(self, ledger):
        ledger.reserve(ChallengeFactory(nonce=7), EXPIRES, NOW)
        assert ledger.reserve(ChallengeFactory(nonce=7), EXPIRES + 100, EXPIRES + 1) is True
        assert ledger.get(GATEWAY_KEY.public_key_b58, 7).expires_at == EXPIRES + 100

    def test_consume_once(self, ledger):
        challenge = ChallengeFactory()
        ledger.reserve(challenge, EXPIRES, NOW)

        assert ledger.consume(challenge.authorizer_id, challenge.nonce, NOW) is True
        assert ledger.consume(challenge.authorizer_id, challenge.nonce, NOW) is False
        assert ledger.get(challenge.authorizer_id, challenge.nonce).state is NonceState.CONSUMED

    def test_consume_unknown(self, ledger):
        assert ledger.consume(GATEWAY_KEY.public_key_b58, 99, NOW) is False

    def test_consume_expired(self, ledger):
        challenge = ChallengeFactory()
        ledger.reserve(challenge, EXPIRES, NOW)
        assert ledger.consume(challenge.authorizer_id, challenge.nonce, EXPIRES + 0.5) is False
        assert ledger.get(challenge.authorizer_id, challenge.nonce).state is NonceState.PENDING

    def test_get_returns_copy(self, ledger):
        challenge = ChallengeFactory()
        ledger.reserve(challenge, EXPIRES, NOW)

        entry = ledger.get(challenge.authorizer_id, challenge.nonce)
        entry.state = NonceState.CONSUMED

        assert ledger.get(challenge.authorizer_id, challenge.nonce).state is NonceState.PENDING

    def test_evict_expired(self, ledger):
        ledger.reserve(ChallengeFactory(nonce=1), NOW + 10, NOW)
        ledger.reserve(ChallengeFactory(nonce=2), NOW + 50, NOW)

        assert ledger.evict_expired(NOW + 10) == 0
        assert ledger.evict_expired(NOW + 11) == 1
        assert ledger.get(GATEWAY_KEY.public_key_b58, 1) is None
        assert ledger.get(GATEWAY_KEY.public_key_b58, 2) is not None

    def test_full_ledger_evicts_before_refusing(self):
        ledger = InMemoryNonceLedger(max_entries=2)
        ledger.reserve(ChallengeFactory(nonce=1), NOW + 10, NOW)
        ledger.reserve(ChallengeFactory(nonce=2), NOW + 50, NOW)

        assert ledger.reserve(ChallengeFactory(nonce=3), NOW + 60, NOW + 20) is True
        assert len(ledger) == 2

    def test_full_ledger_raises(self):
        ledger = InMemoryNonceLedger(max_entries=2)
        ledger.reserve(ChallengeFactory(nonce=1), EXPIRES, NOW)
        ledger.reserve(ChallengeFactory(nonce=2), EXPIRES, NOW)

        with pytest.raises(LedgerFull):
            ledger.reserve(ChallengeFactory(nonce=3), EXPIRES, NOW)
        assert ledger.get(GATEWAY_KEY.public_key_b58, 3) is None

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            InMemoryNonceLedger(max_entries=0)

    def test_concurrent_consume_single_winner(self, ledger):
        challenge = ChallengeFactory()
        ledger.reserve(challenge, EXPIRES, NOW)

        barrier = threading.Barrier(16)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            won = ledger.consume(challenge.authorizer_id, challenge.nonce, NOW)
            with results_lock:
                results.append(won)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert results.count(False) == 15

    def test_concurrent_reserve_single_winner(self, ledger):
        barrier = threading.Barrier(16)
        results = []
        results_lock = threading.Lock()

        def worker(amount):
            barrier.wait()
            won = ledger.reserve(ChallengeFactory(nonce=7, amount=amount), EXPIRES, NOW)
            with results_lock:
                results.append((won, amount))

        threads = [threading.Thread(target=worker, args=(amount,)) for amount in range(1, 17)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [amount for won, amount in results if won]
        assert len(winners) == 1
        assert len(ledger) == 1
        assert ledger.get(GATEWAY_KEY.public_key_b58, 7).challenge.amount == winners[0]


class TestRedisNonceLedger:
    """Test the Redis ledger against a mocked Upstash client"""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def redis_ledger(self, client):
        return RedisNonceLedger(client, key_prefix="test:nonce")

    def test_reserve_runs_script(self, redis_ledger, client):
        client.eval.return_value = 1
        challenge = ChallengeFactory(nonce=7)

        assert redis_ledger.reserve(challenge, EXPIRES, NOW) is True

        script, = client.eval.call_args.args
        assert "EXPIREAT" in script
        assert client.eval.call_args.kwargs["keys"] == [f"test:nonce:{challenge.authorizer_id}:7"]
        args = client.eval.call_args.kwargs["args"]
        assert float(args[1]) == EXPIRES
        assert args[2] == str(int(EXPIRES))

    def test_reserve_collision(self, redis_ledger, client):
        client.eval.return_value = 0
        assert redis_ledger.reserve(ChallengeFactory(), EXPIRES, NOW) is False

    def test_get_decodes_entry(self, redis_ledger, client):
        challenge = ChallengeFactory(nonce=7)
        client.hgetall.return_value = {
            "state": "consumed",
            "challenge": challenge.model_dump_json(by_alias=True),
            "expires_at": repr(EXPIRES),
        }

        entry = redis_ledger.get(challenge.authorizer_id, 7)

        client.hgetall.assert_called_once_with(f"test:nonce:{challenge.authorizer_id}:7")
        assert entry.state is NonceState.CONSUMED
        assert entry.challenge == challenge
        assert entry.expires_at == EXPIRES

    def test_get_missing(self, redis_ledger, client):
        client.hgetall.return_value = {}
        assert redis_ledger.get(GATEWAY_KEY.public_key_b58, 7) is None

    @pytest.mark.parametrize("result,expected", [(1, True), (0, False)])
    def test_consume(self, redis_ledger, client, result, expected):
        client.eval.return_value = result

        assert redis_ledger.consume(GATEWAY_KEY.public_key_b58, 7, NOW) is expected

        script, = client.eval.call_args.args
        assert "'consumed'" in script
        assert client.eval.call_args.kwargs["args"] == [repr(NOW)]

    def test_eviction_left_to_redis(self, redis_ledger, client):
        assert redis_ledger.evict_expired(NOW) == 0
        client.eval.assert_not_called()
