"""
Tests for agent balance sources
"""

import httpx
import pytest

from x402gate.agent.balance import CachedBalanceSource, HttpBalanceSource, StaticBalanceSource


class CountingSource(StaticBalanceSource):
    def __init__(self, balances):
        super().__init__(balances)
        self.calls = 0

    def get_balance(self, pubkey):
        self.calls += 1
        return super().get_balance(pubkey)


class TestStaticBalanceSource:
    def test_known_and_unknown_keys(self):
        source = StaticBalanceSource({"alice": {"USDC": 5}})
        assert source.get_balance("alice") == {"USDC": 5}
        assert source.get_balance("bob") == {}

    def test_returns_copy(self):
        source = StaticBalanceSource({"alice": {"USDC": 5}})
        source.get_balance("alice")["USDC"] = 0
        assert source.get_balance("alice") == {"USDC": 5}


class TestHttpBalanceSource:
    def test_reads_balances(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"USDC": "1500", "SOL": 2})

        source = HttpBalanceSource(
            "http://ledger.test/",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        assert source.get_balance("alice") == {"USDC": 1500, "SOL": 2}
        assert str(seen[0].url) == "http://ledger.test/balances/alice"
        source.close()

    def test_error_status_raises(self):
        source = HttpBalanceSource(
            "http://ledger.test",
            client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404))),
        )
        with pytest.raises(httpx.HTTPStatusError):
            source.get_balance("alice")

    @pytest.mark.parametrize("body", [
        b"<html>maintenance</html>",
        b'["USDC", 1000]',
        b'{"USDC": "lots"}',
        b'{"USDC": null}',
    ])
    def test_invalid_body_raises_value_error(self, body):
        source = HttpBalanceSource(
            "http://ledger.test",
            client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))),
        )
        with pytest.raises(ValueError):
            source.get_balance("alice")


class TestCachedBalanceSource:
    @pytest.fixture
    def source(self):
        return CountingSource({"alice": {"USDC": 5}, "bob": {"USDC": 7}})

    def test_hits_within_ttl(self, source, clock):
        cached = CachedBalanceSource(source, ttl_seconds=30, clock=clock)
        cached.get_balance("alice")
        clock.advance(29)
        assert cached.get_balance("alice") == {"USDC": 5}
        assert source.calls == 1

    def test_refreshes_after_ttl(self, source, clock):
        cached = CachedBalanceSource(source, ttl_seconds=30, clock=clock)
        cached.get_balance("alice")
        clock.advance(30)
        cached.get_balance("alice")
        assert source.calls == 2

    def test_invalidate_one(self, source, clock):
        cached = CachedBalanceSource(source, ttl_seconds=30, clock=clock)
        cached.get_balance("alice")
        cached.get_balance("bob")

        cached.invalidate("alice")
        cached.get_balance("alice")
        cached.get_balance("bob")

        assert source.calls == 3

    def test_invalidate_all(self, source, clock):
        cached = CachedBalanceSource(source, ttl_seconds=30, clock=clock)
        cached.get_balance("alice")
        cached.get_balance("bob")

        cached.invalidate()
        cached.get_balance("alice")
        cached.get_balance("bob")

        assert source.calls == 4

    def test_errors_not_cached(self, clock):
        class FlakySource:
            calls = 0

            def get_balance(self, pubkey):
                self.calls += 1
                if self.calls == 1:
                    raise httpx.ConnectError("down")
                return {"USDC": 1}

        flaky = FlakySource()
        cached = CachedBalanceSource(flaky, ttl_seconds=30, clock=clock)
        with pytest.raises(httpx.ConnectError):
            cached.get_balance("alice")
        assert cached.get_balance("alice") == {"USDC": 1}
