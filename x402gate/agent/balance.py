"""
Balance sources for the agent's local solvency check.

Balances here are advisory: they only spare a doomed round trip. The gateway
stays the authority on whether a payment is accepted.
"""

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import httpx
import structlog

logger = structlog.get_logger()


class BalanceSource(Protocol):
    def get_balance(self, pubkey: str) -> Dict[str, int]:
        ...


class StaticBalanceSource:
    """Fixed balances, for tests and offline use"""

    def __init__(self, balances: Optional[Dict[str, Dict[str, int]]] = None):
        self.balances = balances or {}

    def get_balance(self, pubkey: str) -> Dict[str, int]:
        return dict(self.balances.get(pubkey, {}))


class HttpBalanceSource:
    """Reads ``GET {base_url}/balances/{pubkey}`` -> ``{asset: amount}``"""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def get_balance(self, pubkey: str) -> Dict[str, int]:
        """
        Raises:
            httpx.HTTPError: If the service is unreachable or answers an error
            ValueError: If the body is not a ``{asset: integer}`` object
        """
        response = self.client.get(f"{self.base_url}/balances/{pubkey}")
        response.raise_for_status()
        try:
            body = response.json()
            return {str(asset): int(amount) for asset, amount in body.items()}
        except (ValueError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid balance response from {self.base_url}: {e}") from e

    def close(self) -> None:
        self.client.close()


class CachedBalanceSource:
    """
    TTL cache in front of another balance source.

    Shared read-mostly by concurrent negotiations.
    """

    def __init__(
        self,
        source: BalanceSource,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Dict[str, Tuple[float, Dict[str, int]]] = {}
        self._lock = threading.Lock()

    def get_balance(self, pubkey: str) -> Dict[str, int]:
        now = self.clock()
        with self._lock:
            cached = self._cache.get(pubkey)
            if cached is not None and now - cached[0] < self.ttl_seconds:
                return dict(cached[1])

        balances = self.source.get_balance(pubkey)
        logger.debug("balance_refreshed", pubkey=pubkey, assets=len(balances))

        with self._lock:
            self._cache[pubkey] = (now, dict(balances))
        return dict(balances)

    def invalidate(self, pubkey: Optional[str] = None) -> None:
        with self._lock:
            if pubkey is None:
                self._cache.clear()
            else:
                self._cache.pop(pubkey, None)
