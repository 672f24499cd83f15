"""
Nonce ledger for x402 replay protection

Records every issued challenge under ``(authorizer_id, nonce)`` as
``pending`` until it is consumed by a verified intent or expires. The
pending -> consumed transition is atomic in every backend, so two
concurrent verifications of the same nonce can never both succeed.
"""

import json
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

import structlog

from x402gate.payments.errors import LedgerFull
from x402gate.payments.models import Challenge

logger = structlog.get_logger()


class NonceState(str, Enum):
    PENDING = "pending"
    CONSUMED = "consumed"


@dataclass
class LedgerEntry:
    state: NonceState
    challenge: Challenge
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class NonceLedger(ABC):
    """Storage contract shared by the in-memory and Redis ledgers"""

    @abstractmethod
    def reserve(self, challenge: Challenge, expires_at: float, now: float) -> bool:
        """Insert a pending entry if the key is free. Returns False on collision."""

    @abstractmethod
    def get(self, authorizer_id: str, nonce: int) -> Optional[LedgerEntry]:
        """Look up a live entry"""

    @abstractmethod
    def consume(self, authorizer_id: str, nonce: int, now: float) -> bool:
        """Atomically move a live entry from pending to consumed"""

    @abstractmethod
    def evict_expired(self, now: float) -> int:
        """Drop entries past their expiry. Returns the number removed."""


class InMemoryNonceLedger(NonceLedger):
    """
    Single-node ledger backed by a dict.

    Bounded to ``max_entries``; when full, expired entries are evicted
    before a reservation is refused with LedgerFull.
    """

    def __init__(self, max_entries: int = 100_000):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: Dict[Tuple[str, int], LedgerEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def reserve(self, challenge: Challenge, expires_at: float, now: float) -> bool:
        key = (challenge.authorizer_id, challenge.nonce)

        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and not existing.is_expired(now):
                return False

            if existing is None and len(self._entries) >= self.max_entries:
                self._evict_locked(now)
                if len(self._entries) >= self.max_entries:
                    logger.warning("nonce_ledger_full", capacity=self.max_entries)
                    raise LedgerFull(f"Nonce ledger at capacity ({self.max_entries})")

            self._entries[key] = LedgerEntry(
                state=NonceState.PENDING,
                challenge=challenge,
                expires_at=expires_at,
            )
            return True

    def get(self, authorizer_id: str, nonce: int) -> Optional[LedgerEntry]:
        with self._lock:
            entry = self._entries.get((authorizer_id, nonce))
            return replace(entry) if entry is not None else None

    def consume(self, authorizer_id: str, nonce: int, now: float) -> bool:
        with self._lock:
            entry = self._entries.get((authorizer_id, nonce))
            if entry is None or entry.is_expired(now):
                return False
            if entry.state is not NonceState.PENDING:
                return False
            entry.state = NonceState.CONSUMED
            return True

    def evict_expired(self, now: Optional[float] = None) -> int:
        with self._lock:
            return self._evict_locked(time.time() if now is None else now)

    def _evict_locked(self, now: float) -> int:
        stale = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("nonce_entries_evicted", count=len(stale))
        return len(stale)


# Both scripts run atomically inside Redis
_RESERVE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'state', 'pending', 'challenge', ARGV[1], 'expires_at', ARGV[2])
redis.call('EXPIREAT', KEYS[1], ARGV[3])
return 1
"""

_CONSUME_SCRIPT = """
if redis.call('HGET', KEYS[1], 'state') ~= 'pending' then
    return 0
end
if tonumber(redis.call('HGET', KEYS[1], 'expires_at')) < tonumber(ARGV[1]) then
    return 0
end
redis.call('HSET', KEYS[1], 'state', 'consumed')
return 1
"""


class RedisNonceLedger(NonceLedger):
    """
    Multi-node ledger on Upstash Redis.

    Reservation and consumption are Lua scripts, so every gateway node sees
    a linearizable pending -> consumed transition. Redis key expiry does the
    eviction.
    """

    def __init__(self, client, key_prefix: str = "x402:nonce"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, token: str, key_prefix: str = "x402:nonce") -> "RedisNonceLedger":
        from upstash_redis import Redis

        return cls(Redis(url=url, token=token), key_prefix=key_prefix)

    def _key(self, authorizer_id: str, nonce: int) -> str:
        return f"{self.key_prefix}:{authorizer_id}:{nonce}"

    def reserve(self, challenge: Challenge, expires_at: float, now: float) -> bool:
        result = self.client.eval(
            _RESERVE_SCRIPT,
            keys=[self._key(challenge.authorizer_id, challenge.nonce)],
            args=[
                challenge.model_dump_json(by_alias=True),
                repr(float(expires_at)),
                str(math.ceil(expires_at)),
            ],
        )
        return int(result) == 1

    def get(self, authorizer_id: str, nonce: int) -> Optional[LedgerEntry]:
        fields = self.client.hgetall(self._key(authorizer_id, nonce))
        if not fields:
            return None
        return LedgerEntry(
            state=NonceState(fields["state"]),
            challenge=Challenge.model_validate(json.loads(fields["challenge"])),
            expires_at=float(fields["expires_at"]),
        )

    def consume(self, authorizer_id: str, nonce: int, now: float) -> bool:
        result = self.client.eval(
            _CONSUME_SCRIPT,
            keys=[self._key(authorizer_id, nonce)],
            args=[repr(float(now))],
        )
        return int(result) == 1

    def evict_expired(self, now: Optional[float] = None) -> int:
        return 0
