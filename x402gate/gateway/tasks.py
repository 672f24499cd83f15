import asyncio
import time
from typing import Callable

import structlog

from x402gate.gateway.nonce_ledger import NonceLedger

logger = structlog.get_logger()


async def run_eviction_loop(
    ledger: NonceLedger,
    interval_seconds: float = 10.0,
    clock: Callable[[], float] = time.time,
):
    """Background task dropping nonce ledger entries past their expiry"""
    while True:
        try:
            await asyncio.sleep(interval_seconds)

            evicted = ledger.evict_expired(clock())
            if evicted > 0:
                logger.info("nonce_entries_evicted", count=evicted)

        except asyncio.CancelledError:
            logger.info("eviction_loop_stopped")
            raise
        except Exception as e:
            logger.error("eviction_loop_error", error=str(e))
