"""
Settlement hand-off for verified payments

Settlement itself happens elsewhere. The emitter only passes receipts on,
and never lets a sink failure unwind a request that was already served.
"""

import queue
from typing import Optional, Protocol

import httpx
import structlog

from x402gate.payments.models import Receipt

logger = structlog.get_logger()


class SettlementSink(Protocol):
    def emit(self, receipt: Receipt) -> None:
        ...


class LogSettlementSink:
    """Writes receipts to the structured log"""

    def emit(self, receipt: Receipt) -> None:
        logger.info(
            "settlement_receipt",
            requester=receipt.requester,
            amount=receipt.amount,
            asset_id=receipt.asset_id,
            nonce=receipt.nonce,
            intent_hash=receipt.intent_hash,
        )


class QueueSettlementSink:
    """Bounded in-process queue, drained by a separate settlement worker"""

    def __init__(self, maxsize: int = 10_000):
        self.queue: "queue.Queue[Receipt]" = queue.Queue(maxsize=maxsize)

    def emit(self, receipt: Receipt) -> None:
        try:
            self.queue.put_nowait(receipt)
        except queue.Full:
            logger.warning("settlement_queue_full", intent_hash=receipt.intent_hash)


class HttpSettlementSink:
    """POSTs receipts as JSON to an external settlement queue"""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def emit(self, receipt: Receipt) -> None:
        response = self.client.post(self.url, json=receipt.model_dump(mode="json"))
        response.raise_for_status()

    def close(self) -> None:
        self.client.close()


class SettlementEmitter:
    """Best-effort receipt emitter"""

    def __init__(self, sink: SettlementSink):
        self.sink = sink

    def emit(self, receipt: Receipt) -> bool:
        """
        Hand a receipt to the sink.

        Returns:
            True if the sink accepted it, False if it failed
        """
        try:
            self.sink.emit(receipt)
            return True
        except Exception as e:
            logger.error(
                "settlement_emit_failed",
                error=str(e),
                intent_hash=receipt.intent_hash,
                nonce=receipt.nonce,
            )
            return False
