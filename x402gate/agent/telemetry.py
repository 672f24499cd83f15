"""
Telemetry sinks for paid calls. Purely observational.
"""

from typing import Optional, Protocol

import structlog

logger = structlog.get_logger()


class TelemetrySink(Protocol):
    def record(self, vendor_id: str, success: bool, latency: float, error_kind: Optional[str]) -> None:
        ...


class NullTelemetrySink:
    def record(self, vendor_id: str, success: bool, latency: float, error_kind: Optional[str]) -> None:
        pass


class LogTelemetrySink:
    """Emits one structured log event per paid call"""

    def record(self, vendor_id: str, success: bool, latency: float, error_kind: Optional[str]) -> None:
        logger.info(
            "paid_call_recorded",
            vendor_id=vendor_id,
            success=success,
            latency_ms=round(latency * 1000, 1),
            error_kind=error_kind,
        )
