"""Out-of-band channel for non-fatal faults.

The sync worker, the rate limiter and the cache-aside repository push faults
they deliberately absorb (fail-open, fail-soft, retry next cycle) into an
``ErrorSink`` instead of raising them to the caller.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class ErrorSink(ABC):
    """Receives absorbed faults for logging/metrics."""

    @abstractmethod
    def report(self, event: str, error: BaseException, **context: Any) -> None:
        """Record a fault.

        Args:
            event: Dotted event name (e.g. ``counter_sync.apply_failed``).
            error: The absorbed exception.
            **context: Structured fields (ids, keys, deltas).
        """
        raise NotImplementedError


class LoggingErrorSink(ErrorSink):
    """Emit absorbed faults as structured warning logs."""

    def __init__(self, log: logging.Logger | None = None, *, level: int = logging.WARNING) -> None:
        self._log = log or logger
        self._level = level

    def report(self, event: str, error: BaseException, **context: Any) -> None:
        self._log.log(
            self._level,
            event,
            extra={
                "error_type": type(error).__name__,
                "error_msg": str(error),
                **context,
            },
        )


class NullErrorSink(ErrorSink):
    """Discard every report."""

    def report(self, event: str, error: BaseException, **context: Any) -> None:
        return None


def safe_report(sink: ErrorSink | None, event: str, error: BaseException, **context: Any) -> None:
    """Report to ``sink`` without ever letting the sink itself fail the caller."""

    if sink is None:
        return
    try:
        sink.report(event, error, **context)
    except Exception:  # pragma: no cover - a broken sink must not break the core
        logger.debug("error_sink.report_failed", extra={"event": event}, exc_info=True)
