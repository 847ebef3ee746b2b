"""
Timing helper for conversion and preview work.
"""

import logging
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PerformanceTimer:
    """
    Log how long a block took.

    The outcome ("completed" or "failed") depends on whether the block
    raised. With ``threshold_ms`` set, fast blocks are not logged at all.

        with PerformanceTimer("Conversion of roads.shp") as timer:
            ...
        timer.duration_ms
    """

    def __init__(
        self,
        operation_name: str,
        log_level: int = logging.INFO,
        threshold_ms: Optional[float] = None,
    ):
        self.operation_name = operation_name
        self.log_level = log_level
        self.threshold_ms = threshold_ms
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self) -> "PerformanceTimer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        if self.threshold_ms is not None and self.duration_ms < self.threshold_ms:
            return

        outcome = "completed" if exc_type is None else "failed"
        logger.log(
            self.log_level,
            f"{self.operation_name} {outcome} in {self.duration_ms:.2f}ms",
            extra={"operation": self.operation_name, "duration_ms": round(self.duration_ms, 2)},
        )
