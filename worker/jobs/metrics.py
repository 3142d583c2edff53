"""Processor counters and sliding-window health."""

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from worker.config.logging import get_logger
from worker.core.exceptions import ErrorCategory
from worker.jobs.classifier import FailureStats

logger = get_logger(__name__)

SLIDING_WINDOW_SIZE = 10
MAX_FAILURE_RATE = 0.7
MIN_SAMPLE_SIZE = 3
RECOVERY_TIME_S = 300.0
MAX_TIMEOUT_RATE = 0.2
DEGRADED_FAILURE_RATE = 0.3


@dataclass
class ProcessorHealth:
    status: str
    message: str
    availability: float
    utilization: float
    failure_rate: float
    timeout_rate: float

    @property
    def is_healthy(self) -> bool:
        return self.status != "unhealthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "availability": self.availability,
            "utilization": self.utilization,
            "failure_rate": round(self.failure_rate, 3),
            "timeout_rate": round(self.timeout_rate, 3),
        }


@dataclass
class ProcessorMetrics:
    """
    Counters owned by one JobProcessor.

    Health is judged on the last SLIDING_WINDOW_SIZE results: the processor is
    unhealthy when more than MAX_FAILURE_RATE of them failed (once at least
    MIN_SAMPLE_SIZE results exist) or when MAX_TIMEOUT_RATE or more of them
    timed out. An outage older than RECOVERY_TIME_S is forgiven and the window
    cleared so the processor gets another chance.
    """

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    timeouts: int = 0
    concurrent_peak: int = 0
    last_processed_at: datetime | None = None
    collaborator_usage: Counter = field(default_factory=Counter)
    failures: FailureStats = field(default_factory=FailureStats)
    # None for a success, the failure category otherwise
    recent_results: deque = field(
        default_factory=lambda: deque(maxlen=SLIDING_WINDOW_SIZE)
    )
    last_recovery: float = field(default_factory=time.monotonic)

    def record_peak(self, active: int) -> None:
        self.concurrent_peak = max(self.concurrent_peak, active)

    def record_usage(self, collaborator: str) -> None:
        self.collaborator_usage[collaborator] += 1

    def record_success(self) -> None:
        self.total_processed += 1
        self.successful += 1
        self.last_processed_at = datetime.now(UTC)
        self.recent_results.append(None)

    def record_failure(
        self, category: ErrorCategory, collaborator: str | None = None
    ) -> None:
        self.total_processed += 1
        self.failed += 1
        if category == ErrorCategory.TIMEOUT:
            self.timeouts += 1
        self.failures.record(category, collaborator)
        self.last_processed_at = datetime.now(UTC)
        self.recent_results.append(category)

    def failure_rate(self) -> float:
        if len(self.recent_results) < MIN_SAMPLE_SIZE:
            return 0.0
        failed = sum(1 for category in self.recent_results if category is not None)
        return failed / len(self.recent_results)

    def timeout_rate(self) -> float:
        if not self.recent_results:
            return 0.0
        timed_out = sum(
            1 for category in self.recent_results if category == ErrorCategory.TIMEOUT
        )
        return timed_out / len(self.recent_results)

    def window_unhealthy(self) -> bool:
        return (
            self.failure_rate() > MAX_FAILURE_RATE
            or self.timeout_rate() >= MAX_TIMEOUT_RATE
        )

    def recovery_due(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.last_recovery > RECOVERY_TIME_S

    def is_healthy(self, now: float | None = None) -> bool:
        return not self.window_unhealthy() or self.recovery_due(now)

    def health(
        self, active: int, capacity: int, now: float | None = None
    ) -> ProcessorHealth:
        failure_rate = self.failure_rate()
        failure_percent = failure_rate * 100
        timeout_rate = self.timeout_rate()
        utilization = (active / capacity) * 100 if capacity else 0.0

        if not self.is_healthy(now):
            status = "unhealthy"
            if failure_rate > MAX_FAILURE_RATE:
                message = f"High failure rate: {failure_percent:.1f}% (recent jobs)"
            else:
                message = f"High timeout rate: {timeout_rate * 100:.1f}% (recent jobs)"
            availability = 0.0
        elif failure_percent > DEGRADED_FAILURE_RATE * 100:
            status = "degraded"
            message = f"Elevated failure rate: {failure_percent:.1f}% (recent jobs)"
            availability = max(50.0, 100.0 - failure_percent)
        else:
            status = "healthy"
            message = "Processor operating normally"
            availability = 100.0

        return ProcessorHealth(
            status=status,
            message=message,
            availability=availability,
            utilization=utilization,
            failure_rate=failure_rate,
            timeout_rate=timeout_rate,
        )

    def check_auto_recovery(self, now: float | None = None) -> bool:
        """Clear the result window if the processor has been unhealthy too long."""
        now = time.monotonic() if now is None else now
        if not self.window_unhealthy() or not self.recovery_due(now):
            return False

        logger.info(
            "Auto-recovery: clearing recent failure history",
            failure_rate=self.failure_rate(),
            timeout_rate=self.timeout_rate(),
            window=len(self.recent_results),
        )
        self.recent_results.clear()
        self.last_recovery = now
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "timeouts": self.timeouts,
            "concurrent_peak": self.concurrent_peak,
            "last_processed_at": (
                self.last_processed_at.isoformat() if self.last_processed_at else None
            ),
            "collaborator_usage": dict(self.collaborator_usage),
            "failures": self.failures.to_dict(),
        }
