"""
Per-provider tool health tracking (circuit breaker).

Each provider moves through::

    healthy --failure--> degraded (>= degraded_threshold consecutive failures)
            --failure--> unhealthy (>= unhealthy_threshold consecutive failures)
    any     --success--> healthy (counter reset to 0)

Unhealthy providers are withheld from the model. Once ``probe_interval``
seconds have passed since the last failure, a single request is allowed to
offer the provider again as a probe; its outcome decides recovery.

The tracker is the only state shared across requests. Every mutation of a
provider's record happens under that provider's lock, so concurrent
failures are never lost.

Usage::

    tracker = ToolHealthTracker(unhealthy_threshold=3)
    tracker.mark_failure("weather", "timed out")
    tracker.get("weather").status        # HealthStatus.DEGRADED
    tracker.mark_success("weather")
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ToolHealth:
    """Read-only snapshot of one provider's health."""
    provider: str
    consecutive_failures: int = 0
    status: HealthStatus = HealthStatus.HEALTHY
    last_error: Optional[str] = None


@dataclass
class _HealthRecord:
    consecutive_failures: int = 0
    status: HealthStatus = HealthStatus.HEALTHY
    last_failure_at: Optional[float] = None
    last_probe_at: Optional[float] = None
    last_error: Optional[str] = None


TransitionCallback = Callable[[str, HealthStatus, HealthStatus, int], None]


class ToolHealthTracker:
    """Injectable registry of provider health.

    Args:
        degraded_threshold: Consecutive failures before a provider is demoted
        unhealthy_threshold: Consecutive failures before a provider is withheld
        probe_interval: Seconds after the last failure before an unhealthy
            provider may be probed again; None disables probing
        clock: Monotonic time source (injectable for tests)
        on_transition: Optional callback ``(provider, old, new, failures)``
    """

    def __init__(
        self,
        degraded_threshold: int = 1,
        unhealthy_threshold: int = 3,
        probe_interval: Optional[float] = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Optional[TransitionCallback] = None,
    ) -> None:
        if degraded_threshold < 1 or unhealthy_threshold < degraded_threshold:
            raise ValueError(
                "thresholds must satisfy 1 <= degraded_threshold <= unhealthy_threshold"
            )
        self.degraded_threshold = degraded_threshold
        self.unhealthy_threshold = unhealthy_threshold
        self.probe_interval = probe_interval
        self._clock = clock
        self._on_transition = on_transition

        self._records: Dict[str, _HealthRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, provider: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(provider)
            if lock is None:
                lock = threading.Lock()
                self._locks[provider] = lock
                self._records[provider] = _HealthRecord()
            return lock

    def _status_for(self, failures: int) -> HealthStatus:
        if failures >= self.unhealthy_threshold:
            return HealthStatus.UNHEALTHY
        if failures >= self.degraded_threshold:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    @staticmethod
    def _snapshot(provider: str, record: _HealthRecord) -> ToolHealth:
        return ToolHealth(
            provider=provider,
            consecutive_failures=record.consecutive_failures,
            status=record.status,
            last_error=record.last_error,
        )

    def _notify(self, provider: str, old: HealthStatus, new: HealthStatus, failures: int) -> None:
        if old == new:
            return
        if new == HealthStatus.HEALTHY:
            logger.info(f"[Health] {provider}: {old.value} -> healthy")
        else:
            logger.warning(
                f"[Health] {provider}: {old.value} -> {new.value} "
                f"after {failures} consecutive failure(s)"
            )
        if self._on_transition is not None:
            try:
                self._on_transition(provider, old, new, failures)
            except Exception as e:
                logger.warning(f"[Health] transition callback failed: {e}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, provider: str) -> ToolHealth:
        """Current health of ``provider`` (healthy if never seen)."""
        with self._lock_for(provider):
            return self._snapshot(provider, self._records[provider])

    def mark_success(self, provider: str) -> ToolHealth:
        """Record a successful call: counter to 0, status healthy."""
        with self._lock_for(provider):
            record = self._records[provider]
            old = record.status
            record.consecutive_failures = 0
            record.status = HealthStatus.HEALTHY
            record.last_error = None
            record.last_probe_at = None
            snapshot = self._snapshot(provider, record)
        self._notify(provider, old, snapshot.status, 0)
        return snapshot

    def mark_failure(self, provider: str, error: Optional[str] = None) -> ToolHealth:
        """Record a failed call and advance the state machine."""
        with self._lock_for(provider):
            record = self._records[provider]
            old = record.status
            record.consecutive_failures += 1
            record.status = self._status_for(record.consecutive_failures)
            record.last_failure_at = self._clock()
            record.last_error = error
            snapshot = self._snapshot(provider, record)
        self._notify(provider, old, snapshot.status, snapshot.consecutive_failures)
        return snapshot

    def reset(self, provider: Optional[str] = None) -> None:
        """Forget one provider's history, or every provider's when None."""
        with self._locks_guard:
            targets = [provider] if provider is not None else list(self._records)
        for name in targets:
            with self._lock_for(name):
                self._records[name] = _HealthRecord()

    def try_acquire_probe(self, provider: str) -> bool:
        """Whether an unhealthy provider may be offered once more.

        Returns True for at most one caller per ``probe_interval``; healthy
        and degraded providers are always available.
        """
        with self._lock_for(provider):
            record = self._records[provider]
            if record.status != HealthStatus.UNHEALTHY:
                return True
            if self.probe_interval is None or record.last_failure_at is None:
                return False
            now = self._clock()
            since = max(record.last_failure_at, record.last_probe_at or 0.0)
            if now - since < self.probe_interval:
                return False
            record.last_probe_at = now
        logger.info(f"[Health] {provider}: probing after cooldown")
        return True
