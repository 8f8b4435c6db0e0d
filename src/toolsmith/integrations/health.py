"""Integration health gate.

Each integration keeps a sliding window of recent call outcomes. Once the
window holds ``min_calls`` calls and the share of failures reaches
``failure_ratio``, the integration is *degraded*: calls are refused with
IntegrationUnavailableError until its backoff passes. After that it is on
*trial*: the next recorded outcome decides. Success clears the window,
failure degrades it again with the backoff doubled (capped).

Health snapshots ride along on every traced integration call and are
reported per integration by readiness.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterable, Literal

import structlog

from toolsmith.core.errors import IntegrationUnavailableError

logger = structlog.get_logger()

HealthStatus = Literal["healthy", "degraded", "trial"]


@dataclass(frozen=True)
class HealthPolicy:
    window_s: float = 60.0
    min_calls: int = 3
    failure_ratio: float = 0.5
    backoff_s: float = 30.0
    max_backoff_s: float = 300.0


class IntegrationHealth:
    def __init__(
        self,
        integration_id: str,
        policy: HealthPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.integration_id = integration_id
        self.policy = policy or HealthPolicy()
        self._clock = clock
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._degraded_until: float | None = None
        self._backoff_s = self.policy.backoff_s
        self.trips = 0

    @property
    def status(self) -> HealthStatus:
        if self._degraded_until is None:
            return "healthy"
        return "degraded" if self._clock() < self._degraded_until else "trial"

    @property
    def retry_after_s(self) -> float:
        if self._degraded_until is None:
            return 0.0
        return max(0.0, round(self._degraded_until - self._clock(), 1))

    def window(self) -> tuple[int, int]:
        """(calls, failures) inside the current window."""
        self._prune(self._clock())
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return len(self._outcomes), failures

    def ensure_available(self) -> None:
        if self.status == "degraded":
            logger.warning(
                "integration_call_refused",
                integration=self.integration_id,
                retry_after_s=self.retry_after_s,
            )
            raise IntegrationUnavailableError(self.integration_id, self.retry_after_s)

    def record(self, ok: bool) -> None:
        now = self._clock()
        if self._degraded_until is not None:
            if now < self._degraded_until:
                # Late result from a call that started before the trip.
                return
            if ok:
                logger.info("integration_recovered", integration=self.integration_id, trips=self.trips)
                self._outcomes.clear()
                self._degraded_until = None
                self._backoff_s = self.policy.backoff_s
            else:
                self._degrade(now, self._backoff_s * 2)
            return

        self._outcomes.append((now, ok))
        self._prune(now)
        calls = len(self._outcomes)
        failures = sum(1 for _, success in self._outcomes if not success)
        if calls >= self.policy.min_calls and failures / calls >= self.policy.failure_ratio:
            self._degrade(now, self.policy.backoff_s)

    @asynccontextmanager
    async def track(self) -> AsyncIterator[IntegrationHealth]:
        """Refuse while degraded, then record whether the body raised."""
        self.ensure_available()
        try:
            yield self
        except Exception:
            self.record(False)
            raise
        self.record(True)

    def snapshot(self) -> dict[str, Any]:
        calls, failures = self.window()
        return {
            "status": self.status,
            "calls": calls,
            "failures": failures,
            "retry_after_s": self.retry_after_s,
        }

    def _prune(self, now: float) -> None:
        horizon = now - self.policy.window_s
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _degrade(self, now: float, backoff_s: float) -> None:
        calls, failures = len(self._outcomes), sum(1 for _, ok in self._outcomes if not ok)
        self._backoff_s = min(backoff_s, self.policy.max_backoff_s)
        self._degraded_until = now + self._backoff_s
        self._outcomes.clear()
        self.trips += 1
        logger.warning(
            "integration_degraded",
            integration=self.integration_id,
            calls=calls,
            failures=failures,
            backoff_s=self._backoff_s,
            trips=self.trips,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

_POLICIES: dict[str, HealthPolicy] = {
    "composio": HealthPolicy(min_calls=5, backoff_s=60.0),
    "github": HealthPolicy(min_calls=5, backoff_s=60.0),
}

_registry: dict[str, IntegrationHealth] = {}


def integration_health(integration_id: str) -> IntegrationHealth:
    health = _registry.get(integration_id)
    if health is None:
        health = IntegrationHealth(integration_id, _POLICIES.get(integration_id))
        _registry[integration_id] = health
    return health


def health_report(integration_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
    """Snapshot per integration; integrations never called report healthy."""
    report: dict[str, dict[str, Any]] = {}
    for integration_id in integration_ids:
        health = _registry.get(integration_id)
        if health is None:
            report[integration_id] = {"status": "healthy", "calls": 0, "failures": 0, "retry_after_s": 0.0}
        else:
            report[integration_id] = health.snapshot()
    return report
