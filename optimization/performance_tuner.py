"""
Runtime tuning of timeouts and concurrency from live request telemetry.

- Per content type latency/error/timeout stats over a sliding window
- Adaptive timeouts (content type multiplier, observed p95, error rate)
- Concurrency ceiling with advisory admission control
- Priority batching for background work
"""

import math
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from optimization.request_batcher import DEFAULT_PRIORITY, RequestBatcher
from routing.routing_types import TaskType, task_key
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

STATS_WINDOW_SECONDS = 600
STATS_MAX_SAMPLES = 100

MIN_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 600_000

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 8
HIGH_LATENCY_MS = 180_000

HISTORY_LIMIT = 20


class TuningMode(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    AUTO = "auto"


# (max_concurrency, base_timeout_ms)
MODE_PRESETS: dict[TuningMode, tuple[int, int]] = {
    TuningMode.AGGRESSIVE: (6, 90_000),
    TuningMode.CONSERVATIVE: (2, 180_000),
    TuningMode.BALANCED: (4, 120_000),
}

DEFAULT_TIMEOUT_MULTIPLIERS: dict[str, float] = {
    TaskType.ROADMAP.value: 1.5,
    TaskType.SLIDES.value: 0.8,
    TaskType.DOCUMENT.value: 1.2,
    TaskType.RESEARCH_ANALYSIS.value: 1.0,
}


@dataclass(frozen=True)
class TunerConfig:
    """
    Tuner settings. ``max_concurrency`` and ``base_timeout_ms`` left as None
    take the mode's preset; ``auto`` starts from the balanced preset.
    """

    mode: TuningMode = TuningMode.BALANCED
    max_concurrency: int | None = None
    base_timeout_ms: int | None = None
    batch_size: int = 4
    batch_delay_ms: int = 100

    def __post_init__(self):
        mode = TuningMode(self.mode)
        preset_concurrency, preset_timeout = MODE_PRESETS.get(
            mode, MODE_PRESETS[TuningMode.BALANCED]
        )
        object.__setattr__(self, "mode", mode)
        if self.max_concurrency is None:
            object.__setattr__(self, "max_concurrency", preset_concurrency)
        if self.base_timeout_ms is None:
            object.__setattr__(self, "base_timeout_ms", preset_timeout)

        if not MIN_CONCURRENCY <= self.max_concurrency <= MAX_CONCURRENCY:
            raise ValueError(
                f"max_concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}"
            )
        if self.base_timeout_ms <= 0:
            raise ValueError("base_timeout_ms must be > 0")


@dataclass(frozen=True)
class RequestStats:
    avg: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    error_rate: float = 0.0
    timeout_rate: float = 0.0
    sample_size: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg": self.avg,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "error_rate": self.error_rate,
            "timeout_rate": self.timeout_rate,
            "sample_size": self.sample_size,
        }


class RequestStatsTracker:
    """Latencies, errors and timeouts for one content type over a sliding window."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        window_seconds: float = STATS_WINDOW_SECONDS,
        max_samples: int = STATS_MAX_SAMPLES,
    ):
        self._clock = clock
        self._window = window_seconds
        self._max_samples = max_samples
        self._latencies: list[tuple[float, float]] = []
        self._errors: list[tuple[float, str | None]] = []
        self._timeouts: list[float] = []
        self._lock = threading.Lock()

    def record_latency(self, latency_ms: float) -> None:
        with self._lock:
            self._latencies.append((self._clock(), latency_ms))
            self._trim()

    def record_error(self, error: str | None = None) -> None:
        with self._lock:
            self._errors.append((self._clock(), error))
            self._trim()

    def record_timeout(self) -> None:
        with self._lock:
            self._timeouts.append(self._clock())
            self._trim()

    def get_stats(self) -> RequestStats:
        with self._lock:
            self._trim()
            latencies = sorted(value for _, value in self._latencies)
            errors = len(self._errors)
            timeouts = len(self._timeouts)

        total = len(latencies) + errors + timeouts
        if total == 0:
            return RequestStats()

        error_rate = errors / total
        timeout_rate = timeouts / total
        if not latencies:
            return RequestStats(error_rate=error_rate, timeout_rate=timeout_rate, total=total)

        return RequestStats(
            avg=round(sum(latencies) / len(latencies)),
            p50=self._percentile(latencies, 0.5),
            p95=self._percentile(latencies, 0.95),
            p99=self._percentile(latencies, 0.99),
            error_rate=error_rate,
            timeout_rate=timeout_rate,
            sample_size=len(latencies),
            total=total,
        )

    @staticmethod
    def _percentile(ordered: list[float], fraction: float) -> float:
        index = math.floor(len(ordered) * fraction)
        return ordered[min(index, len(ordered) - 1)]

    def _trim(self) -> None:
        cutoff = self._clock() - self._window
        self._latencies = [s for s in self._latencies if s[0] > cutoff][-self._max_samples :]
        self._errors = [s for s in self._errors if s[0] > cutoff][-self._max_samples :]
        self._timeouts = [t for t in self._timeouts if t > cutoff][-self._max_samples :]


class AdaptiveTimeoutCalculator:
    def __init__(self, base_timeout_ms: int = 120_000):
        self.base_timeout_ms = base_timeout_ms
        self._multipliers: dict[str, float] = dict(DEFAULT_TIMEOUT_MULTIPLIERS)

    def multiplier(self, content_type: str) -> float:
        return self._multipliers.get(content_type, 1.0)

    def calculate(self, content_type: str, stats: RequestStats | None = None) -> int:
        stats = stats or RequestStats()
        timeout = self.base_timeout_ms * self.multiplier(content_type)

        if stats.p95:
            timeout = max(timeout, stats.p95 * 1.5)

        if stats.error_rate > 0.1:
            timeout *= 1.3

        return int(min(max(timeout, MIN_TIMEOUT_MS), MAX_TIMEOUT_MS))

    def update_multiplier(self, content_type: str, stats: RequestStats) -> None:
        """Nudge a known content type's multiplier from its timeout rate."""
        current = self._multipliers.get(content_type)
        if current is None:
            return

        if stats.timeout_rate > 0.05:
            self._multipliers[content_type] = min(current * 1.1, 3.0)
        elif stats.timeout_rate == 0 and stats.sample_size > 10:
            self._multipliers[content_type] = max(current * 0.95, 0.5)


@dataclass(frozen=True)
class ConcurrencyAdjustment:
    from_value: int
    to_value: int
    reason: str
    timestamp: str


class ConcurrencyOptimizer:
    """
    Concurrency ceiling plus an in-flight counter.

    Admission is advisory: ``can_start_request`` only reports whether another
    request fits under the ceiling. Callers must pair ``start_request`` with
    ``end_request`` on every path, errors included.
    """

    def __init__(
        self,
        initial_concurrency: int = 4,
        min_concurrency: int = MIN_CONCURRENCY,
        max_concurrency: int = MAX_CONCURRENCY,
    ):
        self.min_concurrency = min_concurrency
        self.max_concurrency = max_concurrency
        self._current = self._clamp(initial_concurrency)
        self._active = 0
        self._history: list[ConcurrencyAdjustment] = []
        self._lock = threading.Lock()

    @property
    def current_concurrency(self) -> int:
        with self._lock:
            return self._current

    @property
    def active_requests(self) -> int:
        with self._lock:
            return self._active

    def get_optimal_concurrency(self, stats: RequestStats) -> int:
        if stats.error_rate > 0.15:
            self.adjust(-1, "High error rate")
        elif stats.error_rate < 0.02 and stats.sample_size > 20:
            self.adjust(1, "Low error rate")

        if stats.p95 > HIGH_LATENCY_MS:
            self.adjust(-1, "High latency")

        return self.current_concurrency

    def can_start_request(self) -> bool:
        with self._lock:
            return self._active < self._current

    def start_request(self) -> None:
        with self._lock:
            self._active += 1

    def end_request(self) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)

    def adjust(self, delta: int, reason: str) -> int:
        return self._change(lambda current: current + delta, reason)

    def set_concurrency(self, value: int, reason: str) -> int:
        return self._change(lambda _: value, reason)

    def _change(self, compute: Callable[[int], int], reason: str) -> int:
        with self._lock:
            new_value = self._clamp(compute(self._current))
            if new_value == self._current:
                return new_value
            change = ConcurrencyAdjustment(
                from_value=self._current,
                to_value=new_value,
                reason=reason,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            self._history.append(change)
            self._current = new_value

        logger.info(
            "Concurrency adjusted",
            extra=log_fields(from_value=change.from_value, to_value=change.to_value, reason=reason),
        )
        return new_value

    def get_history(self) -> list[ConcurrencyAdjustment]:
        with self._lock:
            return self._history[-HISTORY_LIMIT:]

    def _clamp(self, value: int) -> int:
        return min(max(value, self.min_concurrency), self.max_concurrency)


@dataclass(frozen=True)
class OptimizedSettings:
    timeout_ms: int
    concurrency: int
    can_start_now: bool
    queue_size: int
    stats: RequestStats


@dataclass
class _TuningRecord:
    timestamp: str
    mode: TuningMode
    stats: dict[str, dict[str, Any]]
    recommendations: list[dict[str, Any]] = field(default_factory=list)


class PerformanceTuner:
    def __init__(self, config: TunerConfig | None = None, clock: Callable[[], float] = time.time):
        self._config = config or TunerConfig()
        self._clock = clock
        self._stats: dict[str, RequestStatsTracker] = {}
        self._stats_lock = threading.Lock()
        self._timeouts = AdaptiveTimeoutCalculator(self._config.base_timeout_ms)
        self._concurrency = ConcurrencyOptimizer(self._config.max_concurrency)
        self._batcher = RequestBatcher(self._config.batch_size, self._config.batch_delay_ms)
        self._tuning_history: list[_TuningRecord] = []

    @property
    def config(self) -> TunerConfig:
        return self._config

    @property
    def concurrency(self) -> ConcurrencyOptimizer:
        return self._concurrency

    @property
    def timeouts(self) -> AdaptiveTimeoutCalculator:
        return self._timeouts

    def get_optimized_settings(self, content_type: TaskType | str | None) -> OptimizedSettings:
        stats = self._tracker(content_type).get_stats()
        return OptimizedSettings(
            timeout_ms=self._timeouts.calculate(task_key(content_type), stats),
            concurrency=self._concurrency.get_optimal_concurrency(stats),
            can_start_now=self._concurrency.can_start_request(),
            queue_size=self._batcher.queue_size(),
            stats=stats,
        )

    def get_timeout(self, content_type: TaskType | str | None) -> int:
        stats = self._tracker(content_type).get_stats()
        return self._timeouts.calculate(task_key(content_type), stats)

    def record_result(
        self,
        content_type: TaskType | str | None,
        *,
        success: bool,
        latency_ms: float | None = None,
        timeout: bool = False,
        error: str | None = None,
    ) -> None:
        tracker = self._tracker(content_type)
        if success:
            tracker.record_latency(latency_ms or 0.0)
        elif timeout:
            tracker.record_timeout()
        else:
            tracker.record_error(error)

        self._timeouts.update_multiplier(task_key(content_type), tracker.get_stats())

    def can_start_request(self) -> bool:
        return self._concurrency.can_start_request()

    def start_request(self) -> None:
        self._concurrency.start_request()

    def end_request(self) -> None:
        self._concurrency.end_request()

    def batch_request(
        self, request_fn: Callable[[], Any], priority: int = DEFAULT_PRIORITY
    ) -> Awaitable[Any]:
        return self._batcher.submit(request_fn, priority)

    def auto_tune(self) -> list[dict[str, Any]]:
        """
        Evaluate aggregate stats for the current mode.

        Only ``auto`` mode changes the concurrency ceiling; the other modes
        return advisories.
        """
        all_stats = {ct: s for ct, s in self._all_stats().items() if s.total}
        recommendations: list[dict[str, Any]] = []
        mode = self._config.mode

        if all_stats:
            avg_error_rate = sum(s.error_rate for s in all_stats.values()) / len(all_stats)
            avg_latency = sum(s.avg for s in all_stats.values()) / len(all_stats)

            if mode == TuningMode.AGGRESSIVE and avg_error_rate < 0.05:
                recommendations.append(
                    {
                        "action": "increase_concurrency",
                        "reason": "Low error rate allows higher concurrency",
                    }
                )
            elif mode == TuningMode.CONSERVATIVE and avg_error_rate > 0.02:
                recommendations.append(
                    {
                        "action": "decrease_concurrency",
                        "reason": "Prioritizing reliability over speed",
                    }
                )
            elif mode == TuningMode.AUTO:
                if avg_error_rate > 0.1:
                    new_value = self._concurrency.adjust(-1, "Auto-tune: high aggregate error rate")
                    recommendations.append(
                        {"action": "auto_decrease_concurrency", "new_value": new_value}
                    )
                elif avg_error_rate < 0.02 and avg_latency < 60_000:
                    new_value = self._concurrency.adjust(1, "Auto-tune: healthy aggregate stats")
                    recommendations.append(
                        {"action": "auto_increase_concurrency", "new_value": new_value}
                    )

        self._tuning_history.append(
            _TuningRecord(
                timestamp=datetime.now(timezone.utc).isoformat(),
                mode=mode,
                stats={ct: s.to_dict() for ct, s in all_stats.items()},
                recommendations=recommendations,
            )
        )
        self._tuning_history = self._tuning_history[-HISTORY_LIMIT:]
        return recommendations

    def get_summary(self) -> dict[str, Any]:
        return {
            "mode": self._config.mode.value,
            "current_concurrency": self._concurrency.current_concurrency,
            "active_requests": self._concurrency.active_requests,
            "queue_size": self._batcher.queue_size(),
            "content_type_stats": {ct: s.to_dict() for ct, s in self._all_stats().items()},
            "concurrency_history": [vars(change) for change in self._concurrency.get_history()],
            "recent_tuning": [vars(record) for record in self._tuning_history[-5:]],
        }

    def get_recommendations(self) -> list[dict[str, Any]]:
        recommendations = []
        for content_type, stats in self._all_stats().items():
            if stats.timeout_rate > 0.1:
                recommendations.append(
                    {
                        "content_type": content_type,
                        "type": "high_timeout_rate",
                        "message": (
                            f"{content_type} has {stats.timeout_rate * 100:.1f}% timeout rate. "
                            "Consider increasing timeout."
                        ),
                        "current_timeout_ms": self._timeouts.calculate(content_type, stats),
                    }
                )
            if stats.error_rate > 0.15:
                recommendations.append(
                    {
                        "content_type": content_type,
                        "type": "high_error_rate",
                        "message": (
                            f"{content_type} has {stats.error_rate * 100:.1f}% error rate. "
                            "Consider reducing concurrency."
                        ),
                    }
                )
            if stats.p95 > HIGH_LATENCY_MS:
                recommendations.append(
                    {
                        "content_type": content_type,
                        "type": "high_latency",
                        "message": (
                            f"{content_type} p95 latency is {round(stats.p95 / 1000)}s. "
                            "Consider optimizing prompts."
                        ),
                    }
                )
        return recommendations

    def set_mode(self, mode: TuningMode | str) -> None:
        mode = TuningMode(mode)
        max_concurrency, base_timeout_ms = MODE_PRESETS.get(
            mode, (self._config.max_concurrency, self._config.base_timeout_ms)
        )
        self._config = replace(
            self._config,
            mode=mode,
            max_concurrency=max_concurrency,
            base_timeout_ms=base_timeout_ms,
        )
        self._concurrency.set_concurrency(max_concurrency, f"Tuning mode set to {mode.value}")
        self._timeouts.base_timeout_ms = base_timeout_ms
        logger.info(
            "Tuning mode changed",
            extra=log_fields(
                mode=mode.value, max_concurrency=max_concurrency, base_timeout_ms=base_timeout_ms
            ),
        )

    # ---------- internals ----------

    def _tracker(self, content_type: TaskType | str | None) -> RequestStatsTracker:
        key = task_key(content_type)
        with self._stats_lock:
            tracker = self._stats.get(key)
            if tracker is None:
                tracker = RequestStatsTracker(clock=self._clock)
                self._stats[key] = tracker
            return tracker

    def _all_stats(self) -> dict[str, RequestStats]:
        with self._stats_lock:
            trackers = dict(self._stats)
        return {ct: tracker.get_stats() for ct, tracker in trackers.items()}
