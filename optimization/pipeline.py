from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol

from models.requests import (
    OptimizationRequest,
    OptimizationTrace,
    OptimizedRequest,
    PromptVariant,
    RequestOutcome,
)
from optimization.cache_optimizer import CacheOptimizer
from optimization.performance_tuner import PerformanceTuner, TuningMode
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 120_000


class VariantSelector(Protocol):
    """Prompt-variant experiment backend plugged into the pipeline."""

    def select_variant(self, content_type: str) -> PromptVariant | None: ...

    def record_result(
        self,
        content_type: str,
        variant_id: str,
        *,
        success: bool,
        latency_ms: float | None,
        quality_score: float | None,
    ) -> None: ...


@dataclass(frozen=True)
class PipelineConfig:
    enable_prompt_optimization: bool = True
    enable_cache_optimization: bool = True
    enable_performance_tuning: bool = True
    tuning_mode: TuningMode = TuningMode.BALANCED

    def __post_init__(self):
        object.__setattr__(self, "tuning_mode", TuningMode(self.tuning_mode))


class OptimizationPipeline:
    """
    Per-request facade over the cache, the tuner and an optional variant selector.

    The pipeline never handles backend failures; callers ask the
    FallbackManager directly for each failed attempt and report the terminal
    outcome here through ``record_result``.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        cache: CacheOptimizer | None = None,
        tuner: PerformanceTuner | None = None,
        variant_selector: VariantSelector | None = None,
    ):
        self._config = config or PipelineConfig()
        self._cache: CacheOptimizer | None = None
        if self._config.enable_cache_optimization:
            self._cache = cache if cache is not None else CacheOptimizer()
        self._tuner: PerformanceTuner | None = None
        if self._config.enable_performance_tuning:
            self._tuner = tuner if tuner is not None else PerformanceTuner()
        self._variants = variant_selector if self._config.enable_prompt_optimization else None

        if self._tuner is not None and self._tuner.config.mode != self._config.tuning_mode:
            self._tuner.set_mode(self._config.tuning_mode)

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def cache(self) -> CacheOptimizer | None:
        return self._cache

    @property
    def tuner(self) -> PerformanceTuner | None:
        return self._tuner

    @staticmethod
    def cache_key_for(request: OptimizationRequest) -> str:
        if request.cache_key:
            return request.cache_key
        return CacheOptimizer.generate_key(request.content_type, request.prompt, request.content_hash)

    def optimize_request(self, request: OptimizationRequest) -> OptimizedRequest:
        key = self.cache_key_for(request)
        trace = OptimizationTrace()

        if self._cache is not None:
            cached = self._cache.get(
                key,
                allow_similar=True,
                prompt=request.prompt,
                content_type=request.content_type,
            )
            if cached is not None:
                trace.applied.append("cache_hit")
                logger.info(
                    "Request served from cache",
                    extra=log_fields(content_type=request.content_type, cache_key=key),
                )
                return OptimizedRequest(
                    request=request,
                    cache_key=key,
                    cached=True,
                    cached_result=cached,
                    optimizations=trace,
                )

        if self._variants is not None:
            variant = self._variants.select_variant(request.content_type)
            if variant is not None:
                trace.applied.append("prompt_variant")
                trace.variant_id = variant.id
                trace.variant_name = variant.name

        if self._tuner is not None:
            settings = self._tuner.get_optimized_settings(request.content_type)
            trace.applied.append("performance_tuning")
            trace.timeout_ms = settings.timeout_ms
            trace.can_start_now = settings.can_start_now

        return OptimizedRequest(request=request, cache_key=key, cached=False, optimizations=trace)

    def record_result(self, request: OptimizationRequest, result: RequestOutcome) -> None:
        if self._variants is not None and result.variant_id:
            self._variants.record_result(
                request.content_type,
                result.variant_id,
                success=result.success,
                latency_ms=result.latency_ms,
                quality_score=result.quality_score,
            )

        if self._cache is not None and result.success and result.output:
            self._cache.set(
                self.cache_key_for(request),
                result.output,
                content_type=request.content_type,
                prompt=request.prompt,
                quality_score=result.quality_score,
            )

        if self._tuner is not None:
            self._tuner.record_result(
                request.content_type,
                success=result.success,
                latency_ms=result.latency_ms,
                timeout=result.timeout,
                error=result.error,
            )

    def get_optimized_timeout(self, content_type: str) -> int:
        if self._tuner is None:
            return DEFAULT_TIMEOUT_MS
        return self._tuner.get_timeout(content_type)

    def can_start_request(self) -> bool:
        if self._tuner is None:
            return True
        return self._tuner.can_start_request()

    def track_request_start(self) -> None:
        if self._tuner is not None:
            self._tuner.start_request()

    def track_request_end(self) -> None:
        if self._tuner is not None:
            self._tuner.end_request()

    def auto_tune(self) -> dict[str, Any]:
        actions: list[dict[str, Any]] = []
        if self._tuner is not None:
            actions.extend({"component": "performance", **r} for r in self._tuner.auto_tune())
        if self._cache is not None:
            actions.extend({"component": "cache", **r} for r in self._cache.get_recommendations())
        return {"timestamp": datetime.now(timezone.utc).isoformat(), "actions": actions}

    def get_summary(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config": {
                "enable_prompt_optimization": self._config.enable_prompt_optimization,
                "enable_cache_optimization": self._config.enable_cache_optimization,
                "enable_performance_tuning": self._config.enable_performance_tuning,
                "tuning_mode": self._config.tuning_mode.value,
            },
            "cache": (
                {
                    "stats": self._cache.get_stats(),
                    "recommendations": self._cache.get_recommendations(),
                }
                if self._cache is not None
                else None
            ),
            "performance": (
                {
                    "summary": self._tuner.get_summary(),
                    "recommendations": self._tuner.get_recommendations(),
                }
                if self._tuner is not None
                else None
            ),
        }

    def get_all_recommendations(self) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        if self._cache is not None:
            recommendations.extend({"source": "cache", **r} for r in self._cache.get_recommendations())
        if self._tuner is not None:
            recommendations.extend(
                {"source": "performance", **r} for r in self._tuner.get_recommendations()
            )
        return recommendations

    def set_tuning_mode(self, mode: TuningMode | str) -> None:
        mode = TuningMode(mode)
        self._config = replace(self._config, tuning_mode=mode)
        if self._tuner is not None:
            self._tuner.set_mode(mode)

    def warm_cache(self, predictions: list[dict[str, Any]]) -> int:
        if self._cache is None:
            return 0
        for prediction in predictions:
            self._cache.schedule_warming(prediction)
        return len(predictions)
