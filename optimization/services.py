"""
Explicit service registry for the decision layer.

The application root builds one ``DecisionServices`` and passes it (or its
members) to whatever needs them. Tests build their own with fake clocks
instead of resetting process-wide state.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from config.settings import Settings
from optimization.cache_optimizer import CacheOptimizer
from optimization.performance_tuner import PerformanceTuner
from optimization.pipeline import OptimizationPipeline, VariantSelector
from routing.attempt_sweeper import AttemptSweeper
from routing.fallback_manager import FallbackManager
from routing.model_catalog import ModelCatalog
from routing.router import ModelRouter
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)


@dataclass
class DecisionServices:
    catalog: ModelCatalog
    router: ModelRouter
    fallback: FallbackManager
    sweeper: AttemptSweeper
    cache: CacheOptimizer
    tuner: PerformanceTuner
    pipeline: OptimizationPipeline

    def start(self) -> None:
        self.sweeper.start()

    def shutdown(self) -> None:
        self.sweeper.stop()

    def __enter__(self) -> "DecisionServices":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


def build_services(
    settings: Settings | None = None,
    *,
    variant_selector: VariantSelector | None = None,
    clock: Callable[[], float] = time.time,
) -> DecisionServices:
    """Wire every decision component from settings. Misconfiguration raises ValueError."""
    settings = settings or Settings()

    catalog = ModelCatalog.from_yaml(settings.MODEL_CATALOG_PATH)
    router = ModelRouter(catalog=catalog, config=settings.router_config())
    fallback = FallbackManager(router, settings.fallback_config(), clock=clock)
    sweeper = AttemptSweeper(
        fallback,
        interval_seconds=settings.FALLBACK_SWEEP_INTERVAL_SECONDS,
        max_age_seconds=settings.FALLBACK_MAX_ATTEMPT_AGE_SECONDS,
    )
    cache = CacheOptimizer(settings.cache_config(), clock=clock)
    tuner = PerformanceTuner(settings.tuner_config(), clock=clock)
    pipeline = OptimizationPipeline(
        settings.pipeline_config(),
        cache=cache,
        tuner=tuner,
        variant_selector=variant_selector,
    )

    logger.info(
        "Decision services built",
        extra=log_fields(
            models=len(catalog.list_models()),
            advanced_tier=router.config.enable_advanced_tier,
            eviction_policy=cache.config.eviction_policy.value,
            tuning_mode=tuner.config.mode.value,
        ),
    )
    return DecisionServices(
        catalog=catalog,
        router=router,
        fallback=fallback,
        sweeper=sweeper,
        cache=cache,
        tuner=tuner,
        pipeline=pipeline,
    )
