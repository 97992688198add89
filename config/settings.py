import os
from pathlib import Path

from dotenv import load_dotenv

from optimization.cache_optimizer import CacheConfig, EvictionPolicy
from optimization.performance_tuner import TunerConfig, TuningMode
from optimization.pipeline import PipelineConfig
from routing.fallback_manager import FallbackConfig
from routing.router import RouterConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float | None, cast=float):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be numeric, got {value!r}") from None


class Settings:
    """Decision layer configuration read from the environment (and .env when present)."""

    def __init__(self, env_file: str | Path | None = None):
        env_path = Path(env_file) if env_file else Path(__file__).parent.parent / ".env"
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        # Model catalog
        self.MODEL_CATALOG_PATH = os.getenv("MODEL_CATALOG_PATH") or None

        # Router
        self.ROUTER_MAX_COST_PER_REQUEST = _env_number("ROUTER_MAX_COST_PER_REQUEST", 0.50)
        self.ROUTER_PREFER_COST_OVER_QUALITY = _env_bool("ROUTER_PREFER_COST_OVER_QUALITY", False)
        self.ROUTER_ENABLE_ADVANCED_TIER = _env_bool("ROUTER_ENABLE_ADVANCED_TIER", True)

        # Fallback
        self.FALLBACK_MAX_RETRIES = _env_number("FALLBACK_MAX_RETRIES", 3, int)
        self.FALLBACK_MAX_ESCALATIONS = _env_number("FALLBACK_MAX_ESCALATIONS", 2, int)
        self.FALLBACK_MAX_DOWNGRADES = _env_number("FALLBACK_MAX_DOWNGRADES", 2, int)
        self.FALLBACK_SWEEP_INTERVAL_SECONDS = _env_number("FALLBACK_SWEEP_INTERVAL_SECONDS", 60.0)
        self.FALLBACK_MAX_ATTEMPT_AGE_SECONDS = _env_number("FALLBACK_MAX_ATTEMPT_AGE_SECONDS", 300.0)

        # Cache
        self.CACHE_MAX_ENTRIES = _env_number("CACHE_MAX_ENTRIES", 100, int)
        self.CACHE_MAX_MEMORY_BYTES = _env_number("CACHE_MAX_MEMORY_BYTES", 100 * 1024 * 1024, int)
        self.CACHE_DEFAULT_TTL_SECONDS = _env_number("CACHE_DEFAULT_TTL_SECONDS", 3600.0)
        self.CACHE_EVICTION_POLICY = os.getenv("CACHE_EVICTION_POLICY", EvictionPolicy.ADAPTIVE.value)

        # Tuner
        self.TUNER_MODE = os.getenv("TUNER_MODE", TuningMode.BALANCED.value)
        self.TUNER_MAX_CONCURRENCY = _env_number("TUNER_MAX_CONCURRENCY", None, int)
        self.TUNER_BASE_TIMEOUT_MS = _env_number("TUNER_BASE_TIMEOUT_MS", None, int)
        self.TUNER_BATCH_SIZE = _env_number("TUNER_BATCH_SIZE", 4, int)
        self.TUNER_BATCH_DELAY_MS = _env_number("TUNER_BATCH_DELAY_MS", 100, int)

        # Pipeline
        self.PIPELINE_ENABLE_PROMPT_OPTIMIZATION = _env_bool("PIPELINE_ENABLE_PROMPT_OPTIMIZATION", True)
        self.PIPELINE_ENABLE_CACHE = _env_bool("PIPELINE_ENABLE_CACHE", True)
        self.PIPELINE_ENABLE_TUNING = _env_bool("PIPELINE_ENABLE_TUNING", True)

    def router_config(self) -> RouterConfig:
        return RouterConfig(
            max_cost_per_request=self.ROUTER_MAX_COST_PER_REQUEST,
            prefer_cost_over_quality=self.ROUTER_PREFER_COST_OVER_QUALITY,
            enable_advanced_tier=self.ROUTER_ENABLE_ADVANCED_TIER,
        )

    def fallback_config(self) -> FallbackConfig:
        return FallbackConfig(
            max_retries=self.FALLBACK_MAX_RETRIES,
            max_escalations=self.FALLBACK_MAX_ESCALATIONS,
            max_downgrades=self.FALLBACK_MAX_DOWNGRADES,
        )

    def cache_config(self) -> CacheConfig:
        try:
            policy = EvictionPolicy(self.CACHE_EVICTION_POLICY.lower())
        except ValueError:
            raise ValueError(
                f"Unknown CACHE_EVICTION_POLICY {self.CACHE_EVICTION_POLICY!r}. "
                f"Must be one of: {', '.join(p.value for p in EvictionPolicy)}"
            ) from None
        return CacheConfig(
            max_size=self.CACHE_MAX_ENTRIES,
            max_memory=self.CACHE_MAX_MEMORY_BYTES,
            default_ttl_seconds=self.CACHE_DEFAULT_TTL_SECONDS,
            eviction_policy=policy,
        )

    def tuning_mode(self) -> TuningMode:
        try:
            return TuningMode(self.TUNER_MODE.lower())
        except ValueError:
            raise ValueError(
                f"Unknown TUNER_MODE {self.TUNER_MODE!r}. "
                f"Must be one of: {', '.join(m.value for m in TuningMode)}"
            ) from None

    def tuner_config(self) -> TunerConfig:
        return TunerConfig(
            mode=self.tuning_mode(),
            max_concurrency=self.TUNER_MAX_CONCURRENCY,
            base_timeout_ms=self.TUNER_BASE_TIMEOUT_MS,
            batch_size=self.TUNER_BATCH_SIZE,
            batch_delay_ms=self.TUNER_BATCH_DELAY_MS,
        )

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            enable_prompt_optimization=self.PIPELINE_ENABLE_PROMPT_OPTIMIZATION,
            enable_cache_optimization=self.PIPELINE_ENABLE_CACHE,
            enable_performance_tuning=self.PIPELINE_ENABLE_TUNING,
            tuning_mode=self.tuning_mode(),
        )
