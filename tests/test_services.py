import pytest

from config.settings import Settings
from optimization.cache_optimizer import EvictionPolicy
from optimization.performance_tuner import TuningMode
from optimization.services import build_services
from routing.routing_types import FallbackAction, ModelTier


def _settings(tmp_path) -> Settings:
    return Settings(env_file=tmp_path / ".env")


def test_defaults_build_a_working_stack(tmp_path, clock):
    services = build_services(_settings(tmp_path), clock=clock)

    assert services.router.enabled_tiers() == [ModelTier.FAST, ModelTier.STANDARD, ModelTier.ADVANCED]
    assert services.cache.config.eviction_policy == EvictionPolicy.ADAPTIVE
    assert services.tuner.config.mode == TuningMode.BALANCED
    assert services.pipeline.cache is services.cache
    assert services.pipeline.tuner is services.tuner


def test_environment_overrides_are_applied(tmp_path, clock, monkeypatch):
    monkeypatch.setenv("ROUTER_ENABLE_ADVANCED_TIER", "false")
    monkeypatch.setenv("FALLBACK_MAX_RETRIES", "5")
    monkeypatch.setenv("CACHE_EVICTION_POLICY", "LRU")
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "10")
    monkeypatch.setenv("TUNER_MODE", "conservative")

    services = build_services(_settings(tmp_path), clock=clock)

    assert services.router.enabled_tiers() == [ModelTier.FAST, ModelTier.STANDARD]
    assert services.fallback.config.max_retries == 5
    assert services.cache.config.eviction_policy == EvictionPolicy.LRU
    assert services.cache.config.max_size == 10
    assert services.tuner.config.mode == TuningMode.CONSERVATIVE
    assert services.tuner.concurrency.current_concurrency == 2
    assert services.pipeline.get_optimized_timeout("document") == 216_000

    decision = services.fallback.get_fallback("req-1", "context length exceeded", "gemini-2.5-flash")
    assert decision.action == FallbackAction.ABORT


def test_env_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("TUNER_MAX_CONCURRENCY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("TUNER_MAX_CONCURRENCY=3\n")

    settings = Settings(env_file=env_file)
    assert settings.tuner_config().max_concurrency == 3


def test_unknown_eviction_policy_raises(tmp_path, monkeypatch):
    monkeypatch.setenv("CACHE_EVICTION_POLICY", "random")
    with pytest.raises(ValueError, match="CACHE_EVICTION_POLICY"):
        build_services(_settings(tmp_path))


def test_unknown_tuning_mode_raises(tmp_path, monkeypatch):
    monkeypatch.setenv("TUNER_MODE", "turbo")
    with pytest.raises(ValueError, match="TUNER_MODE"):
        build_services(_settings(tmp_path))


def test_non_numeric_setting_raises(tmp_path, monkeypatch):
    monkeypatch.setenv("FALLBACK_MAX_RETRIES", "three")
    with pytest.raises(ValueError, match="FALLBACK_MAX_RETRIES"):
        _settings(tmp_path)


def test_out_of_range_concurrency_raises(tmp_path, monkeypatch):
    monkeypatch.setenv("TUNER_MAX_CONCURRENCY", "12")
    with pytest.raises(ValueError):
        build_services(_settings(tmp_path))


def test_services_manage_sweeper_lifecycle(tmp_path, monkeypatch):
    monkeypatch.setenv("FALLBACK_SWEEP_INTERVAL_SECONDS", "0.01")
    with build_services(_settings(tmp_path)) as services:
        assert services.sweeper.running
    assert not services.sweeper.running
