import pytest
from pydantic import ValidationError

from models.requests import OptimizationRequest, PromptVariant, RequestOutcome
from optimization.cache_optimizer import CacheConfig, CacheOptimizer
from optimization.performance_tuner import PerformanceTuner, TuningMode
from optimization.pipeline import OptimizationPipeline, PipelineConfig


class FakeVariantSelector:
    def __init__(self, variant: PromptVariant | None):
        self.variant = variant
        self.recorded = []

    def select_variant(self, content_type):
        return self.variant

    def record_result(self, content_type, variant_id, *, success, latency_ms, quality_score):
        self.recorded.append((content_type, variant_id, success, latency_ms, quality_score))


def _build_pipeline(clock, config=None, cache_config=None, variant_selector=None):
    return OptimizationPipeline(
        config,
        cache=CacheOptimizer(cache_config, clock=clock),
        tuner=PerformanceTuner(clock=clock),
        variant_selector=variant_selector,
    )


def _roadmap_request(content_hash="abc") -> OptimizationRequest:
    return OptimizationRequest(content_type="roadmap", prompt="Plan the Q3 launch", content_hash=content_hash)


def test_injected_empty_components_are_used(clock):
    cache = CacheOptimizer(CacheConfig(max_size=1), clock=clock)
    tuner = PerformanceTuner(clock=clock)
    assert len(cache) == 0

    pipeline = OptimizationPipeline(cache=cache, tuner=tuner)
    assert pipeline.cache is cache
    assert pipeline.tuner is tuner

    for content_hash in ("a", "b"):
        pipeline.record_result(
            _roadmap_request(content_hash), RequestOutcome(success=True, latency_ms=10, output="x")
        )
    assert len(cache) == 1


def test_cache_hit_short_circuits(clock):
    pipeline = _build_pipeline(clock)
    request = _roadmap_request()

    first = pipeline.optimize_request(request)
    assert first.cached is False
    assert first.optimizations.applied == ["performance_tuning"]
    assert first.optimizations.timeout_ms == 180_000
    assert first.optimizations.can_start_now is True

    output = {"milestones": ["beta", "launch"]}
    pipeline.record_result(
        request, RequestOutcome(success=True, latency_ms=1_200, quality_score=0.8, output=output)
    )

    second = pipeline.optimize_request(request)
    assert second.cached is True
    assert second.cached_result == output
    assert second.cache_key == first.cache_key
    assert second.optimizations.applied == ["cache_hit"]
    assert second.optimizations.timeout_ms is None


def test_variant_selection_is_traced_and_fed_back(clock):
    selector = FakeVariantSelector(PromptVariant(id="v2", name="concise"))
    pipeline = _build_pipeline(clock, variant_selector=selector)
    request = _roadmap_request()

    optimized = pipeline.optimize_request(request)
    assert optimized.optimizations.applied == ["prompt_variant", "performance_tuning"]
    assert optimized.optimizations.variant_id == "v2"
    assert optimized.optimizations.variant_name == "concise"

    pipeline.record_result(
        request, RequestOutcome(success=False, latency_ms=900, error="boom", variant_id="v2")
    )
    assert selector.recorded == [("roadmap", "v2", False, 900, None)]


def test_selector_without_variant_is_skipped(clock):
    pipeline = _build_pipeline(clock, variant_selector=FakeVariantSelector(None))
    assert pipeline.optimize_request(_roadmap_request()).optimizations.applied == ["performance_tuning"]


def test_prompt_optimization_disabled_ignores_selector(clock):
    selector = FakeVariantSelector(PromptVariant(id="v1"))
    pipeline = _build_pipeline(
        clock, PipelineConfig(enable_prompt_optimization=False), variant_selector=selector
    )
    assert "prompt_variant" not in pipeline.optimize_request(_roadmap_request()).optimizations.applied


def test_failed_results_are_not_cached_but_feed_tuner(clock):
    pipeline = _build_pipeline(clock)
    request = _roadmap_request()
    pipeline.record_result(request, RequestOutcome(success=False, error="upstream 503"))

    assert pipeline.optimize_request(request).cached is False
    stats = pipeline.tuner.get_summary()["content_type_stats"]["roadmap"]
    assert stats["error_rate"] == 1.0


def test_timeouts_feed_tuner_timeout_rate(clock):
    pipeline = _build_pipeline(clock)
    pipeline.record_result(_roadmap_request(), RequestOutcome(success=False, timeout=True))
    assert pipeline.tuner.timeouts.multiplier("roadmap") == pytest.approx(1.65)


def test_disabled_components_fall_back_to_defaults(clock):
    pipeline = OptimizationPipeline(
        PipelineConfig(enable_cache_optimization=False, enable_performance_tuning=False)
    )
    assert pipeline.cache is None
    assert pipeline.tuner is None

    optimized = pipeline.optimize_request(_roadmap_request())
    assert optimized.cached is False
    assert optimized.optimizations.applied == []
    assert pipeline.get_optimized_timeout("roadmap") == 120_000
    assert pipeline.can_start_request() is True
    assert pipeline.auto_tune()["actions"] == []
    assert pipeline.warm_cache([{"content_type": "slides"}]) == 0

    summary = pipeline.get_summary()
    assert summary["cache"] is None
    assert summary["performance"] is None


def test_pipeline_mode_is_applied_to_tuner(clock):
    pipeline = _build_pipeline(clock, PipelineConfig(tuning_mode="conservative"))
    assert pipeline.tuner.config.mode == TuningMode.CONSERVATIVE
    assert pipeline.tuner.concurrency.current_concurrency == 2

    pipeline.set_tuning_mode(TuningMode.AGGRESSIVE)
    assert pipeline.config.tuning_mode == TuningMode.AGGRESSIVE
    assert pipeline.tuner.concurrency.current_concurrency == 6
    assert pipeline.get_optimized_timeout("research-analysis") == 90_000


def test_request_tracking_limits_admission(clock):
    pipeline = _build_pipeline(clock)
    for _ in range(4):
        pipeline.track_request_start()
    assert pipeline.can_start_request() is False

    pipeline.track_request_end()
    assert pipeline.can_start_request() is True


def test_warm_cache_schedules_predictions(clock):
    pipeline = _build_pipeline(clock)
    predictions = [{"content_type": "slides", "prompt": "deck"}, {"content_type": "qa", "prompt": "faq"}]

    assert pipeline.warm_cache(predictions) == 2
    assert [t["prompt"] for t in pipeline.cache.get_warming_tasks()] == ["deck", "faq"]


def test_recommendations_are_tagged_by_source(clock):
    pipeline = _build_pipeline(clock, cache_config=CacheConfig(max_size=1))
    for content_hash in ("a", "b"):
        pipeline.record_result(
            _roadmap_request(content_hash), RequestOutcome(success=True, latency_ms=10, output="x")
        )

    recommendations = pipeline.get_all_recommendations()
    assert {"source": "cache"}.items() <= recommendations[0].items()
    assert any(r["type"] == "high_evictions" for r in recommendations)

    actions = pipeline.auto_tune()["actions"]
    assert all("component" in action for action in actions)


def test_explicit_cache_key_is_used_verbatim():
    request = OptimizationRequest(content_type="slides", cache_key="deck-42")
    assert OptimizationPipeline.cache_key_for(request) == "deck-42"

    hashed = OptimizationRequest(content_type="slides", prompt="deck", content_hash="h")
    assert OptimizationPipeline.cache_key_for(hashed) == CacheOptimizer.generate_key("slides", "deck", "h")


def test_request_models_validate_input():
    with pytest.raises(ValidationError):
        OptimizationRequest(content_type="roadmap", prompt="no identity")
    with pytest.raises(ValidationError):
        OptimizationRequest(content_type="", content_hash="abc")
    with pytest.raises(ValidationError):
        RequestOutcome(success=True, quality_score=1.5)
    with pytest.raises(ValidationError):
        RequestOutcome(success=True, latency_ms=-1)
