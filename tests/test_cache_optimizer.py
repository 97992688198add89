import math

import pytest

from optimization.cache_optimizer import CacheConfig, CacheOptimizer, EvictionPolicy, SimilarityMatcher
from routing.routing_types import TaskType


def _build_cache(clock, **config) -> CacheOptimizer:
    return CacheOptimizer(CacheConfig(**config), clock=clock)


def test_set_then_get_returns_value(clock):
    cache = _build_cache(clock)
    assert cache.set("k", {"title": "Roadmap"}, content_type="roadmap")
    assert cache.get("k") == {"title": "Roadmap"}
    assert cache.get_stats()["hits"] == 1


def test_expired_entry_is_a_miss_and_deleted(clock):
    cache = _build_cache(clock)
    cache.set("k", "value", ttl_seconds=60)
    clock.advance(61)

    assert cache.get("k") is None
    assert len(cache) == 0
    stats = cache.get_stats()
    assert stats["misses"] == 1
    assert stats["total_size_bytes"] == 0


def test_entry_count_never_exceeds_max_size(clock):
    cache = _build_cache(clock, max_size=3)
    for i in range(10):
        cache.set(f"k{i}", i)
        assert len(cache) <= 3
    assert cache.get_stats()["evictions"] == 7


def test_memory_bound_is_enforced(clock):
    cache = _build_cache(clock, max_memory=50)
    for i in range(5):
        cache.set(f"k{i}", "x" * 10)  # 12 serialized chars -> 24 bytes
        assert cache.total_size <= 50
    assert len(cache) == 2


def test_oversize_value_is_rejected(clock):
    cache = _build_cache(clock, max_memory=50)
    cache.set("small", "x")
    assert cache.set("big", "x" * 100) is False
    assert cache.get("big") is None
    assert cache.get("small") == "x"


def test_overwrite_releases_previous_size(clock):
    cache = _build_cache(clock)
    cache.set("k", "x" * 10)
    cache.set("k", "y" * 10)
    assert len(cache) == 1
    assert cache.total_size == 24


def test_roadmap_ttl_defaults_to_two_hours(clock):
    cache = _build_cache(clock)
    cache.set("k", "timeline", content_type="roadmap")
    clock.advance(7199)
    assert cache.get("k") == "timeline"

    other = _build_cache(clock)
    other.set("k", "timeline", content_type=TaskType.ROADMAP)
    clock.advance(7201)
    assert other.get("k") is None


def test_low_hit_rate_halves_ttl(clock):
    cache = _build_cache(clock)
    for i in range(5):
        cache.get(f"missing-{i}", content_type="slides")

    cache.set("k", "deck", content_type="slides")
    clock.advance(1801)
    assert cache.get("k") is None


def test_high_regeneration_rate_shortens_ttl(clock):
    cache = _build_cache(clock)
    cache.record_regeneration_rate("document", 0.5)
    cache.set("k", "doc", content_type="document")

    clock.advance(3700)
    assert cache.get("k") == "doc"
    clock.advance(100)
    assert cache.get("k") is None


def test_similar_prompt_hits_without_counting_as_exact_hit(clock):
    cache = _build_cache(clock)
    cache.set("k", "roadmap-json", prompt="Create a product roadmap for the mobile app launch")

    value = cache.get(
        "another-key",
        allow_similar=True,
        prompt="create a product roadmap, for the mobile app launch!",
    )
    assert value == "roadmap-json"
    stats = cache.get_stats()
    assert stats["hits"] == 0
    assert stats["similarity_hits"] == 1

    assert cache.get("another-key", allow_similar=True, prompt="summarize quarterly earnings") is None


def test_similarity_ignores_expired_entries(clock):
    cache = _build_cache(clock)
    cache.set("k", "old", ttl_seconds=60, prompt="weekly status report")
    clock.advance(61)
    assert cache.get("other", allow_similar=True, prompt="weekly status report") is None


def test_jaccard_similarity():
    matcher = SimilarityMatcher()
    assert matcher.similarity("a b c d", "a b c d") == 1.0
    assert matcher.similarity("a b", "c d") == 0.0
    assert matcher.similarity("a b c", "a b d") == pytest.approx(0.5)
    assert matcher.similarity("", "a") == 0.0


def test_invalidate_uses_or_semantics(clock):
    cache = _build_cache(clock)
    cache.set("old", "c", content_type="document")
    clock.advance(10)
    cache.set("a", "a", content_type="roadmap", quality_score=0.9)
    cache.set("b", "b", content_type="slides", quality_score=0.2)

    assert cache.invalidate(content_type="roadmap", quality_below=0.5) == 2
    assert cache.get("old") == "c"

    assert cache.invalidate(older_than=clock.now - 5) == 1
    assert len(cache) == 0


def test_generate_key_is_deterministic_and_sensitive():
    key = CacheOptimizer.generate_key("roadmap", "prompt", "abc")
    assert key == CacheOptimizer.generate_key("roadmap", "prompt", "abc")
    assert key == CacheOptimizer.generate_key(TaskType.ROADMAP, "prompt", "abc")
    assert len(key) == 64
    assert key != CacheOptimizer.generate_key("slides", "prompt", "abc")
    assert key != CacheOptimizer.generate_key("roadmap", "prompt!", "abc")
    assert key != CacheOptimizer.generate_key("roadmap", "prompt", "abd")


def test_lru_evicts_least_recently_accessed(clock):
    cache = _build_cache(clock, max_size=2, eviction_policy=EvictionPolicy.LRU)
    cache.set("a", 1)
    clock.advance(1)
    cache.set("b", 2)
    clock.advance(1)
    cache.get("a")
    clock.advance(1)
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1


def test_lfu_evicts_least_frequently_used(clock):
    cache = _build_cache(clock, max_size=2, eviction_policy="lfu")
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.get("a")
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1


def test_fifo_evicts_oldest(clock):
    cache = _build_cache(clock, max_size=2, eviction_policy=EvictionPolicy.FIFO)
    cache.set("a", 1)
    clock.advance(1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("b") == 2


def test_adaptive_evicts_lowest_quality_first(clock):
    cache = _build_cache(clock, max_size=2)
    cache.set("good", 1, quality_score=0.9)
    cache.set("poor", 2, quality_score=0.1)
    cache.set("new", 3)
    assert cache.get("poor") is None
    assert cache.get("good") == 1


def test_out_of_range_quality_is_normalized(clock):
    cache = _build_cache(clock)
    assert cache.set("nan", 1, quality_score=math.nan)
    assert cache.set("high", 2, quality_score=1.5)
    assert cache.set("low", 3, quality_score=-0.2)

    assert cache.invalidate(quality_below=0.6) == 2
    assert cache.get("high") == 2
    assert cache.invalidate(quality_below=1.0) == 0


def test_size_counts_unicode_characters_once(clock):
    cache = _build_cache(clock, max_memory=1000)
    assert cache.set("k", "日本語" * 100)
    assert cache.total_size == 604


def test_unserializable_keys_fall_back_to_str(clock):
    cache = _build_cache(clock)
    value = {(1, 2): "x"}
    assert cache.set("k", value)
    assert cache.get("k") == value
    assert cache.total_size == len(str(value)) * 2


def test_warming_queue_is_drained_in_order(clock):
    cache = _build_cache(clock)
    for i in range(7):
        cache.schedule_warming({"content_type": "slides", "prompt": f"deck {i}"})

    first = cache.get_warming_tasks()
    assert [t["prompt"] for t in first] == [f"deck {i}" for i in range(5)]
    assert first[0]["scheduled_at"] == clock.now
    assert len(cache.get_warming_tasks()) == 2
    assert cache.get_stats()["warming_queue_size"] == 0


def test_recommendations_flag_high_evictions(clock):
    cache = _build_cache(clock, max_size=1)
    cache.set("a", 1)
    cache.set("b", 2)
    types = {r["type"] for r in cache.get_recommendations()}
    assert "high_evictions" in types


def test_stats_group_by_content_type(clock):
    cache = _build_cache(clock)
    cache.set("a", "x", content_type=TaskType.ROADMAP)
    cache.set("b", "y")
    stats = cache.get_stats()
    assert stats["count_by_type"] == {"roadmap": 1, "unknown": 1}


def test_clear_resets_entries_and_size(clock):
    cache = _build_cache(clock)
    cache.set("a", "x")
    cache.clear()
    assert len(cache) == 0
    assert cache.total_size == 0


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        CacheConfig(max_size=0)
    with pytest.raises(ValueError):
        CacheConfig(eviction_policy="random")
