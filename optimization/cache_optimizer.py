"""
Artifact cache for generated content.

- Adaptive TTL per content type (hit rate and regeneration rate aware)
- Similarity lookup on near-duplicate prompts (Jaccard over word sets)
- LRU / LFU / FIFO / adaptive eviction under entry-count and memory bounds
- Cache warming queue for predictable requests
"""

import hashlib
import json
import math
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from routing.routing_types import TaskType, task_key
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

MIN_TTL_SECONDS = 5 * 60
MAX_TTL_SECONDS = 24 * 60 * 60

BASE_TTL_SECONDS: dict[str, float] = {
    TaskType.ROADMAP.value: 2 * 60 * 60,
    TaskType.SLIDES.value: 60 * 60,
    TaskType.DOCUMENT.value: 90 * 60,
    TaskType.RESEARCH_ANALYSIS.value: 30 * 60,
}

DEFAULT_REGENERATION_RATES: dict[str, float] = {
    TaskType.ROADMAP.value: 0.1,
    TaskType.SLIDES.value: 0.15,
    TaskType.DOCUMENT.value: 0.1,
    TaskType.RESEARCH_ANALYSIS.value: 0.2,
}
DEFAULT_REGENERATION_RATE = 0.15
HIGH_REGENERATION_RATE = 0.3

DEFAULT_QUALITY_SCORE = 0.5


def content_type_key(content_type: "TaskType | str | None") -> str | None:
    """Plain string form of a content type; missing stays None."""
    if not content_type:
        return None
    return task_key(content_type)


class EvictionPolicy(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    FIFO = "fifo"
    ADAPTIVE = "adaptive"


@dataclass(frozen=True)
class CacheConfig:
    max_size: int = 100
    max_memory: int = 100 * 1024 * 1024
    default_ttl_seconds: float = 3600.0
    eviction_policy: EvictionPolicy = EvictionPolicy.ADAPTIVE
    similarity_threshold: float = 0.85
    similarity_hit_threshold: float = 0.9

    def __post_init__(self):
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")
        if self.max_memory < 1:
            raise ValueError("max_memory must be >= 1")
        if self.default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")
        object.__setattr__(self, "eviction_policy", EvictionPolicy(self.eviction_policy))


@dataclass(frozen=True)
class CacheEntryMetadata:
    content_type: str | None = None
    prompt: str | None = None
    quality_score: float | None = None


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    accessed_at: float
    ttl_seconds: float
    size: int
    access_count: int = 1
    metadata: CacheEntryMetadata = field(default_factory=CacheEntryMetadata)

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds


class AdaptiveTTLCalculator:
    """Picks a TTL from content type, rolling hit rate and regeneration rate."""

    def __init__(self, default_ttl_seconds: float = 3600.0):
        self._default_ttl = default_ttl_seconds
        self._accesses: dict[str, tuple[int, int]] = {}

    def hit_rate(self, content_type: str | None) -> float:
        hits, total = self._accesses.get(content_type or "", (0, 0))
        if total == 0:
            return 0.5
        return hits / total

    def record_access(self, content_type: str | None, was_hit: bool) -> None:
        key = content_type or ""
        hits, total = self._accesses.get(key, (0, 0))
        self._accesses[key] = (hits + (1 if was_hit else 0), total + 1)

    def calculate(self, content_type: str | None, regeneration_rate: float = 0.0) -> float:
        ttl = BASE_TTL_SECONDS.get(content_type or "", self._default_ttl)

        hit_rate = self.hit_rate(content_type)
        if hit_rate > 0.7:
            ttl *= 1.5
        elif hit_rate < 0.2:
            ttl *= 0.5

        if regeneration_rate > HIGH_REGENERATION_RATE:
            ttl *= 0.7

        return min(max(ttl, MIN_TTL_SECONDS), MAX_TTL_SECONDS)


_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class SimilarityMatcher:
    def __init__(self, threshold: float = 0.85):
        self.threshold = threshold

    @staticmethod
    def normalize(text: str) -> str:
        text = _NON_WORD.sub(" ", text.lower())
        return _WHITESPACE.sub(" ", text).strip()

    def similarity(self, a: str | None, b: str | None) -> float:
        if a == b:
            return 1.0
        if not a or not b:
            return 0.0

        words_a = set(self.normalize(a).split())
        words_b = set(self.normalize(b).split())
        union = words_a | words_b
        if not union:
            return 0.0
        return len(words_a & words_b) / len(union)

    def find_similar(
        self, query: str, entries: dict[str, CacheEntry]
    ) -> list[tuple[float, CacheEntry]]:
        """Entries at or above the search threshold, best match first."""
        matches = []
        for entry in entries.values():
            score = self.similarity(query, entry.metadata.prompt or "")
            if score >= self.threshold:
                matches.append((score, entry))
        matches.sort(key=lambda match: match[0], reverse=True)
        return matches


class CacheOptimizer:
    """
    Bounded in-memory cache of generated artifacts.

    Every public operation holds the cache lock, so eviction and insertion in
    ``set`` happen atomically and the entry-count and memory bounds hold after
    every call returns.
    """

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.time):
        self._config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._ttl = AdaptiveTTLCalculator(self._config.default_ttl_seconds)
        self._matcher = SimilarityMatcher(self._config.similarity_threshold)
        self._regeneration_rates: dict[str, float] = dict(DEFAULT_REGENERATION_RATES)
        self._warming_queue: list[dict[str, Any]] = []

        self._hits = 0
        self._misses = 0
        self._similarity_hits = 0
        self._evictions = 0
        self._total_size = 0

    @property
    def config(self) -> CacheConfig:
        return self._config

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def total_size(self) -> int:
        with self._lock:
            return self._total_size

    @staticmethod
    def generate_key(content_type: str | None, prompt: str | None, content_hash: str | None) -> str:
        data = f"{content_type_key(content_type) or ''}:{prompt or ''}:{content_hash or ''}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def get(
        self,
        key: str,
        *,
        allow_similar: bool = False,
        prompt: str | None = None,
        content_type: str | None = None,
    ) -> Any | None:
        content_type = content_type_key(content_type)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.is_expired(now):
                    self._remove(key)
                    self._evictions += 1
                    self._misses += 1
                    self._ttl.record_access(entry.metadata.content_type, False)
                    return None

                entry.accessed_at = now
                entry.access_count += 1
                self._hits += 1
                self._ttl.record_access(entry.metadata.content_type, True)
                return entry.value

            if allow_similar and prompt:
                live = {k: e for k, e in self._entries.items() if not e.is_expired(now)}
                matches = self._matcher.find_similar(prompt, live)
                if matches and matches[0][0] > self._config.similarity_hit_threshold:
                    score, match = matches[0]
                    match.accessed_at = now
                    match.access_count += 1
                    self._similarity_hits += 1
                    logger.debug(
                        "Cache similarity hit",
                        extra=log_fields(key=match.key, similarity=round(score, 4)),
                    )
                    return match.value

            self._misses += 1
            self._ttl.record_access(content_type, False)
            return None

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: float | None = None,
        content_type: str | None = None,
        prompt: str | None = None,
        quality_score: float | None = None,
    ) -> bool:
        quality_score = self._normalize_quality(key, quality_score)
        size = self._estimate_size(value)
        if size > self._config.max_memory:
            logger.warning(
                "Value too large to cache",
                extra=log_fields(key=key, size=size, max_memory=self._config.max_memory),
            )
            return False

        content_type = content_type_key(content_type)
        now = self._clock()
        with self._lock:
            if ttl_seconds is None:
                ttl_seconds = self._ttl.calculate(
                    content_type, self._regeneration_rate(content_type)
                )

            if key in self._entries:
                self._remove(key)

            evicted = self._ensure_capacity(size)
            if evicted:
                logger.debug(
                    "Cache eviction sweep",
                    extra=log_fields(
                        evicted=evicted,
                        policy=self._config.eviction_policy.value,
                        entries=len(self._entries),
                        total_size=self._total_size,
                    ),
                )

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                accessed_at=now,
                ttl_seconds=ttl_seconds,
                size=size,
                metadata=CacheEntryMetadata(
                    content_type=content_type,
                    prompt=prompt,
                    quality_score=quality_score,
                ),
            )
            self._total_size += size
        return True

    def invalidate(
        self,
        *,
        content_type: str | None = None,
        older_than: float | None = None,
        quality_below: float | None = None,
    ) -> int:
        """
        Delete entries matching ANY of the given criteria.

        Args:
            content_type: Entries cached for this content type
            older_than: Entries created before this timestamp
            quality_below: Entries with a known quality score below this value

        Returns:
            Number of entries removed
        """
        content_type = content_type_key(content_type)
        with self._lock:
            doomed = [
                key
                for key, entry in self._entries.items()
                if (content_type is not None and entry.metadata.content_type == content_type)
                or (older_than is not None and entry.created_at < older_than)
                or (
                    quality_below is not None
                    and entry.metadata.quality_score is not None
                    and entry.metadata.quality_score < quality_below
                )
            ]
            for key in doomed:
                self._remove(key)

        if doomed:
            logger.info("Cache entries invalidated", extra=log_fields(count=len(doomed)))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_size = 0

    def record_regeneration_rate(self, content_type: str, rate: float) -> None:
        if not 0.0 <= rate <= 1.0:
            raise ValueError("regeneration rate must be in [0, 1]")
        with self._lock:
            self._regeneration_rates[content_type_key(content_type) or ""] = rate

    def schedule_warming(self, task: dict[str, Any]) -> None:
        with self._lock:
            self._warming_queue.append({**task, "scheduled_at": self._clock()})

    def get_warming_tasks(self, count: int = 5) -> list[dict[str, Any]]:
        with self._lock:
            tasks = self._warming_queue[:count]
            del self._warming_queue[:count]
            return tasks

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return self._stats()

    def get_recommendations(self) -> list[dict[str, str]]:
        """Advisory only; nothing here changes cache behavior."""
        with self._lock:
            stats = self._stats()
            lookups = self._hits + self._misses
            hit_rate = self._hits / lookups if lookups else 0.0
            recommendations = []

            if hit_rate < 0.3 and lookups > 100:
                recommendations.append(
                    {
                        "type": "low_hit_rate",
                        "message": "Cache hit rate is low. Consider enabling similarity matching or increasing TTL.",
                        "metric": f"Hit rate: {hit_rate * 100:.1f}%",
                    }
                )
            if self._total_size > self._config.max_memory * 0.9:
                recommendations.append(
                    {
                        "type": "high_memory",
                        "message": "Cache memory usage is high. Consider reducing TTL or cache size.",
                        "metric": f"Memory: {stats['memory_utilization']:.1f}%",
                    }
                )
            if self._evictions > self._hits * 0.5:
                recommendations.append(
                    {
                        "type": "high_evictions",
                        "message": "High eviction rate indicates cache is too small.",
                        "metric": f"Evictions: {self._evictions}",
                    }
                )
            if len(self._entries) < self._config.max_size * 0.2 and hit_rate > 0.7:
                recommendations.append(
                    {
                        "type": "underutilized",
                        "message": "Cache is underutilized. Consider increasing cache warming.",
                        "metric": f"Utilization: {len(self._entries) / self._config.max_size * 100:.1f}%",
                    }
                )
            return recommendations

    # ---------- internals (caller holds the lock) ----------

    def _stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        size_by_type: dict[str, int] = {}
        count_by_type: dict[str, int] = {}
        for entry in self._entries.values():
            content_type = entry.metadata.content_type or "unknown"
            size_by_type[content_type] = size_by_type.get(content_type, 0) + entry.size
            count_by_type[content_type] = count_by_type.get(content_type, 0) + 1

        return {
            "entries": len(self._entries),
            "max_size": self._config.max_size,
            "total_size_bytes": self._total_size,
            "max_memory": self._config.max_memory,
            "memory_utilization": self._total_size / self._config.max_memory * 100,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "similarity_hits": self._similarity_hits,
            "evictions": self._evictions,
            "size_by_type": size_by_type,
            "count_by_type": count_by_type,
            "warming_queue_size": len(self._warming_queue),
        }

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._total_size -= entry.size

    def _ensure_capacity(self, incoming_size: int) -> int:
        evicted = 0
        while self._entries and (
            len(self._entries) >= self._config.max_size
            or self._total_size + incoming_size > self._config.max_memory
        ):
            target = self._select_eviction_target()
            self._remove(target.key)
            self._evictions += 1
            evicted += 1
        return evicted

    def _select_eviction_target(self) -> CacheEntry:
        entries = self._entries.values()
        policy = self._config.eviction_policy
        if policy == EvictionPolicy.LRU:
            return min(entries, key=lambda e: e.accessed_at)
        if policy == EvictionPolicy.LFU:
            return min(entries, key=lambda e: e.access_count)
        if policy == EvictionPolicy.FIFO:
            return min(entries, key=lambda e: e.created_at)

        now = self._clock()
        return min(entries, key=lambda e: self._adaptive_score(e, now))

    @staticmethod
    def _adaptive_score(entry: CacheEntry, now: float) -> float:
        """Lower scores are evicted first."""
        quality = entry.metadata.quality_score
        if quality is None:
            quality = DEFAULT_QUALITY_SCORE
        recency_minutes = (now - entry.accessed_at) / 60
        age_ten_minutes = (now - entry.created_at) / 600
        return entry.access_count * 10 + quality * 5 - recency_minutes - age_ten_minutes

    def _regeneration_rate(self, content_type: str | None) -> float:
        return self._regeneration_rates.get(content_type or "", DEFAULT_REGENERATION_RATE)

    @staticmethod
    def _estimate_size(value: Any) -> int:
        try:
            serialized = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            serialized = str(value)
        return len(serialized) * 2

    @staticmethod
    def _normalize_quality(key: str, quality_score: float | None) -> float | None:
        """Clamp the caller's score to [0, 1]; NaN becomes the neutral default."""
        if quality_score is None:
            return None
        if math.isnan(quality_score):
            normalized = DEFAULT_QUALITY_SCORE
        else:
            normalized = min(1.0, max(0.0, quality_score))
        if normalized != quality_score:
            logger.warning(
                "Quality score out of range; normalized",
                extra=log_fields(key=key, quality_score=quality_score, normalized=normalized),
            )
        return normalized
