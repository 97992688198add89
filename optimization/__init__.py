"""
Optimization package: artifact cache, performance tuning and the request pipeline.
"""

from .cache_optimizer import CacheConfig, CacheOptimizer, EvictionPolicy
from .performance_tuner import PerformanceTuner, TunerConfig, TuningMode
from .pipeline import OptimizationPipeline, PipelineConfig, VariantSelector

__all__ = [
    "CacheConfig",
    "CacheOptimizer",
    "EvictionPolicy",
    "OptimizationPipeline",
    "PerformanceTuner",
    "PipelineConfig",
    "TunerConfig",
    "TuningMode",
    "VariantSelector",
]
