"""
Routing package: complexity classification, model routing and fallback decisions.
"""

from .routing_types import (
    ComplexityAnalysis,
    ComplexityLevel,
    ErrorType,
    FallbackAction,
    FallbackDecision,
    ModelConfig,
    ModelTier,
    RoutingDecision,
    TaskType,
)
from .classifier import ComplexityClassifier
from .model_catalog import ModelCatalog
from .router import ModelRouter, RouterConfig
from .fallback_manager import FallbackConfig, FallbackManager
from .attempt_sweeper import AttemptSweeper

__all__ = [
    "AttemptSweeper",
    "ComplexityAnalysis",
    "ComplexityClassifier",
    "ComplexityLevel",
    "ErrorType",
    "FallbackAction",
    "FallbackConfig",
    "FallbackDecision",
    "FallbackManager",
    "ModelCatalog",
    "ModelConfig",
    "ModelRouter",
    "ModelTier",
    "RouterConfig",
    "RoutingDecision",
    "TaskType",
]
