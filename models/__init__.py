"""
Models package for pipeline boundary records.
"""

from .requests import OptimizationRequest, OptimizationTrace, OptimizedRequest, PromptVariant, RequestOutcome

__all__ = ["OptimizationRequest", "OptimizationTrace", "OptimizedRequest", "PromptVariant", "RequestOutcome"]
