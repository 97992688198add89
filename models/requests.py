"""Pydantic boundary records for the optimization pipeline."""

from typing import Any

from pydantic import BaseModel, Field, model_validator


class OptimizationRequest(BaseModel):
    content_type: str = Field(..., min_length=1)
    prompt: str = ""
    cache_key: str | None = None
    content_hash: str | None = None

    @model_validator(mode="after")
    def require_cache_identity(self):
        if not self.cache_key and self.content_hash is None:
            raise ValueError("cache_key or content_hash is required")
        return self


class RequestOutcome(BaseModel):
    success: bool
    latency_ms: float | None = Field(None, ge=0)
    quality_score: float | None = Field(None, ge=0.0, le=1.0)
    output: Any = None
    timeout: bool = False
    error: str | None = None
    variant_id: str | None = None


class PromptVariant(BaseModel):
    id: str
    name: str | None = None


class OptimizationTrace(BaseModel):
    applied: list[str] = Field(default_factory=list)
    variant_id: str | None = None
    variant_name: str | None = None
    timeout_ms: int | None = None
    can_start_now: bool | None = None


class OptimizedRequest(BaseModel):
    request: OptimizationRequest
    cache_key: str
    cached: bool = False
    cached_result: Any = None
    optimizations: OptimizationTrace = Field(default_factory=OptimizationTrace)
