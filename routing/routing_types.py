from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModelTier(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    ADVANCED = "advanced"


# Escalation goes right, downgrade goes left.
TIER_ORDER: tuple[ModelTier, ...] = (ModelTier.FAST, ModelTier.STANDARD, ModelTier.ADVANCED)


def tier_rank(tier: ModelTier) -> int:
    return TIER_ORDER.index(tier)


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"


class TaskType(str, Enum):
    ROADMAP = "roadmap"
    SLIDES = "slides"
    DOCUMENT = "document"
    RESEARCH_ANALYSIS = "research-analysis"
    QA = "qa"


def task_key(task_type: "TaskType | str | None") -> str:
    """Normalize a task type to its plain string token; missing means document."""
    if task_type is None or task_type == "":
        return TaskType.DOCUMENT.value
    if isinstance(task_type, Enum):
        return str(task_type.value)
    return str(task_type)


DEFAULT_TIER_MODELS: dict[ModelTier, str] = {
    ModelTier.FAST: "gemini-2.0-flash-lite",
    ModelTier.STANDARD: "gemini-2.5-flash-preview-09-2025",
    ModelTier.ADVANCED: "gemini-2.5-pro",
}


@dataclass(frozen=True)
class ComplexityAnalysis:
    level: ComplexityLevel
    score: float
    factors: dict[str, float]
    recommended_model: str
    reasoning: str


@dataclass(frozen=True)
class ModelConfig:
    id: str
    tier: ModelTier
    input_cost_per_1m: float
    output_cost_per_1m: float
    max_output_tokens: int = 8192
    context_window: int = 1_000_000
    quality_score: float = 0.5
    supports_structured_output: bool = True

    def __post_init__(self):
        if not self.id:
            raise ValueError("Model id must not be empty")
        if not isinstance(self.tier, ModelTier):
            object.__setattr__(self, "tier", ModelTier(self.tier))
        if self.input_cost_per_1m < 0 or self.output_cost_per_1m < 0:
            raise ValueError(f"Negative cost for model {self.id}")
        if not 0.0 <= self.quality_score <= 1.0:
            raise ValueError(f"quality_score must be in [0, 1] for model {self.id}")
        if self.max_output_tokens <= 0 or self.context_window <= 0:
            raise ValueError(f"Token limits must be positive for model {self.id}")


@dataclass(frozen=True)
class ModelAlternative:
    model_id: str
    estimated_cost: float
    quality_score: float


@dataclass(frozen=True)
class RoutingDecision:
    model_id: str
    tier: ModelTier
    model_config: ModelConfig
    estimated_cost: float
    reasoning: str
    alternatives: dict[ModelTier, ModelAlternative]
    complexity: ComplexityAnalysis

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "tier": self.tier.value,
            "estimated_cost": self.estimated_cost,
            "reasoning": self.reasoning,
            "alternatives": {
                tier.value: {
                    "model_id": alt.model_id,
                    "estimated_cost": alt.estimated_cost,
                    "quality_score": alt.quality_score,
                }
                for tier, alt in self.alternatives.items()
            },
            "complexity": {
                "level": self.complexity.level.value,
                "score": self.complexity.score,
                "factors": dict(self.complexity.factors),
            },
        }


class ErrorType(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    CAPABILITY = "capability"
    INVALID_RESPONSE = "invalid_response"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class FallbackAction(str, Enum):
    RETRY = "retry"
    ESCALATE = "escalate"
    DOWNGRADE = "downgrade"
    ABORT = "abort"


@dataclass(frozen=True)
class AttemptError:
    error_type: ErrorType
    model_id: str
    timestamp: float
    message: str


@dataclass
class AttemptState:
    retries: int = 0
    escalations: int = 0
    downgrades: int = 0
    models_attempted: list[str] = field(default_factory=list)
    errors: list[AttemptError] = field(default_factory=list)

    @property
    def last_error_at(self) -> float | None:
        if not self.errors:
            return None
        return self.errors[-1].timestamp


@dataclass(frozen=True)
class FallbackDecision:
    action: FallbackAction
    model_id: str | None
    delay_ms: int
    reasoning: str
    should_notify: bool = False
    error_type: ErrorType = ErrorType.UNKNOWN
