from dataclasses import dataclass, field, replace
from typing import Any

from routing.classifier import ComplexityClassifier
from routing.model_catalog import ModelCatalog
from routing.routing_types import (
    TIER_ORDER,
    ComplexityAnalysis,
    ComplexityLevel,
    ModelAlternative,
    ModelConfig,
    ModelTier,
    RoutingDecision,
    TaskType,
    task_key,
    tier_rank,
)
from utils.cost_calculator import CostLedger, estimate_cost, estimate_input_tokens
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

OUTPUT_TOKEN_ESTIMATES: dict[str, int] = {
    TaskType.ROADMAP.value: 4000,
    TaskType.SLIDES.value: 3000,
    TaskType.DOCUMENT.value: 5000,
    TaskType.RESEARCH_ANALYSIS.value: 2500,
    TaskType.QA.value: 500,
}
DEFAULT_OUTPUT_TOKENS = 3000


def _default_complexity_mapping() -> dict[ComplexityLevel, ModelTier]:
    return {
        ComplexityLevel.SIMPLE: ModelTier.FAST,
        ComplexityLevel.MEDIUM: ModelTier.STANDARD,
        ComplexityLevel.COMPLEX: ModelTier.STANDARD,
        ComplexityLevel.VERY_COMPLEX: ModelTier.ADVANCED,
    }


@dataclass(frozen=True)
class RouterConfig:
    max_cost_per_request: float = 0.50
    prefer_cost_over_quality: bool = False
    enable_advanced_tier: bool = True
    complexity_mapping: dict[ComplexityLevel, ModelTier] = field(
        default_factory=_default_complexity_mapping
    )

    def __post_init__(self):
        if self.max_cost_per_request < 0:
            raise ValueError("max_cost_per_request must be >= 0")


class ModelRouter:
    """
    Maps a request's complexity, task type and budget to a model.

    Every ``route()`` call updates cumulative route/cost statistics.
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        config: RouterConfig | None = None,
        classifier: ComplexityClassifier | None = None,
    ):
        self._catalog = catalog or ModelCatalog.from_yaml()
        self._config = config or RouterConfig()
        self._classifier = classifier or ComplexityClassifier(
            tier_models=self._catalog.default_models()
        )
        self._ledger = CostLedger(tiers=[t.value for t in TIER_ORDER])

    @property
    def config(self) -> RouterConfig:
        return self._config

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def classifier(self) -> ComplexityClassifier:
        return self._classifier

    def route(
        self,
        content: str | None,
        task_type: TaskType | str | None = TaskType.DOCUMENT,
        *,
        estimated_output_tokens: int | None = None,
        max_cost: float | None = None,
        prefer_quality: bool | None = None,
        force_tier: ModelTier | str | None = None,
        file_count: int | None = 1,
    ) -> RoutingDecision:
        task = task_key(task_type)
        output_tokens = (
            estimated_output_tokens
            if estimated_output_tokens is not None
            else self._estimate_output_tokens(task)
        )
        budget = self._config.max_cost_per_request if max_cost is None else max_cost
        if prefer_quality is None:
            prefer_quality = not self._config.prefer_cost_over_quality
        forced = self._resolve_forced_tier(force_tier)

        complexity = self._classifier.classify(content, task, file_count=file_count)
        complexity = self._cap_recommendation(complexity)

        if forced is not None:
            tier = self._cap_tier(forced)
        else:
            tier = self._determine_tier(complexity, task, prefer_quality)

        input_tokens = estimate_input_tokens(content)
        model = self._catalog.default_model(tier)
        cost = estimate_cost(model, input_tokens, output_tokens)

        if cost > budget and forced is None:
            downgrade = self._try_downgrade(tier, input_tokens, output_tokens, budget)
            if downgrade is not None:
                tier, model, cost = downgrade
            else:
                logger.warning(
                    "No tier fits the cost budget; keeping over-budget choice",
                    extra=log_fields(task_type=task, tier=tier.value, cost=cost, max_cost=budget),
                )

        alternatives = self._build_alternatives(tier, input_tokens, output_tokens)
        reasoning = self._reasoning(complexity, task, tier, cost, forced is not None)

        self._ledger.record(tier.value, task, cost)
        logger.info(
            "Route selected",
            extra=log_fields(
                task_type=task,
                model_id=model.id,
                tier=tier.value,
                complexity=complexity.level.value,
                estimated_cost=cost,
                forced=forced is not None,
            ),
        )

        return RoutingDecision(
            model_id=model.id,
            tier=tier,
            model_config=model,
            estimated_cost=cost,
            reasoning=reasoning,
            alternatives=alternatives,
            complexity=complexity,
        )

    def quick_route(self, content: str | None, task_type: TaskType | str | None = TaskType.DOCUMENT) -> str:
        level = self._classifier.quick_classify(content, task_type)
        tier = self._cap_tier(self._config.complexity_mapping[level])
        return self._catalog.default_model(tier).id

    def get_model(self, model_id: str) -> ModelConfig:
        return self._catalog.get(model_id)

    def get_models(self) -> dict[str, ModelConfig]:
        return {m.id: m for m in self._catalog.list_models()}

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        return estimate_cost(self._catalog.get(model_id), input_tokens, output_tokens)

    def default_model_for(self, tier: ModelTier) -> str:
        return self._catalog.default_model(self._cap_tier(tier)).id

    def enabled_tiers(self) -> list[ModelTier]:
        if self._config.enable_advanced_tier:
            return list(TIER_ORDER)
        return [t for t in TIER_ORDER if t != ModelTier.ADVANCED]

    def top_tier(self) -> ModelTier:
        return self.enabled_tiers()[-1]

    def get_stats(self) -> dict[str, Any]:
        return self._ledger.summary()

    # ---------- internals ----------

    def _resolve_forced_tier(self, force_tier: ModelTier | str | None) -> ModelTier | None:
        if force_tier is None:
            return None
        try:
            return ModelTier(force_tier)
        except ValueError:
            logger.warning(
                "Ignoring unknown forced tier", extra=log_fields(force_tier=str(force_tier))
            )
            return None

    def _cap_recommendation(self, complexity: ComplexityAnalysis) -> ComplexityAnalysis:
        recommended = self._catalog.find(complexity.recommended_model)
        if recommended is None or self._cap_tier(recommended.tier) == recommended.tier:
            return complexity
        return replace(complexity, recommended_model=self.default_model_for(recommended.tier))

    def _cap_tier(self, tier: ModelTier) -> ModelTier:
        if tier == ModelTier.ADVANCED and not self._config.enable_advanced_tier:
            return ModelTier.STANDARD
        return tier

    def _determine_tier(
        self, complexity: ComplexityAnalysis, task: str, prefer_quality: bool
    ) -> ModelTier:
        tier = self._config.complexity_mapping[complexity.level]

        preference = self._catalog.task_preference(task)
        if preference is not None and prefer_quality and tier_rank(preference) > tier_rank(tier):
            tier = preference

        return self._cap_tier(tier)

    def _try_downgrade(
        self, tier: ModelTier, input_tokens: int, output_tokens: int, budget: float
    ) -> tuple[ModelTier, ModelConfig, float] | None:
        for candidate in reversed(TIER_ORDER[: tier_rank(tier)]):
            model = self._catalog.default_model(candidate)
            cost = estimate_cost(model, input_tokens, output_tokens)
            if cost <= budget:
                return candidate, model, cost
        return None

    def _build_alternatives(
        self, selected: ModelTier, input_tokens: int, output_tokens: int
    ) -> dict[ModelTier, ModelAlternative]:
        alternatives: dict[ModelTier, ModelAlternative] = {}
        for tier in self.enabled_tiers():
            if tier == selected:
                continue
            model = self._catalog.default_model(tier)
            alternatives[tier] = ModelAlternative(
                model_id=model.id,
                estimated_cost=estimate_cost(model, input_tokens, output_tokens),
                quality_score=model.quality_score,
            )
        return alternatives

    def _estimate_output_tokens(self, task: str) -> int:
        return OUTPUT_TOKEN_ESTIMATES.get(task, DEFAULT_OUTPUT_TOKENS)

    def _reasoning(
        self,
        complexity: ComplexityAnalysis,
        task: str,
        tier: ModelTier,
        cost: float,
        forced: bool,
    ) -> str:
        parts: list[str] = []
        if forced:
            parts.append(f"Tier forced to {tier.value}")
        else:
            parts.append(f"Complexity: {complexity.level.value} ({complexity.score * 100:.0f}%)")
            parts.append(f"Task: {task}")
            parts.append(f"Selected tier: {tier.value}")
        parts.append(f"Estimated cost: ${cost:.4f}")
        return ". ".join(parts)
