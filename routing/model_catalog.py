from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from routing.routing_types import (
    DEFAULT_TIER_MODELS,
    TIER_ORDER,
    ModelConfig,
    ModelTier,
    TaskType,
    task_key,
)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "config" / "model_catalog.yaml"

REQUIRED_MODEL_FIELDS = ("id", "tier", "input_cost_per_1m", "output_cost_per_1m")


@dataclass
class ModelCatalog:
    """Static registry of model configs keyed by id, with a default model per tier."""

    _models: dict[str, ModelConfig]
    _default_models: dict[ModelTier, str] = field(default_factory=lambda: dict(DEFAULT_TIER_MODELS))
    _task_preferences: dict[str, ModelTier] = field(default_factory=dict)

    def __post_init__(self):
        for tier in TIER_ORDER:
            model_id = self._default_models.get(tier)
            if model_id is None:
                raise ValueError(f"Model catalog has no default model for tier {tier.value}")
            if model_id not in self._models:
                raise ValueError(
                    f"Default model {model_id} for tier {tier.value} is not in the catalog"
                )
            if self._models[model_id].tier != tier:
                raise ValueError(
                    f"Default model {model_id} is tier {self._models[model_id].tier.value}, "
                    f"expected {tier.value}"
                )

    @classmethod
    def from_yaml(cls, path: str | Path | None = None) -> "ModelCatalog":
        catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
        if not catalog_path.exists():
            raise ValueError(f"Model catalog not found at {catalog_path}")

        data = yaml.safe_load(catalog_path.read_text(encoding="utf-8"))
        if not data or "models" not in data:
            raise ValueError("Invalid model catalog: missing models")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelCatalog":
        raw_models = data.get("models", [])
        if not isinstance(raw_models, list):
            raise ValueError("Invalid model catalog: models must be a list")

        models: dict[str, ModelConfig] = {}
        for raw in raw_models:
            missing = [key for key in REQUIRED_MODEL_FIELDS if key not in raw]
            if missing:
                raise ValueError(f"Missing required fields {missing} in model {raw.get('id')}")
            try:
                tier = ModelTier(raw["tier"])
            except ValueError:
                raise ValueError(f"Unknown tier {raw['tier']!r} for model {raw['id']}") from None
            models[raw["id"]] = ModelConfig(
                id=raw["id"],
                tier=tier,
                input_cost_per_1m=float(raw["input_cost_per_1m"]),
                output_cost_per_1m=float(raw["output_cost_per_1m"]),
                max_output_tokens=int(raw.get("max_output_tokens", 8192)),
                context_window=int(raw.get("context_window", 1_000_000)),
                quality_score=float(raw.get("quality_score", 0.5)),
                supports_structured_output=bool(raw.get("supports_structured_output", True)),
            )

        default_models = dict(DEFAULT_TIER_MODELS)
        for tier_name, model_id in (data.get("default_models") or {}).items():
            default_models[ModelTier(tier_name)] = model_id

        task_preferences = {
            task_key(task): ModelTier(tier_name)
            for task, tier_name in (data.get("task_preferences") or {}).items()
        }

        return cls(
            _models=models,
            _default_models=default_models,
            _task_preferences=task_preferences,
        )

    @classmethod
    def from_models(
        cls,
        models: list[ModelConfig],
        default_models: dict[ModelTier, str] | None = None,
        task_preferences: dict[str, ModelTier] | None = None,
    ) -> "ModelCatalog":
        return cls(
            _models={m.id: m for m in models},
            _default_models={
                ModelTier(t): m for t, m in (default_models or DEFAULT_TIER_MODELS).items()
            },
            _task_preferences={
                task_key(task): ModelTier(t) for task, t in (task_preferences or {}).items()
            },
        )

    def get(self, model_id: str) -> ModelConfig:
        """Look up a model; an unknown id is a misconfiguration."""
        model = self._models.get(model_id)
        if model is None:
            raise ValueError(f"Unknown model id {model_id!r}: not present in the model catalog")
        return model

    def find(self, model_id: str | None) -> ModelConfig | None:
        if not model_id:
            return None
        return self._models.get(model_id)

    def default_model(self, tier: ModelTier) -> ModelConfig:
        return self._models[self._default_models[tier]]

    def default_models(self) -> dict[ModelTier, str]:
        return dict(self._default_models)

    def task_preference(self, task_type: TaskType | str | None) -> ModelTier | None:
        return self._task_preferences.get(task_key(task_type))

    def task_preferences(self) -> dict[str, ModelTier]:
        return dict(self._task_preferences)

    def list_models(self, tier: ModelTier | None = None) -> list[ModelConfig]:
        return [m for m in self._models.values() if tier is None or m.tier == tier]
