import re
from dataclasses import dataclass, field

from routing.routing_types import (
    DEFAULT_TIER_MODELS,
    ComplexityAnalysis,
    ComplexityLevel,
    ModelTier,
    TaskType,
    task_key,
)
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

TASK_BASE_COMPLEXITY: dict[str, float] = {
    TaskType.ROADMAP.value: 0.6,
    TaskType.SLIDES.value: 0.3,
    TaskType.DOCUMENT.value: 0.5,
    TaskType.RESEARCH_ANALYSIS.value: 0.7,
    TaskType.QA.value: 0.2,
}
UNKNOWN_TASK_COMPLEXITY = 0.5

FACTOR_LABELS = {
    "content_length": "content length",
    "structural_complexity": "structural complexity",
    "entity_density": "number of entities",
    "temporal_complexity": "temporal references",
    "technical_density": "technical content",
    "task_inherent_complexity": "task requirements",
}

_HEADING = re.compile(r"^#{1,6}\s+", re.M)
_DEEP_HEADING = re.compile(r"^#{4,6}\s+", re.M)
_BULLET = re.compile(r"^[ \t]*[-*•]\s+", re.M)
_NUMBERED = re.compile(r"^[ \t]*\d+\.\s+", re.M)
_TABLE_ROW = re.compile(r"\|.*\|")

_CAPITALIZED_SEQUENCE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b")
_ACRONYM = re.compile(r"\b[A-Z]{2,}\b")

_EXPLICIT_DATE = re.compile(r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b")
_MONTH_YEAR = re.compile(r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s+\d{4}\b", re.I)
_QUARTER = re.compile(r"\b[QH][1-4]\s*\d{4}\b", re.I)
_TEMPORAL_KEYWORD = re.compile(
    r"\b(?:before|after|during|until|since|deadline|milestone|phase|stage|timeline|"
    r"schedule|quarter|fiscal|annual)\b",
    re.I,
)
_SEQUENCE_WORD = re.compile(
    r"\b(?:first|second|third|then|next|finally|subsequently|following|prior|previous)\b", re.I
)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`]+`")
_MATH = re.compile(r"\$[^$]+\$")
_URL = re.compile(r"https?://\S+")
_TECH_TERM = re.compile(
    r"\b(?:API|SDK|ML|AI|NLP|SQL|JSON|XML|HTTP|REST|GraphQL|Docker|Kubernetes|AWS|GCP|Azure|"
    r"OAuth|JWT|TCP|UDP|DNS|SSL|TLS|HTTPS|CI|CD|DevOps|microservice|serverless|blockchain|"
    r"cryptocurrency|neural|algorithm|database|repository|deployment|infrastructure)\b",
    re.I,
)

_DETAIL_KEYWORDS = re.compile(r"\b(?:detailed|comprehensive|thorough|specific|exact|precise)\b", re.I)


@dataclass(frozen=True)
class ClassifierThresholds:
    simple: float = 0.3
    medium: float = 0.6
    complex: float = 0.85

    def __post_init__(self):
        if not 0.0 <= self.simple <= self.medium <= self.complex <= 1.0:
            raise ValueError("Classifier thresholds must satisfy 0 <= simple <= medium <= complex <= 1")


@dataclass(frozen=True)
class ClassifierWeights:
    content_length: float = 0.25
    structural_complexity: float = 0.20
    entity_density: float = 0.15
    temporal_complexity: float = 0.15
    technical_density: float = 0.10
    task_inherent_complexity: float = 0.15

    def as_dict(self) -> dict[str, float]:
        return dict(vars(self))


@dataclass(frozen=True)
class ClassifierConfig:
    thresholds: ClassifierThresholds = field(default_factory=ClassifierThresholds)
    weights: ClassifierWeights = field(default_factory=ClassifierWeights)


class ComplexityClassifier:
    """
    Scores how hard a generation request is from its content and task metadata.

    Scoring is a pure function of the inputs: six bucketed factors combined by
    configurable weights, then mapped to a level by three thresholds.
    """

    def __init__(
        self,
        config: ClassifierConfig | None = None,
        tier_models: dict[ModelTier, str] | None = None,
    ):
        self._config = config or ClassifierConfig()
        self._tier_models = dict(DEFAULT_TIER_MODELS)
        if tier_models:
            self._tier_models.update(tier_models)

    @property
    def config(self) -> ClassifierConfig:
        return self._config

    def classify(
        self,
        content: str | None,
        task_type: TaskType | str | None = TaskType.DOCUMENT,
        *,
        file_count: int | None = 1,
        user_prompt: str | None = None,
    ) -> ComplexityAnalysis:
        text = content or ""
        task = task_key(task_type)
        file_count = file_count or 1

        factors = {
            "content_length": self._content_length(text),
            "structural_complexity": self._structural_complexity(text),
            "entity_density": self._entity_density(text),
            "temporal_complexity": self._temporal_complexity(text),
            "technical_density": self._technical_density(text),
            "task_inherent_complexity": self._task_complexity(task, file_count, user_prompt or ""),
        }

        weights = self._config.weights.as_dict()
        score = sum(value * weights.get(name, 0.0) for name, value in factors.items())
        score = min(1.0, max(0.0, score))

        level = self._score_to_level(score)
        analysis = ComplexityAnalysis(
            level=level,
            score=score,
            factors=factors,
            recommended_model=self._recommended_model(level, task),
            reasoning=self._reasoning(factors, level, task),
        )
        logger.debug(
            "Complexity classified",
            extra=log_fields(task_type=task, level=level.value, score=round(score, 4), factors=factors),
        )
        return analysis

    def quick_classify(
        self, content: str | None, task_type: TaskType | str | None = TaskType.DOCUMENT
    ) -> ComplexityLevel:
        length = len(content or "")
        base = TASK_BASE_COMPLEXITY.get(task_key(task_type), UNKNOWN_TASK_COMPLEXITY)

        if length < 5000:
            length_score = 0.2
        elif length < 20000:
            length_score = 0.4
        elif length < 50000:
            length_score = 0.6
        elif length < 100000:
            length_score = 0.8
        else:
            length_score = 1.0

        return self._score_to_level((base + length_score) / 2)

    # ---------- factors ----------

    def _content_length(self, text: str) -> float:
        length = len(text)
        buckets = (
            (2000, 0.1),
            (5000, 0.2),
            (10000, 0.3),
            (20000, 0.4),
            (35000, 0.5),
            (50000, 0.6),
            (75000, 0.7),
            (100000, 0.8),
            (150000, 0.9),
        )
        for limit, score in buckets:
            if length < limit:
                return score
        return 1.0

    def _structural_complexity(self, text: str) -> float:
        elements = (
            len(_HEADING.findall(text))
            + len(_BULLET.findall(text))
            + len(_NUMBERED.findall(text))
            + len(_TABLE_ROW.findall(text))
        )
        density = elements / max(1.0, len(text) / 1000)

        score = self._bucket(density, ((3.0, 0.9), (2.0, 0.7), (1.0, 0.5), (0.5, 0.3)))
        if len(_DEEP_HEADING.findall(text)) > 5:
            score += 0.1
        return min(1.0, score)

    def _entity_density(self, text: str) -> float:
        unique_entities = set(_CAPITALIZED_SEQUENCE.findall(text)) | set(_ACRONYM.findall(text))
        return self._bucket(
            len(unique_entities), ((200, 1.0), (100, 0.8), (50, 0.6), (25, 0.4), (10, 0.2))
        )

    def _temporal_complexity(self, text: str) -> float:
        explicit_dates = len(_EXPLICIT_DATE.findall(text))
        total_refs = (
            explicit_dates
            + len(_MONTH_YEAR.findall(text))
            + len(_QUARTER.findall(text))
            + len(_TEMPORAL_KEYWORD.findall(text))
            + len(_SEQUENCE_WORD.findall(text))
        )

        score = self._bucket(total_refs, ((100, 1.0), (50, 0.8), (30, 0.6), (15, 0.4), (5, 0.2)))
        # explicit dates make a timeline easier to reconstruct
        if explicit_dates > 10:
            score = max(0.3, score - 0.1)
        return score

    def _technical_density(self, text: str) -> float:
        code_blocks = len(_CODE_BLOCK.findall(text))
        total = (
            code_blocks * 3
            + len(_INLINE_CODE.findall(text))
            + len(_MATH.findall(text))
            + len(_URL.findall(text))
            + len(_TECH_TERM.findall(text))
        )
        density = total / max(1.0, len(text) / 1000)

        score = self._bucket(density, ((4.0, 0.9), (2.0, 0.7), (1.0, 0.5), (0.5, 0.3)))
        if code_blocks > 5:
            score = min(1.0, score + 0.2)
        return min(1.0, score)

    def _task_complexity(self, task: str, file_count: int, user_prompt: str) -> float:
        complexity = TASK_BASE_COMPLEXITY.get(task, UNKNOWN_TASK_COMPLEXITY)

        if file_count > 1:
            complexity += min(0.3, (file_count - 1) * 0.05)

        if user_prompt:
            if len(user_prompt) > 100:
                complexity += 0.1
            if len(user_prompt) > 300:
                complexity += 0.1
            if _DETAIL_KEYWORDS.search(user_prompt):
                complexity += 0.1

        return min(1.0, complexity)

    # ---------- helpers ----------

    def _bucket(self, value: float, steps: tuple[tuple[float, float], ...]) -> float:
        """Return the score of the first step whose lower bound ``value`` exceeds."""
        for lower, score in steps:
            if value > lower:
                return score
        return 0.0

    def _score_to_level(self, score: float) -> ComplexityLevel:
        thresholds = self._config.thresholds
        if score < thresholds.simple:
            return ComplexityLevel.SIMPLE
        if score < thresholds.medium:
            return ComplexityLevel.MEDIUM
        if score < thresholds.complex:
            return ComplexityLevel.COMPLEX
        return ComplexityLevel.VERY_COMPLEX

    def _recommended_model(self, level: ComplexityLevel, task: str) -> str:
        models = self._tier_models
        if task == TaskType.QA.value:
            if level == ComplexityLevel.VERY_COMPLEX:
                return models[ModelTier.STANDARD]
            return models[ModelTier.FAST]

        if level == ComplexityLevel.SIMPLE:
            return models[ModelTier.FAST]
        if level == ComplexityLevel.VERY_COMPLEX:
            return models[ModelTier.ADVANCED]
        return models[ModelTier.STANDARD]

    def _reasoning(self, factors: dict[str, float], level: ComplexityLevel, task: str) -> str:
        dominant = sorted(factors.items(), key=lambda item: item[1], reverse=True)[:3]
        reasons = [
            f"High {FACTOR_LABELS.get(name, name)} ({value * 100:.0f}%)"
            for name, value in dominant
            if value > 0.5
        ]
        if not reasons:
            reasons.append("Standard complexity across all factors")
        return f"Classification: {level.value} for {task}. {', '.join(reasons)}."
