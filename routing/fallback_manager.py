import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from routing.error_classifier import classify_error, error_message
from routing.router import ModelRouter
from routing.routing_types import (
    TIER_ORDER,
    AttemptError,
    AttemptState,
    ErrorType,
    FallbackAction,
    FallbackDecision,
    ModelTier,
    tier_rank,
)
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

BOTTOM_TIER_RETRY_ATTEMPTS = 2


def _sentence(text: str) -> str:
    return text[:1].upper() + text[1:]


@dataclass(frozen=True)
class ErrorPolicy:
    action: FallbackAction
    max_attempts: int
    exponential_backoff: bool = False
    wait_for_reset: bool = False
    notify: bool = False


def _default_error_policies() -> dict[ErrorType, ErrorPolicy]:
    return {
        ErrorType.TRANSIENT: ErrorPolicy(FallbackAction.RETRY, 3, exponential_backoff=True),
        ErrorType.RATE_LIMIT: ErrorPolicy(FallbackAction.DOWNGRADE, 2, wait_for_reset=True),
        ErrorType.QUOTA_EXCEEDED: ErrorPolicy(FallbackAction.DOWNGRADE, 1, notify=True),
        ErrorType.CAPABILITY: ErrorPolicy(FallbackAction.ESCALATE, 2, notify=False),
        ErrorType.INVALID_RESPONSE: ErrorPolicy(FallbackAction.RETRY, 2),
        ErrorType.TIMEOUT: ErrorPolicy(FallbackAction.RETRY, 2, exponential_backoff=True),
        ErrorType.UNKNOWN: ErrorPolicy(FallbackAction.RETRY, 2, exponential_backoff=True),
    }


@dataclass(frozen=True)
class FallbackDelays:
    base_retry_ms: int = 1000
    max_retry_ms: int = 16000
    rate_limit_ms: int = 60000
    escalation_ms: int = 500


@dataclass(frozen=True)
class FallbackConfig:
    max_retries: int = 3
    max_escalations: int = 2
    max_downgrades: int = 2
    delays: FallbackDelays = field(default_factory=FallbackDelays)
    error_policies: dict[ErrorType, ErrorPolicy] = field(default_factory=_default_error_policies)

    def policy_for(self, error_type: ErrorType) -> ErrorPolicy:
        return self.error_policies.get(error_type) or _default_error_policies()[error_type]


class FallbackManager:
    """
    Budgeted fallback decisions per request id.

    Each request id owns an AttemptState counting retries, escalations and
    downgrades. ``get_fallback`` never raises and never sleeps: it returns the
    next action and the delay the caller should wait before acting on it.
    Callers must call ``record_success`` once a request completes, otherwise
    the state lives until ``cleanup_old_attempts`` sweeps it.
    """

    def __init__(
        self,
        router: ModelRouter,
        config: FallbackConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._router = router
        self._config = config or FallbackConfig()
        self._clock = clock
        self._attempts: dict[str, AttemptState] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> FallbackConfig:
        return self._config

    def get_fallback(
        self,
        request_id: str,
        error: Any,
        current_model_id: str,
        context: dict[str, Any] | None = None,
    ) -> FallbackDecision:
        error_type = classify_error(error)
        message = error_message(error)

        with self._lock:
            state = self._attempts.get(request_id)
            if state is None:
                state = AttemptState()
                self._attempts[request_id] = state

            state.errors.append(
                AttemptError(
                    error_type=error_type,
                    model_id=current_model_id,
                    timestamp=self._clock(),
                    message=message,
                )
            )
            state.models_attempted.append(current_model_id)

            decision = self._decide(state, error_type, current_model_id)

        log = logger.warning if decision.action == FallbackAction.ABORT else logger.info
        log(
            "Fallback decision",
            extra=log_fields(
                request_id=request_id,
                error_type=error_type.value,
                action=decision.action.value,
                from_model=current_model_id,
                to_model=decision.model_id,
                delay_ms=decision.delay_ms,
                retries=state.retries,
                escalations=state.escalations,
                downgrades=state.downgrades,
                context=context or {},
            ),
        )
        return decision

    def record_success(self, request_id: str) -> None:
        with self._lock:
            self._attempts.pop(request_id, None)

    def get_attempt_state(self, request_id: str) -> AttemptState | None:
        with self._lock:
            return self._attempts.get(request_id)

    def active_request_count(self) -> int:
        with self._lock:
            return len(self._attempts)

    def cleanup_old_attempts(self, max_age_seconds: float = 300.0) -> int:
        now = self._clock()
        with self._lock:
            stale = [
                request_id
                for request_id, state in self._attempts.items()
                if state.last_error_at is not None and now - state.last_error_at > max_age_seconds
            ]
            for request_id in stale:
                del self._attempts[request_id]

        if stale:
            logger.info(
                "Swept stale fallback states",
                extra=log_fields(removed=len(stale), max_age_seconds=max_age_seconds),
            )
        return len(stale)

    # ---------- decision logic ----------

    def _decide(self, state: AttemptState, error_type: ErrorType, model_id: str) -> FallbackDecision:
        if self._is_exhausted(state):
            return self._abort(
                error_type,
                f"Exhausted all fallback options after {state.retries} retries, "
                f"{state.escalations} escalations, {state.downgrades} downgrades",
            )

        policy = self._config.policy_for(error_type)
        tier = self._tier_of(model_id)

        if policy.action == FallbackAction.ESCALATE:
            return self._escalate(state, policy, error_type, tier)
        if policy.action == FallbackAction.DOWNGRADE:
            return self._downgrade(state, policy, error_type, tier, model_id)
        return self._retry(state, policy, error_type, tier, model_id, policy.max_attempts)

    def _retry(
        self,
        state: AttemptState,
        policy: ErrorPolicy,
        error_type: ErrorType,
        tier: ModelTier,
        model_id: str,
        max_attempts: int,
    ) -> FallbackDecision:
        if state.retries >= max_attempts:
            return self._escalate(
                state,
                policy,
                error_type,
                tier,
                reason=f"Retries exhausted ({state.retries}/{max_attempts})",
            )

        state.retries += 1

        delays = self._config.delays
        delay_ms = delays.base_retry_ms
        if policy.exponential_backoff:
            delay_ms = min(delays.base_retry_ms * 2 ** (state.retries - 1), delays.max_retry_ms)

        return FallbackDecision(
            action=FallbackAction.RETRY,
            model_id=model_id,
            delay_ms=delay_ms,
            reasoning=f"Retry attempt {state.retries}/{max_attempts} with {delay_ms}ms delay",
            should_notify=False,
            error_type=error_type,
        )

    def _escalate(
        self,
        state: AttemptState,
        policy: ErrorPolicy,
        error_type: ErrorType,
        tier: ModelTier,
        reason: str | None = None,
    ) -> FallbackDecision:
        limit = self._config.max_escalations
        if policy.action == FallbackAction.ESCALATE:
            limit = min(limit, policy.max_attempts)
        prefix = f"{reason}; " if reason else ""

        if state.escalations >= limit:
            return self._abort(
                error_type, f"{prefix}maximum escalations reached ({state.escalations}/{limit})"
            )

        tiers = self._router.enabled_tiers()
        next_index = tiers.index(tier) + 1 if tier in tiers else len(tiers)
        if next_index >= len(tiers):
            return self._abort(error_type, f"{prefix}already at highest tier, cannot escalate further")

        state.escalations += 1
        next_tier = tiers[next_index]

        return FallbackDecision(
            action=FallbackAction.ESCALATE,
            model_id=self._router.default_model_for(next_tier),
            delay_ms=self._config.delays.escalation_ms,
            reasoning=_sentence(
                f"{prefix}escalating from {tier.value} to {next_tier.value} "
                f"(escalation {state.escalations}/{limit})"
            ),
            should_notify=policy.notify and policy.action == FallbackAction.ESCALATE,
            error_type=error_type,
        )

    def _downgrade(
        self,
        state: AttemptState,
        policy: ErrorPolicy,
        error_type: ErrorType,
        tier: ModelTier,
        model_id: str,
    ) -> FallbackDecision:
        limit = min(self._config.max_downgrades, policy.max_attempts)
        if state.downgrades >= limit:
            return self._abort(
                error_type, f"Maximum downgrades reached ({state.downgrades}/{limit})"
            )

        if tier_rank(tier) == 0:
            # nothing cheaper to fall back to; retry the same model instead
            return self._retry(
                state, policy, error_type, tier, model_id, BOTTOM_TIER_RETRY_ATTEMPTS
            )

        state.downgrades += 1
        prev_tier = TIER_ORDER[tier_rank(tier) - 1]

        delay_ms = self._config.delays.base_retry_ms
        if error_type == ErrorType.RATE_LIMIT and policy.wait_for_reset and state.downgrades == 1:
            delay_ms = self._config.delays.rate_limit_ms

        return FallbackDecision(
            action=FallbackAction.DOWNGRADE,
            model_id=self._router.default_model_for(prev_tier),
            delay_ms=delay_ms,
            reasoning=(
                f"Downgrading from {tier.value} to {prev_tier.value} due to {error_type.value} "
                f"(downgrade {state.downgrades}/{limit})"
            ),
            should_notify=policy.notify,
            error_type=error_type,
        )

    def _abort(self, error_type: ErrorType, reasoning: str) -> FallbackDecision:
        return FallbackDecision(
            action=FallbackAction.ABORT,
            model_id=None,
            delay_ms=0,
            reasoning=_sentence(reasoning),
            should_notify=True,
            error_type=error_type,
        )

    def _is_exhausted(self, state: AttemptState) -> bool:
        return (
            state.retries >= self._config.max_retries * 2
            and state.escalations >= self._config.max_escalations
            and state.downgrades >= self._config.max_downgrades
        )

    def _tier_of(self, model_id: str) -> ModelTier:
        model = self._router.catalog.find(model_id)
        if model is None:
            logger.error(
                "Unknown model in fallback request; assuming standard tier",
                extra=log_fields(model_id=model_id),
            )
            return ModelTier.STANDARD
        return model.tier
