"""
Stuck recovery hints for blueprint flows.

Tells the UI what to offer a teacher who is stuck on a step.

Signals:
- consecutive empty answers
- answers that fail validation
- idle time since the last interaction

Recommendations, highest priority first:
- offer-restart: too many failed attempts in a row
- offer-skip / offer-help: answers keep failing validation
- offer-examples: the teacher keeps sending empty answers
- offer-help: long idle period
- none

Usage:
    from blueprint_flow.stuck_recovery import recommend, StuckSignals

    rec = recommend(StuckSignals(empty_input_attempts=2))
    if rec is RecoveryRecommendation.OFFER_EXAMPLES:
        # show example answers
        pass
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from blueprint_flow.settings import settings


class RecoveryRecommendation(str, Enum):
    """What to offer a stuck user"""
    NONE = "none"
    OFFER_EXAMPLES = "offer-examples"
    OFFER_HELP = "offer-help"
    OFFER_SKIP = "offer-skip"
    OFFER_RESTART = "offer-restart"


@dataclass
class StuckRecoveryConfig:
    """Thresholds that trigger each recommendation"""
    empty_input_threshold: int = 2         # consecutive empty answers
    invalid_input_threshold: int = 3       # consecutive invalid answers
    idle_threshold_ms: int = 120000        # 2 minutes idle
    restart_threshold: int = 6             # failed attempts of either kind before offer-restart

    @classmethod
    def default(cls) -> "StuckRecoveryConfig":
        """Default thresholds"""
        return cls()

    @classmethod
    def new_user(cls) -> "StuckRecoveryConfig":
        """New user: help arrives sooner"""
        return cls(
            empty_input_threshold=2,
            invalid_input_threshold=2,
            idle_threshold_ms=60000,
            restart_threshold=5,
        )

    @classmethod
    def expert(cls) -> "StuckRecoveryConfig":
        """Expert: fewer interruptions"""
        return cls(
            empty_input_threshold=3,
            invalid_input_threshold=5,
            idle_threshold_ms=180000,
            restart_threshold=8,
        )

    @classmethod
    def from_settings(cls, profile: Optional[str] = None) -> "StuckRecoveryConfig":
        """Thresholds of a profile from settings.yaml; unknown profiles get the defaults"""
        profile = profile or settings.get_nested("stuck_recovery.profile", "default")
        values = settings.get_nested(f"stuck_recovery.profiles.{profile}")
        if not isinstance(values, dict):
            return cls.default()
        known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class StuckSignals:
    """Observed stuck signals for the current step"""
    empty_input_attempts: int = 0
    invalid_input_attempts: int = 0
    idle_ms: int = 0
    step_skippable: bool = False

    @property
    def failed_attempts(self) -> int:
        return self.empty_input_attempts + self.invalid_input_attempts


def recommend(
    signals: StuckSignals,
    config: Optional[StuckRecoveryConfig] = None,
) -> RecoveryRecommendation:
    """
    Pick a recommendation for the given signals.

    Pure: the same signals always give the same answer.
    """
    config = config or StuckRecoveryConfig.default()

    if signals.failed_attempts >= config.restart_threshold:
        return RecoveryRecommendation.OFFER_RESTART

    if signals.invalid_input_attempts >= config.invalid_input_threshold:
        if signals.step_skippable:
            return RecoveryRecommendation.OFFER_SKIP
        return RecoveryRecommendation.OFFER_HELP

    if signals.empty_input_attempts >= config.empty_input_threshold:
        return RecoveryRecommendation.OFFER_EXAMPLES

    if signals.idle_ms > config.idle_threshold_ms:
        return RecoveryRecommendation.OFFER_HELP

    return RecoveryRecommendation.NONE


@dataclass
class StuckTracker:
    """
    Stuck counters of one session.

    Reset by any accepted input or applied transition.
    """
    empty_input_attempts: int = 0
    invalid_input_attempts: int = 0
    last_interaction_at: Optional[float] = None

    def touch(self, now: float) -> None:
        """Record the time of an interaction"""
        self.last_interaction_at = now

    def record_empty(self) -> None:
        self.empty_input_attempts += 1

    def record_invalid(self) -> None:
        self.invalid_input_attempts += 1

    def record_progress(self) -> None:
        self.empty_input_attempts = 0
        self.invalid_input_attempts = 0

    def idle_ms(self, now: float) -> int:
        if self.last_interaction_at is None:
            return 0
        return max(0, int((now - self.last_interaction_at) * 1000))

    def signals(self, now: float, step_skippable: bool) -> StuckSignals:
        return StuckSignals(
            empty_input_attempts=self.empty_input_attempts,
            invalid_input_attempts=self.invalid_input_attempts,
            idle_ms=self.idle_ms(now),
            step_skippable=step_skippable,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "empty_input_attempts": self.empty_input_attempts,
            "invalid_input_attempts": self.invalid_input_attempts,
            "last_interaction_at": self.last_interaction_at,
        }
