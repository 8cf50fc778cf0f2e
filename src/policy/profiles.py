# ABOUTME: Defines canonical escalation profiles and learner-to-profile assignment strategies.
# ABOUTME: Supports static (hash), diagnostic (score), and bandit assignment.

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Sequence, Union

from src.common.schemas import InteractionEvent

logger = logging.getLogger(__name__)

ESCALATION_PROFILES_VERSION = "escalation-profiles-v1"


class ProfileId(str, Enum):
    FAST = "fast-escalator"
    SLOW = "slow-escalator"
    ADAPTIVE = "adaptive-escalator"
    EXPLANATION_FIRST = "explanation-first"


class AssignmentStrategy(str, Enum):
    STATIC = "static"
    DIAGNOSTIC = "diagnostic"
    BANDIT = "bandit"


@dataclass(frozen=True)
class ProfileThresholds:
    escalate: int  # errors before explanation
    aggregate: int  # errors before textbook


@dataclass(frozen=True)
class ProfileTriggers:
    time_stuck: int  # ms before escalation
    rung_exhausted: int  # hints at a rung before escalation
    repeated_error: int  # repeats of the same error subtype before escalation


@dataclass(frozen=True)
class EscalationProfile:
    id: ProfileId
    name: str
    description: str
    thresholds: ProfileThresholds
    triggers: ProfileTriggers


FAST_ESCALATOR = EscalationProfile(
    id=ProfileId.FAST,
    name="Fast Escalator",
    description="Quick intervention for learners who benefit from early explanations",
    thresholds=ProfileThresholds(escalate=2, aggregate=4),
    triggers=ProfileTriggers(time_stuck=120_000, rung_exhausted=2, repeated_error=1),
)

SLOW_ESCALATOR = EscalationProfile(
    id=ProfileId.SLOW,
    name="Slow Escalator",
    description="Extended exploration for persistent, self-directed learners",
    thresholds=ProfileThresholds(escalate=5, aggregate=8),
    triggers=ProfileTriggers(time_stuck=480_000, rung_exhausted=4, repeated_error=3),
)

ADAPTIVE_ESCALATOR = EscalationProfile(
    id=ProfileId.ADAPTIVE,
    name="Adaptive Escalator",
    description="Balanced escalation that adapts to learner patterns",
    thresholds=ProfileThresholds(escalate=3, aggregate=6),
    triggers=ProfileTriggers(time_stuck=300_000, rung_exhausted=3, repeated_error=2),
)

EXPLANATION_FIRST = EscalationProfile(
    id=ProfileId.EXPLANATION_FIRST,
    name="Explanation First",
    description="Prioritizes explanations over progressive hints",
    thresholds=ProfileThresholds(escalate=1, aggregate=3),
    triggers=ProfileTriggers(time_stuck=60_000, rung_exhausted=1, repeated_error=1),
)

ESCALATION_PROFILES: Dict[ProfileId, EscalationProfile] = {
    profile.id: profile
    for profile in (FAST_ESCALATOR, SLOW_ESCALATOR, ADAPTIVE_ESCALATOR, EXPLANATION_FIRST)
}

_PROFILE_ALIASES = {
    "fast": ProfileId.FAST,
    "slow": ProfileId.SLOW,
    "adaptive": ProfileId.ADAPTIVE,
}


@dataclass
class DiagnosticResults:
    persistence_score: float = 0.5  # 0-1, higher = more persistent
    recovery_rate: float = 0.5  # 0-1, higher = recovers faster


@dataclass
class AssignmentContext:
    learner_id: str
    interactions: Sequence[InteractionEvent] = field(default_factory=list)
    timestamp: Optional[int] = None
    diagnostic_results: Optional[DiagnosticResults] = None


def hash_learner_id(learner_id: str) -> float:
    """
    Hash a learner id to [0, 1] with a 32-bit signed rolling hash.

    Matches hash = (hash << 5) - hash + char, wrapped to a signed 32-bit
    integer after each character, normalized as |hash| / 2147483647.
    """
    if not learner_id:
        return 0.0
    value = 0
    for char in learner_id:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
        if value >= 0x80000000:
            value -= 0x100000000
    return abs(value) / 2147483647


def _resolve_profile_id(profile_id: Union[str, ProfileId, None]) -> Optional[ProfileId]:
    if profile_id is None:
        return None
    if isinstance(profile_id, ProfileId):
        return profile_id
    if profile_id in _PROFILE_ALIASES:
        return _PROFILE_ALIASES[profile_id]
    try:
        return ProfileId(profile_id)
    except ValueError:
        return None


def _copy(profile: EscalationProfile) -> EscalationProfile:
    return replace(
        profile,
        thresholds=replace(profile.thresholds),
        triggers=replace(profile.triggers),
    )


def assign_profile(
    context: AssignmentContext,
    strategy: Union[str, AssignmentStrategy],
) -> EscalationProfile:
    """
    Assign an escalation profile to a learner.

    - static: deterministic bucket from the learner id hash (never explanation-first)
    - diagnostic: mean of persistence and recovery scores, unclamped
    - bandit: adaptive base profile; per-learner selection lives in LearnerBanditManager
    - anything else: adaptive
    """
    try:
        strategy = AssignmentStrategy(strategy)
    except ValueError:
        logger.warning("Unknown assignment strategy %r, defaulting to adaptive", strategy)
        return _copy(ADAPTIVE_ESCALATOR)

    if strategy is AssignmentStrategy.STATIC:
        bucket = hash_learner_id(context.learner_id)
        if bucket < 0.33:
            return _copy(FAST_ESCALATOR)
        if bucket < 0.67:
            return _copy(ADAPTIVE_ESCALATOR)
        return _copy(SLOW_ESCALATOR)

    if strategy is AssignmentStrategy.DIAGNOSTIC:
        results = context.diagnostic_results or DiagnosticResults()
        score = (results.persistence_score + results.recovery_rate) / 2
        if score > 0.7:
            return _copy(SLOW_ESCALATOR)
        if score < 0.3:
            return _copy(FAST_ESCALATOR)
        return _copy(ADAPTIVE_ESCALATOR)

    return _copy(ADAPTIVE_ESCALATOR)


def get_profile_by_id(profile_id: Union[str, ProfileId, None]) -> Optional[EscalationProfile]:
    resolved = _resolve_profile_id(profile_id)
    if resolved is None:
        return None
    return _copy(ESCALATION_PROFILES[resolved])


def get_profile_thresholds(profile_id: Union[str, ProfileId]) -> Optional[Dict[str, int]]:
    """Escalate/aggregate thresholds as a fresh dict, or None for unknown ids."""
    profile = get_profile_by_id(profile_id)
    if profile is None:
        return None
    return {"escalate": profile.thresholds.escalate, "aggregate": profile.thresholds.aggregate}


def get_profile_escalation_threshold(profile_id: Union[str, ProfileId, None]) -> int:
    profile = get_profile_by_id(profile_id)
    return profile.thresholds.escalate if profile else ADAPTIVE_ESCALATOR.thresholds.escalate


def get_profile_for_learner(
    learner_id: str,
    interactions: Sequence[InteractionEvent] = (),
    strategy: Union[str, AssignmentStrategy] = AssignmentStrategy.STATIC,
    timestamp: Optional[int] = None,
) -> EscalationProfile:
    context = AssignmentContext(
        learner_id=learner_id,
        interactions=list(interactions),
        timestamp=timestamp,
    )
    return assign_profile(context, strategy)
