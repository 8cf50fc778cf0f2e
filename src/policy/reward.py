# ABOUTME: Calculates scalar bandit rewards from per-problem learning outcomes.
# ABOUTME: Combines success, error reduction, retention, dependency, and time components.

from __future__ import annotations

from dataclasses import dataclass

from src.common.schemas import LearningOutcome

REWARD_CALCULATOR_VERSION = "reward-calc-v1"


@dataclass(frozen=True)
class RewardComponents:
    independent_success: float  # -1 unsolved, 0.5 solved with explanation, 1 solved alone
    error_reduction: float  # 0-1 improvement over baseline
    delayed_retention: float  # always 0 until a delayed quiz signal exists
    dependency_penalty: float  # -HDI, range [-1, 0]
    time_efficiency: float  # 0-1, peaks at the median time


@dataclass(frozen=True)
class RewardWeights:
    independent_success: float = 0.35
    error_reduction: float = 0.25
    delayed_retention: float = 0.20
    dependency: float = -0.15
    time_efficiency: float = 0.05


DEFAULT_REWARD_WEIGHTS = RewardWeights()


def calculate_independent_success(used_explanation: bool, solved: bool) -> float:
    if not solved:
        return -1.0
    return 0.5 if used_explanation else 1.0


def calculate_error_reduction(error_count: float, baseline_errors: float) -> float:
    if baseline_errors <= 0:
        return 1.0 if error_count == 0 else 0.0
    return max(0.0, baseline_errors - error_count) / baseline_errors


def calculate_time_efficiency(time_spent_ms: float, median_time_ms: float) -> float:
    """Score time spent relative to the median; very fast attempts suggest guessing."""
    if median_time_ms <= 0:
        return 0.5
    ratio = time_spent_ms / median_time_ms
    if ratio < 0.5:
        return 0.5 + ratio
    if ratio <= 2.0:
        return 1 - abs(ratio - 1) * 0.5
    return max(0.0, 1 - (ratio - 2) * 0.3)


def reward_components_from_outcome(outcome: LearningOutcome) -> RewardComponents:
    return RewardComponents(
        independent_success=calculate_independent_success(outcome.used_explanation, outcome.solved),
        error_reduction=calculate_error_reduction(outcome.error_count, outcome.baseline_errors),
        delayed_retention=0.0,  # not observable when the outcome is recorded
        dependency_penalty=-outcome.hdi_score,
        time_efficiency=calculate_time_efficiency(outcome.time_spent_ms, outcome.median_time_ms),
    )


def calculate_reward(
    components: RewardComponents,
    weights: RewardWeights = DEFAULT_REWARD_WEIGHTS,
) -> float:
    """
    Weighted sum of reward components, normalized from [-1, 1] to [0, 1].

    The dependency weight is negative and applied to the HDI magnitude, so a
    higher HDI always lowers the reward.
    """
    raw = (
        weights.independent_success * components.independent_success
        + weights.error_reduction * components.error_reduction
        + weights.delayed_retention * components.delayed_retention
        + weights.dependency * (-components.dependency_penalty)
        + weights.time_efficiency * components.time_efficiency
    )
    return (raw + 1) / 2
