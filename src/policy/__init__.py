# ABOUTME: Escalation policy package: Thompson Sampling bandits, rewards, and profiles.
# ABOUTME: Re-exports the manager and registry entry points used by callers.

from .bandit import NoArmsError, ThompsonBandit, sample_beta, sample_gamma
from .learner_bandits import BanditArmId, LearnerBanditManager
from .profiles import (
    AssignmentContext,
    AssignmentStrategy,
    EscalationProfile,
    ProfileId,
    assign_profile,
    get_profile_by_id,
    get_profile_thresholds,
)
from .reward import RewardComponents, RewardWeights, calculate_reward

__all__ = [
    "AssignmentContext",
    "AssignmentStrategy",
    "BanditArmId",
    "EscalationProfile",
    "LearnerBanditManager",
    "NoArmsError",
    "ProfileId",
    "RewardComponents",
    "RewardWeights",
    "ThompsonBandit",
    "assign_profile",
    "calculate_reward",
    "get_profile_by_id",
    "get_profile_thresholds",
    "sample_beta",
    "sample_gamma",
]
