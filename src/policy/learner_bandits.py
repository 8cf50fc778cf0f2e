# ABOUTME: Manages one Thompson Sampling bandit per learner for escalation profile selection.
# ABOUTME: Maps bandit arms to canonical profiles and turns learning outcomes into rewards.

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from src.common.schemas import EventType, LearningOutcome
from src.policy.bandit import ThompsonBandit
from src.policy.profiles import EscalationProfile, ProfileId, get_profile_by_id
from src.policy.reward import (
    DEFAULT_REWARD_WEIGHTS,
    RewardWeights,
    calculate_reward,
    reward_components_from_outcome,
)

logger = logging.getLogger(__name__)

LEARNER_BANDIT_MANAGER_VERSION = "learner-bandit-v1"


class BanditArmId(str, Enum):
    AGGRESSIVE = "aggressive"
    CONSERVATIVE = "conservative"
    EXPLANATION_FIRST = "explanation-first"
    ADAPTIVE = "adaptive"


BANDIT_ARM_PROFILES: Dict[BanditArmId, ProfileId] = {
    BanditArmId.AGGRESSIVE: ProfileId.FAST,
    BanditArmId.CONSERVATIVE: ProfileId.SLOW,
    BanditArmId.EXPLANATION_FIRST: ProfileId.EXPLANATION_FIRST,
    BanditArmId.ADAPTIVE: ProfileId.ADAPTIVE,
}

ARM_IDS: List[str] = [arm.value for arm in BanditArmId]


def profile_for_arm(arm_id: Union[str, BanditArmId]) -> EscalationProfile:
    return get_profile_by_id(BANDIT_ARM_PROFILES[BanditArmId(arm_id)])


@dataclass(frozen=True)
class ArmStatistics:
    arm_id: BanditArmId
    profile_name: str
    mean_reward: float
    pull_count: int


class LearnerBanditManager:
    """
    Owns a mapping of learner id to ThompsonBandit.

    Construct once and inject where needed. Each learner's bandit is guarded by
    its own lock, so calls for one learner serialize while different learners
    proceed in parallel.
    """

    def __init__(
        self,
        weights: RewardWeights = DEFAULT_REWARD_WEIGHTS,
        rng_factory: Optional[Callable[[str], np.random.Generator]] = None,
    ):
        self.weights = weights
        self._rng_factory = rng_factory
        self._bandits: Dict[str, ThompsonBandit] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _new_bandit(self, learner_id: str) -> ThompsonBandit:
        rng = self._rng_factory(learner_id) if self._rng_factory else None
        return ThompsonBandit(ARM_IDS, rng=rng)

    @contextmanager
    def _learner(self, learner_id: str) -> Iterator[ThompsonBandit]:
        with self._registry_lock:
            lock = self._locks.setdefault(learner_id, threading.Lock())
        with lock:
            with self._registry_lock:
                bandit = self._bandits.get(learner_id)
                if bandit is None:
                    bandit = self._new_bandit(learner_id)
                    self._bandits[learner_id] = bandit
            yield bandit

    def get_bandit_for_learner(self, learner_id: str) -> ThompsonBandit:
        """Get or lazily create the learner's bandit with all four profile arms."""
        with self._learner(learner_id) as bandit:
            return bandit

    def select_profile_for_learner(self, learner_id: str) -> Tuple[EscalationProfile, BanditArmId]:
        with self._learner(learner_id) as bandit:
            arm_id = BanditArmId(bandit.select_arm())
        return profile_for_arm(arm_id), arm_id

    def record_outcome(
        self,
        learner_id: str,
        arm_id: Union[str, BanditArmId],
        outcome: LearningOutcome,
    ) -> float:
        """Convert a learning outcome to a reward and update the learner's arm."""
        components = reward_components_from_outcome(outcome)
        reward = calculate_reward(components, self.weights)
        arm_key = arm_id.value if isinstance(arm_id, BanditArmId) else str(arm_id)
        with self._learner(learner_id) as bandit:
            bandit.update_arm(arm_key, reward)
        logger.debug("Learner %s arm %s reward %.3f", learner_id, arm_key, reward)
        return reward

    def get_learner_stats(self, learner_id: str) -> List[ArmStatistics]:
        stats: List[ArmStatistics] = []
        with self._learner(learner_id) as bandit:
            for arm in BanditArmId:
                arm_stats = bandit.get_arm_stats(arm.value)
                stats.append(
                    ArmStatistics(
                        arm_id=arm,
                        profile_name=profile_for_arm(arm).name,
                        mean_reward=arm_stats.mean_reward if arm_stats else 0.0,
                        pull_count=arm_stats.pull_count if arm_stats else 0,
                    )
                )
        return stats

    def reset_learner(self, learner_id: str) -> None:
        """Drop the learner's bandit; the next access creates a fresh one."""
        with self._registry_lock:
            self._bandits.pop(learner_id, None)
            self._locks.pop(learner_id, None)

    def get_learner_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._bandits.keys())

    def has_bandit(self, learner_id: str) -> bool:
        with self._registry_lock:
            return learner_id in self._bandits

    def get_learner_count(self) -> int:
        with self._registry_lock:
            return len(self._bandits)

    def clear_all(self) -> None:
        with self._registry_lock:
            self._bandits.clear()
            self._locks.clear()

    def snapshot(self) -> Dict[str, Dict]:
        """Serialized state of every learner's bandit, keyed by learner id."""
        with self._registry_lock:
            learners = list(self._bandits.items())
        return {learner_id: bandit.serialize() for learner_id, bandit in learners}

    def restore(self, snapshot: Dict[str, Dict]) -> None:
        """Load a snapshot; raises ValueError and loads nothing if any arm id is unknown."""
        for learner_id, state in snapshot.items():
            unknown = sorted({str(arm["id"]) for arm in state.get("arms", [])} - set(ARM_IDS))
            if unknown:
                raise ValueError(f"Snapshot for learner {learner_id} has unknown arms: {', '.join(unknown)}")

        for learner_id, state in snapshot.items():
            bandit = self._new_bandit(learner_id)
            bandit.deserialize(state)
            with self._registry_lock:
                self._bandits[learner_id] = bandit


def build_bandit_event(
    learner_id: str,
    arm_id: Union[str, BanditArmId],
    reward: float,
    timestamp: int,
    problem_id: str = "",
) -> Dict:
    """Analytics event for the external log after a bandit update."""
    arm_key = arm_id.value if isinstance(arm_id, BanditArmId) else str(arm_id)
    return {
        "event_type": EventType.BANDIT_UPDATED.value,
        "learner_id": learner_id,
        "problem_id": problem_id,
        "timestamp": timestamp,
        "arm_id": arm_key,
        "profile_id": BANDIT_ARM_PROFILES[BanditArmId(arm_key)].value,
        "reward": reward,
        "policy_version": LEARNER_BANDIT_MANAGER_VERSION,
    }
