# ABOUTME: Implements a Thompson Sampling multi-armed bandit over named arms.
# ABOUTME: Models each arm's reward with a Beta posterior and samples it via Gamma draws.

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MULTI_ARMED_BANDIT_VERSION = "bandit-thompson-v1"


class NoArmsError(RuntimeError):
    """Raised when an arm is requested from a bandit with no arms configured."""


@dataclass
class BanditArm:
    """Arm state with Beta distribution parameters."""

    id: str
    alpha: float  # successes + prior
    beta: float  # failures + prior
    pull_count: int = 0
    cumulative_reward: float = 0.0

    @property
    def mean(self) -> float:
        total = self.alpha + self.beta
        return self.alpha / total if total > 0 else 0.5


@dataclass(frozen=True)
class ArmStats:
    mean_reward: float
    variance: float
    confidence_interval: Tuple[float, float]
    pull_count: int


def _standard_normal(rng: np.random.Generator) -> float:
    # Box-Muller; 1 - U keeps the log argument in (0, 1].
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    radius = math.sqrt(-2.0 * math.log(u1))
    if rng.random() < 0.5:
        return radius * math.cos(2.0 * math.pi * u2)
    return radius * math.sin(2.0 * math.pi * u2)


def sample_gamma(shape: float, scale: float = 1.0, rng: Optional[np.random.Generator] = None) -> float:
    """
    Sample from Gamma(shape, scale) using Marsaglia and Tsang's method.

    Bandit arms never drop below shape 1. Smaller shapes (only reachable from a
    hand-edited snapshot) use the boost Gamma(shape + 1) * U^(1 / shape).
    """
    rng = rng if rng is not None else np.random.default_rng()

    if shape < 1:
        boost = (1.0 - rng.random()) ** (1.0 / shape)
        return sample_gamma(shape + 1.0, scale, rng) * boost

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)

    while True:
        z = _standard_normal(rng)
        u = 1.0 - rng.random()
        v = (1.0 + c * z) ** 3
        if z > -1.0 / c and math.log(u) < 0.5 * z * z + d - d * v + d * math.log(v):
            return d * v * scale


def sample_beta(alpha: float, beta: float, rng: Optional[np.random.Generator] = None) -> float:
    """Sample from Beta(alpha, beta) as Gamma(alpha) / (Gamma(alpha) + Gamma(beta))."""
    rng = rng if rng is not None else np.random.default_rng()
    a = max(0.001, alpha)
    b = max(0.001, beta)

    gamma_a = sample_gamma(a, 1.0, rng)
    gamma_b = sample_gamma(b, 1.0, rng)
    total = gamma_a + gamma_b
    if total == 0:
        return 0.5
    return gamma_a / total


class ThompsonBandit:
    """
    Multi-Armed Bandit using Thompson Sampling.

    Algorithm:
    1. Keep a Beta(alpha, beta) posterior over each arm's expected reward
    2. Draw one sample per arm and pick the arm with the highest sample
    3. Observe a reward in [0, 1] and add it to alpha, its complement to beta

    Arms with wide posteriors win samples often (exploration); arms with high
    means win consistently (exploitation).
    """

    def __init__(self, arm_ids: Sequence[str], rng: Optional[np.random.Generator] = None):
        self.prior_alpha = 1.0  # uniform prior
        self.prior_beta = 1.0
        self.rng = rng if rng is not None else np.random.default_rng()
        self._arms: Dict[str, BanditArm] = {}
        for arm_id in arm_ids:
            self._arms[arm_id] = BanditArm(id=arm_id, alpha=self.prior_alpha, beta=self.prior_beta)

    @property
    def arm_ids(self) -> List[str]:
        return list(self._arms.keys())

    @property
    def arm_count(self) -> int:
        return len(self._arms)

    def get_arm(self, arm_id: str) -> Optional[BanditArm]:
        return self._arms.get(arm_id)

    def select_arm(self) -> str:
        """Select the arm with the highest Beta posterior sample."""
        if not self._arms:
            raise NoArmsError("No arms available in bandit")

        best_arm_id = ""
        best_sample = float("-inf")
        for arm_id, arm in self._arms.items():
            sample = sample_beta(arm.alpha, arm.beta, self.rng)
            if sample > best_sample:
                best_sample = sample
                best_arm_id = arm_id
        return best_arm_id

    def update_arm(self, arm_id: str, reward: float) -> None:
        """Update an arm with an observed reward; unknown arms are ignored."""
        arm = self._arms.get(arm_id)
        if arm is None:
            logger.debug("Ignoring update for unknown arm %s", arm_id)
            return

        normalized = max(0.0, min(1.0, float(reward)))
        arm.alpha += normalized
        arm.beta += 1.0 - normalized
        arm.pull_count += 1
        arm.cumulative_reward += normalized

    def get_arm_stats(self, arm_id: str) -> Optional[ArmStats]:
        arm = self._arms.get(arm_id)
        if arm is None:
            return None

        total = arm.alpha + arm.beta
        mean = arm.mean
        variance = (arm.alpha * arm.beta) / (total * total * (total + 1)) if total > 0 else 0.25
        margin = 1.96 * math.sqrt(variance)  # 95% CI, normal approximation
        interval = (max(0.0, mean - margin), min(1.0, mean + margin))
        return ArmStats(
            mean_reward=mean,
            variance=variance,
            confidence_interval=interval,
            pull_count=arm.pull_count,
        )

    def get_best_arm(self) -> Optional[str]:
        """Arm with the highest posterior mean (exploitative, no sampling)."""
        if not self._arms:
            return None

        best_arm_id = ""
        best_mean = float("-inf")
        for arm_id, arm in self._arms.items():
            if arm.mean > best_mean:
                best_mean = arm.mean
                best_arm_id = arm_id
        return best_arm_id

    def reset(self) -> None:
        for arm in self._arms.values():
            arm.alpha = self.prior_alpha
            arm.beta = self.prior_beta
            arm.pull_count = 0
            arm.cumulative_reward = 0.0

    def serialize(self) -> Dict:
        """Snapshot of all arm values for external persistence."""
        return {
            "arms": [asdict(arm) for arm in self._arms.values()],
            "prior_alpha": self.prior_alpha,
            "prior_beta": self.prior_beta,
        }

    def deserialize(self, state: Dict) -> None:
        """Replace all arms with the values from a serialize() snapshot."""
        self._arms.clear()
        self.prior_alpha = float(state.get("prior_alpha", 1.0))
        self.prior_beta = float(state.get("prior_beta", 1.0))
        for raw in state.get("arms", []):
            arm = BanditArm(
                id=str(raw["id"]),
                alpha=float(raw["alpha"]),
                beta=float(raw["beta"]),
                pull_count=int(raw.get("pull_count", 0)),
                cumulative_reward=float(raw.get("cumulative_reward", 0.0)),
            )
            self._arms[arm.id] = arm

    def save(self, path: Path) -> None:
        """Save bandit state to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.serialize(), f, indent=2)

    @classmethod
    def load(cls, path: Path, rng: Optional[np.random.Generator] = None) -> "ThompsonBandit":
        """Load bandit state from a JSON file written by save()."""
        with open(path) as f:
            state = json.load(f)
        bandit = cls([], rng=rng)
        bandit.deserialize(state)
        return bandit


def calculate_regret(optimal_reward: float, actual_reward: float) -> float:
    return max(0.0, optimal_reward - actual_reward)


def calculate_cumulative_regret(rewards: Sequence[float], optimal_reward: float) -> float:
    return sum(calculate_regret(optimal_reward, reward) for reward in rewards)
