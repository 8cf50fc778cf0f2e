# ABOUTME: Unit tests for the Thompson Sampling bandit and its Beta/Gamma samplers.
# ABOUTME: Verifies sampling bounds, learning toward rewarded arms, and persistence.

import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest

from src.policy.bandit import (
    NoArmsError,
    ThompsonBandit,
    calculate_cumulative_regret,
    calculate_regret,
    sample_beta,
    sample_gamma,
)


class TestSamplers(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(7)

    def test_sample_beta_bounded(self):
        """Beta samples must stay in [0, 1] for valid parameters."""
        for alpha in (1.0, 1.5, 3.0, 20.0, 250.0):
            for beta in (1.0, 2.0, 7.5, 100.0):
                for _ in range(50):
                    value = sample_beta(alpha, beta, self.rng)
                    self.assertGreaterEqual(value, 0.0)
                    self.assertLessEqual(value, 1.0)

    def test_sample_beta_mean_tracks_parameters(self):
        samples = [sample_beta(8.0, 2.0, self.rng) for _ in range(3000)]
        self.assertAlmostEqual(float(np.mean(samples)), 0.8, delta=0.03)

    def test_sample_beta_degenerate_parameters(self):
        """Non-positive parameters are floored instead of failing."""
        value = sample_beta(0.0, -1.0, self.rng)
        self.assertGreaterEqual(value, 0.0)
        self.assertLessEqual(value, 1.0)

    def test_sample_gamma_mean(self):
        samples = [sample_gamma(3.0, 1.0, self.rng) for _ in range(3000)]
        self.assertAlmostEqual(float(np.mean(samples)), 3.0, delta=0.2)

    def test_sample_gamma_scale(self):
        samples = [sample_gamma(2.0, 0.5, self.rng) for _ in range(3000)]
        self.assertAlmostEqual(float(np.mean(samples)), 1.0, delta=0.1)

    def test_sample_gamma_small_shape_positive(self):
        for _ in range(200):
            self.assertGreater(sample_gamma(0.4, 1.0, self.rng), 0.0)


class TestThompsonBandit(unittest.TestCase):
    def setUp(self):
        self.bandit = ThompsonBandit(["a", "b", "c"], rng=np.random.default_rng(42))

    def test_initial_arms_uniform_prior(self):
        for arm_id in self.bandit.arm_ids:
            arm = self.bandit.get_arm(arm_id)
            self.assertEqual(arm.alpha, 1.0)
            self.assertEqual(arm.beta, 1.0)
            self.assertEqual(arm.pull_count, 0)
        self.assertEqual(self.bandit.arm_count, 3)

    def test_select_arm_returns_known_arm(self):
        self.assertIn(self.bandit.select_arm(), ["a", "b", "c"])

    def test_select_arm_without_arms_raises(self):
        with self.assertRaises(NoArmsError):
            ThompsonBandit([]).select_arm()

    def test_rewarded_arm_selected_most(self):
        """An arm with consistently higher reward wins most selections."""
        for _ in range(60):
            self.bandit.update_arm("a", 0.9)
            self.bandit.update_arm("b", 0.2)
            self.bandit.update_arm("c", 0.4)

        picks = [self.bandit.select_arm() for _ in range(300)]
        self.assertGreater(picks.count("a"), picks.count("b"))
        self.assertGreater(picks.count("a"), picks.count("c"))

    def test_update_moves_mean_toward_reward(self):
        before = self.bandit.get_arm("a").mean
        self.bandit.update_arm("a", 1.0)
        self.assertGreater(self.bandit.get_arm("a").mean, before)

        before = self.bandit.get_arm("b").mean
        self.bandit.update_arm("b", 0.0)
        self.assertLess(self.bandit.get_arm("b").mean, before)

    def test_update_clamps_reward(self):
        self.bandit.update_arm("a", 2.5)
        arm = self.bandit.get_arm("a")
        self.assertEqual(arm.alpha, 2.0)
        self.assertEqual(arm.beta, 1.0)
        self.assertEqual(arm.cumulative_reward, 1.0)

        self.bandit.update_arm("b", -3.0)
        arm = self.bandit.get_arm("b")
        self.assertEqual(arm.alpha, 1.0)
        self.assertEqual(arm.beta, 2.0)

    def test_unknown_arm_update_ignored(self):
        self.bandit.update_arm("missing", 1.0)
        self.assertIsNone(self.bandit.get_arm("missing"))
        self.assertEqual(self.bandit.arm_count, 3)

    def test_arm_stats(self):
        for _ in range(10):
            self.bandit.update_arm("a", 1.0)
        stats = self.bandit.get_arm_stats("a")
        self.assertEqual(stats.pull_count, 10)
        self.assertAlmostEqual(stats.mean_reward, 11 / 12)
        low, high = stats.confidence_interval
        self.assertLessEqual(low, stats.mean_reward)
        self.assertGreaterEqual(high, stats.mean_reward)
        self.assertLessEqual(high, 1.0)
        self.assertIsNone(self.bandit.get_arm_stats("missing"))

    def test_best_arm_is_highest_mean(self):
        self.bandit.update_arm("c", 1.0)
        self.assertEqual(self.bandit.get_best_arm(), "c")
        self.assertIsNone(ThompsonBandit([]).get_best_arm())

    def test_reset_restores_prior(self):
        self.bandit.update_arm("a", 1.0)
        self.bandit.reset()
        arm = self.bandit.get_arm("a")
        self.assertEqual((arm.alpha, arm.beta, arm.pull_count), (1.0, 1.0, 0))

    def test_serialize_deserialize(self):
        self.bandit.update_arm("a", 0.7)
        state = self.bandit.serialize()

        restored = ThompsonBandit([])
        restored.deserialize(state)
        self.assertEqual(restored.arm_ids, ["a", "b", "c"])
        self.assertAlmostEqual(restored.get_arm("a").alpha, 1.7)
        self.assertEqual(restored.get_arm("a").pull_count, 1)

    def test_save_load_roundtrip(self):
        """Bandit state should survive save/load."""
        for _ in range(5):
            self.bandit.update_arm("b", 0.6)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bandit.json"
            self.bandit.save(path)
            loaded = ThompsonBandit.load(path)

        self.assertEqual(loaded.arm_ids, self.bandit.arm_ids)
        self.assertAlmostEqual(loaded.get_arm("b").alpha, self.bandit.get_arm("b").alpha)
        self.assertEqual(loaded.get_arm("b").pull_count, 5)


def test_regret():
    assert calculate_regret(1.0, 0.6) == pytest.approx(0.4)
    assert calculate_regret(0.5, 0.9) == 0.0
    assert calculate_cumulative_regret([0.5, 1.0, 0.25], 1.0) == pytest.approx(1.25)


if __name__ == "__main__":
    unittest.main()
