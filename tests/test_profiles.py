# ABOUTME: Tests escalation profile registry lookups and assignment strategies.
# ABOUTME: Checks static hashing determinism and diagnostic score boundaries.

from dataclasses import FrozenInstanceError

import pytest

from src.policy.profiles import (
    ESCALATION_PROFILES,
    AssignmentContext,
    AssignmentStrategy,
    DiagnosticResults,
    ProfileId,
    assign_profile,
    get_profile_by_id,
    get_profile_escalation_threshold,
    get_profile_for_learner,
    get_profile_thresholds,
    hash_learner_id,
)


def _diagnostic(persistence, recovery):
    return AssignmentContext(
        learner_id="learner-d",
        diagnostic_results=DiagnosticResults(persistence_score=persistence, recovery_rate=recovery),
    )


def test_registry_values():
    fast = ESCALATION_PROFILES[ProfileId.FAST]
    assert (fast.thresholds.escalate, fast.thresholds.aggregate) == (2, 4)
    assert (fast.triggers.time_stuck, fast.triggers.rung_exhausted, fast.triggers.repeated_error) == (120000, 2, 1)

    slow = ESCALATION_PROFILES[ProfileId.SLOW]
    assert (slow.thresholds.escalate, slow.thresholds.aggregate) == (5, 8)
    assert (slow.triggers.time_stuck, slow.triggers.rung_exhausted, slow.triggers.repeated_error) == (480000, 4, 3)

    adaptive = ESCALATION_PROFILES[ProfileId.ADAPTIVE]
    assert (adaptive.thresholds.escalate, adaptive.thresholds.aggregate) == (3, 6)

    explanation = ESCALATION_PROFILES[ProfileId.EXPLANATION_FIRST]
    assert (explanation.thresholds.escalate, explanation.thresholds.aggregate) == (1, 3)
    assert explanation.triggers.time_stuck == 60000


def test_hash_learner_id_range_and_determinism():
    assert hash_learner_id("") == 0.0
    assert hash_learner_id("learner-1") == hash_learner_id("learner-1")
    for learner_id in ("alice", "learner-1", "student-42", "x" * 64):
        assert 0.0 <= hash_learner_id(learner_id) <= 1.0


def test_static_assignment_deterministic():
    context = AssignmentContext(learner_id="student-42")
    first = assign_profile(context, "static")
    for _ in range(5):
        assert assign_profile(context, AssignmentStrategy.STATIC).id == first.id


def test_static_assignment_buckets():
    assert assign_profile(AssignmentContext("alice"), "static").id == ProfileId.FAST
    assert assign_profile(AssignmentContext("student-42"), "static").id == ProfileId.ADAPTIVE
    assert assign_profile(AssignmentContext("learner-1"), "static").id == ProfileId.SLOW


def test_static_never_selects_explanation_first():
    ids = {assign_profile(AssignmentContext(f"{c}-learner-{i}"), "static").id for c in "abcdefgh" for i in range(40)}
    assert ProfileId.EXPLANATION_FIRST not in ids


@pytest.mark.parametrize(
    "persistence,recovery,expected",
    [
        (0.3, 0.3, ProfileId.ADAPTIVE),
        (0.7, 0.7, ProfileId.ADAPTIVE),
        (0.9, 0.8, ProfileId.SLOW),
        (0.1, 0.2, ProfileId.FAST),
        (0.5, 0.5, ProfileId.ADAPTIVE),
    ],
)
def test_diagnostic_boundaries(persistence, recovery, expected):
    assert assign_profile(_diagnostic(persistence, recovery), "diagnostic").id == expected


def test_diagnostic_scores_not_clamped():
    assert assign_profile(_diagnostic(2.0, 1.0), "diagnostic").id == ProfileId.SLOW
    assert assign_profile(_diagnostic(-1.0, 0.0), "diagnostic").id == ProfileId.FAST


def test_diagnostic_without_results_is_adaptive():
    assert assign_profile(AssignmentContext("learner-d"), "diagnostic").id == ProfileId.ADAPTIVE


def test_bandit_and_unknown_strategies_are_adaptive():
    context = AssignmentContext("alice")
    assert assign_profile(context, "bandit").id == ProfileId.ADAPTIVE
    assert assign_profile(context, "round-robin").id == ProfileId.ADAPTIVE


def test_assigned_profiles_are_copies():
    profile = assign_profile(AssignmentContext("alice"), "static")
    assert profile == ESCALATION_PROFILES[ProfileId.FAST]
    assert profile is not ESCALATION_PROFILES[ProfileId.FAST]
    with pytest.raises(FrozenInstanceError):
        profile.thresholds.escalate = 99


def test_get_profile_by_id_accepts_aliases():
    assert get_profile_by_id("fast").id == ProfileId.FAST
    assert get_profile_by_id("slow-escalator").id == ProfileId.SLOW
    assert get_profile_by_id(ProfileId.EXPLANATION_FIRST).id == ProfileId.EXPLANATION_FIRST
    assert get_profile_by_id("nope") is None
    assert get_profile_by_id(None) is None


def test_thresholds_lookup_returns_fresh_dict():
    thresholds = get_profile_thresholds("adaptive")
    assert thresholds == {"escalate": 3, "aggregate": 6}
    thresholds["escalate"] = 100
    assert get_profile_thresholds("adaptive")["escalate"] == 3
    assert get_profile_thresholds("unknown") is None


def test_escalation_threshold_defaults_to_adaptive():
    assert get_profile_escalation_threshold("fast") == 2
    assert get_profile_escalation_threshold("unknown") == 3
    assert get_profile_escalation_threshold(None) == 3


def test_get_profile_for_learner_uses_strategy():
    assert get_profile_for_learner("alice").id == ProfileId.FAST
    assert get_profile_for_learner("alice", strategy="bandit").id == ProfileId.ADAPTIVE
