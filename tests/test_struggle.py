# ABOUTME: Tests struggle analytics: recovery history, patterns, adaptive thresholds, and CSI.
# ABOUTME: Builds synthetic interaction streams to exercise each component.

import random

import pandas as pd
import pytest

from src.analytics.struggle import (
    AdjustmentFactors,
    ConceptDifficulty,
    StrugglePattern,
    analyze_learner_history,
    calculate_adaptive_threshold,
    calculate_csi,
    calculate_recovery_rate,
    detect_struggle_pattern,
    generate_csi_report,
    get_adaptive_profile_thresholds,
)
from src.common.schemas import InteractionEvent

_counter = iter(range(1_000_000))


def _event(event_type, timestamp, problem_id="p1", learner_id="l1", **kwargs):
    return InteractionEvent(
        id=f"e{next(_counter)}",
        learner_id=learner_id,
        timestamp=timestamp,
        event_type=event_type,
        problem_id=problem_id,
        **kwargs,
    )


def _error(timestamp, subtype="missing-comma", **kwargs):
    return _event("error", timestamp, error_subtype_id=subtype, **kwargs)


def _run(timestamp, successful=True, **kwargs):
    return _event("execution", timestamp, successful=successful, **kwargs)


def test_analyze_empty_history():
    summary = analyze_learner_history([])
    assert summary.total_errors == 0
    assert summary.errors_recovered_independently == 0
    assert summary.recent_errors == []
    assert summary.average_time_to_recovery == 0.0


def test_analyze_counts_independent_recoveries():
    events = [
        _error(0, "s1"),
        _run(1000),
        _error(2000, "s2"),
        _event("hint_request", 3000),
        _run(4000),
        _error(5000, None),  # no subtype, not part of recovery stats
    ]
    summary = analyze_learner_history(events)
    assert summary.total_errors == 2
    assert summary.errors_recovered_independently == 1
    assert summary.recent_errors == ["s1", "s2"]
    assert summary.average_time_to_recovery == pytest.approx(1000)


def test_analyze_sorts_out_of_order_events():
    events = [_run(1000), _error(0, "s1")]
    assert analyze_learner_history(events).errors_recovered_independently == 1


def test_recent_errors_keeps_last_five():
    events = [_error(i * 1000, f"s{i}") for i in range(8)]
    assert analyze_learner_history(events).recent_errors == ["s3", "s4", "s5", "s6", "s7"]


@pytest.mark.parametrize(
    "errors,expected",
    [
        ([], StrugglePattern.IMPROVING),
        (["a"], StrugglePattern.IMPROVING),
        (["a", "a", "a"], StrugglePattern.PERSISTENT),
        (["a", "b", "a", "b"], StrugglePattern.OSCILLATORY),
        (["a", "b", "c", "a"], StrugglePattern.OSCILLATORY),
        (["a", "b", "c"], StrugglePattern.IMPROVING),
        (["a", "a", "a", "b"], StrugglePattern.IMPROVING),
        (["a", "b", "c", "d", "e"], StrugglePattern.IMPROVING),
    ],
)
def test_detect_struggle_pattern(errors, expected):
    assert detect_struggle_pattern(errors) == expected


def test_adaptive_threshold_all_increases():
    factors = AdjustmentFactors(0.8, StrugglePattern.IMPROVING, ConceptDifficulty.BEGINNER, current_csi=0.2)
    result = calculate_adaptive_threshold(4, factors)
    assert result.adjustment == pytest.approx(3.2)
    assert result.adjusted_threshold == 7
    assert len(result.reasons) == 4


def test_adaptive_threshold_never_below_two():
    factors = AdjustmentFactors(0.1, StrugglePattern.PERSISTENT, ConceptDifficulty.ADVANCED, current_csi=0.9)
    for base in (1, 2, 3, 4, 8):
        assert calculate_adaptive_threshold(base, factors).adjusted_threshold >= 2


def test_adaptive_threshold_rounds_half_up():
    factors = AdjustmentFactors(0.8, StrugglePattern.OSCILLATORY, ConceptDifficulty.INTERMEDIATE)
    assert calculate_adaptive_threshold(5, factors).adjusted_threshold == 7


def test_adaptive_threshold_neutral_factors():
    factors = AdjustmentFactors(0.5, StrugglePattern.OSCILLATORY, ConceptDifficulty.INTERMEDIATE, current_csi=0.5)
    result = calculate_adaptive_threshold(4, factors)
    assert result.adjusted_threshold == 4
    assert result.reasons == []


def test_recovery_rate_defaults_to_neutral():
    assert calculate_recovery_rate(analyze_learner_history([])) == 0.5


def test_adaptive_profile_thresholds_empty_history():
    result = get_adaptive_profile_thresholds([])
    # neutral recovery, improving pattern: +20%
    assert result.escalate == 5
    assert result.aggregate == 10
    assert len(result.adjustment_reasons) == 3


def test_adaptive_profile_thresholds_struggling_learner():
    events = []
    for i in range(5):
        events.append(_error(i * 10_000, "join-missing"))
        events.append(_event("hint_request", i * 10_000 + 1000))
    result = get_adaptive_profile_thresholds(events, difficulty="advanced")
    # low recovery -30%, persistent -20%, advanced -10%
    assert result.escalate == 2
    assert result.aggregate == 3


def test_csi_empty():
    result = calculate_csi([])
    assert result.csi == 0.0
    assert result.level == "low"


def test_csi_rapid_resubmission():
    events = [_run(t, successful=False) for t in (0, 1000, 2000, 3000)]
    result = calculate_csi(events)
    assert result.components.rapid_resubmission == pytest.approx(1.0)
    assert result.csi == pytest.approx(0.25)
    assert result.level == "low"


def test_csi_error_burst():
    events = [_error(0), _error(2000), _error(4000)]
    result = calculate_csi(events)
    assert result.components.short_interval_errors == pytest.approx(1.0)
    assert result.components.burst_error_clusters == pytest.approx(1 / 3)
    assert result.csi == pytest.approx(0.25 + 0.2 / 3)
    assert result.level == "medium"


def test_csi_long_pause_and_escalations():
    events = [
        _error(0),
        _event("hint_request", 40_000),
        _event("guidance_escalate", 41_000),
        _event("guidance_escalate", 42_000),
    ]
    result = calculate_csi(events)
    assert result.components.long_pause_before_help == pytest.approx(1.0)
    assert result.components.escalation_density == pytest.approx(1.0)
    assert result.csi == pytest.approx(0.3)


def test_csi_uses_latest_window_after_sorting():
    rapid = [_run(t, successful=False) for t in (0, 1000, 2000, 3000, 4000)]
    slow = [_run(100_000 + i * 60_000) for i in range(10)]
    events = rapid + slow
    random.Random(3).shuffle(events)
    result = calculate_csi(events)
    assert result.components.rapid_resubmission == 0.0


def test_csi_level_high():
    events = []
    for i in range(5):
        events.append(_run(i * 2000, successful=False))
        events.append(_error(i * 2000 + 500))
    result = calculate_csi(events)
    assert result.level == "high"
    assert 0.0 <= result.csi <= 1.0


def test_generate_csi_report():
    df = pd.DataFrame(
        {
            "learner_id": ["a", "a", "a", "b"],
            "timestamp": [0, 1000, 2000, 0],
            "event_type": ["execution", "execution", "execution", "error"],
            "problem_id": ["p1"] * 4,
            "successful": [False, False, True, None],
            "error_subtype_id": [None, None, None, "typo"],
        }
    )
    report = generate_csi_report(df)
    assert list(report["learner_id"]) == ["a", "b"]
    assert report.loc[report["learner_id"] == "a", "rapid_resubmission"].iloc[0] == 1.0
    assert set(report.columns) >= {"csi", "level", "burst_error_clusters"}
