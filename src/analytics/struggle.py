# ABOUTME: Derives struggle signals from learner interaction streams.
# ABOUTME: Computes recovery history, struggle patterns, adaptive thresholds, and the Cognitive Strain Index.

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import pandas as pd

from src.common.schemas import EventType, InteractionEvent, events_from_frame, sort_events

ADAPTIVE_THRESHOLD_VERSION = "adaptive-threshold-v1"

HELP_EVENT_TYPES = frozenset(
    {EventType.HINT_REQUEST, EventType.EXPLANATION_VIEW, EventType.GUIDANCE_REQUEST}
)


class StrugglePattern(str, Enum):
    PERSISTENT = "persistent"  # stuck on one error subtype
    OSCILLATORY = "oscillatory"  # cycling between 2-3 subtypes
    IMPROVING = "improving"


class ConceptDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class StrainThresholds:
    RAPID_RESUBMISSION_MS = 5_000
    SHORT_ERROR_INTERVAL_MS = 10_000
    LONG_PAUSE_MS = 30_000
    BURST_WINDOW_MS = 60_000
    BURST_MIN_ERRORS = 3
    WINDOW = 10


CSI_WEIGHTS = {
    "rapid_resubmission": 0.25,
    "short_interval_errors": 0.25,
    "long_pause_before_help": 0.15,
    "burst_error_clusters": 0.2,
    "escalation_density": 0.15,
}


@dataclass
class LearnerHistorySummary:
    total_errors: int
    errors_recovered_independently: int
    recent_errors: List[str]  # last 5 error subtype ids, chronological
    average_time_to_recovery: float


@dataclass
class AdjustmentFactors:
    historical_recovery_rate: float
    recent_struggle_pattern: StrugglePattern
    concept_difficulty: ConceptDifficulty
    current_csi: Optional[float] = None


@dataclass
class AdjustmentResult:
    adjusted_threshold: int
    base_threshold: float
    adjustment: float
    reasons: List[str]
    factors: AdjustmentFactors


@dataclass
class AdaptiveThresholds:
    escalate: int
    aggregate: int
    adjustment_reasons: List[str] = field(default_factory=list)


@dataclass
class CSIComponents:
    rapid_resubmission: float = 0.0
    short_interval_errors: float = 0.0
    long_pause_before_help: float = 0.0
    burst_error_clusters: float = 0.0
    escalation_density: float = 0.0


@dataclass
class CSIResult:
    csi: float
    level: str  # low/medium/high
    components: CSIComponents


def analyze_learner_history(interactions: Sequence[InteractionEvent]) -> LearnerHistorySummary:
    """
    Summarize how a learner recovers from errors.

    An error counts as independently recovered when a successful execution
    follows it before any help event or another error.
    """
    if not interactions:
        return LearnerHistorySummary(0, 0, [], 0.0)

    ordered = sort_events(interactions)
    error_positions = [
        i for i, event in enumerate(ordered)
        if event.event_type == EventType.ERROR and event.error_subtype_id
    ]

    independent_recoveries = 0
    recovery_times: List[int] = []
    for i in error_positions:
        error = ordered[i]
        for later in ordered[i + 1:]:
            if later.event_type in HELP_EVENT_TYPES:
                break
            if later.event_type == EventType.EXECUTION and later.successful is True:
                independent_recoveries += 1
                latency = later.timestamp - error.timestamp
                if latency > 0:
                    recovery_times.append(latency)
                break
            if later.event_type == EventType.ERROR:
                break

    recent_errors = [ordered[i].error_subtype_id for i in error_positions[-5:]]
    average_time = sum(recovery_times) / len(recovery_times) if recovery_times else 0.0

    return LearnerHistorySummary(
        total_errors=len(error_positions),
        errors_recovered_independently=independent_recoveries,
        recent_errors=recent_errors,
        average_time_to_recovery=average_time,
    )


def detect_struggle_pattern(recent_errors: Sequence[str]) -> StrugglePattern:
    if not recent_errors or len(recent_errors) == 1:
        return StrugglePattern.IMPROVING

    counts = Counter(recent_errors)
    if len(counts) == 1:
        return StrugglePattern.PERSISTENT

    if 2 <= len(counts) <= 3:
        spread = max(counts.values()) - min(counts.values())
        if spread <= 1 and len(recent_errors) >= 4:
            return StrugglePattern.OSCILLATORY

    return StrugglePattern.IMPROVING


def calculate_adaptive_threshold(base_threshold: float, factors: AdjustmentFactors) -> AdjustmentResult:
    """
    Adjust a base threshold by percentage steps derived from learner factors.

    Adjustments are additive and independent of each other: recovery rate
    +/-30%, struggle pattern +/-20%, concept difficulty +/-10%, and the
    optional CSI +/-20%. The result is rounded and never drops below 2.
    """
    adjustment = 0.0
    reasons: List[str] = []

    recovery = factors.historical_recovery_rate
    if recovery > 0.7:
        delta = base_threshold * 0.3
        adjustment += delta
        reasons.append(f"High recovery rate ({recovery * 100:.0f}%) increases threshold by {delta:.1f}")
    elif recovery < 0.3:
        delta = base_threshold * 0.3
        adjustment -= delta
        reasons.append(f"Low recovery rate ({recovery * 100:.0f}%) decreases threshold by {delta:.1f}")

    pattern = StrugglePattern(factors.recent_struggle_pattern)
    if pattern is StrugglePattern.PERSISTENT:
        delta = base_threshold * 0.2
        adjustment -= delta
        reasons.append(f"Persistent error pattern decreases threshold by {delta:.1f}")
    elif pattern is StrugglePattern.IMPROVING:
        delta = base_threshold * 0.2
        adjustment += delta
        reasons.append(f"Improving pattern increases threshold by {delta:.1f}")

    difficulty = ConceptDifficulty(factors.concept_difficulty)
    if difficulty is ConceptDifficulty.ADVANCED:
        delta = base_threshold * 0.1
        adjustment -= delta
        reasons.append(f"Advanced concept difficulty decreases threshold by {delta:.1f}")
    elif difficulty is ConceptDifficulty.BEGINNER:
        delta = base_threshold * 0.1
        adjustment += delta
        reasons.append(f"Beginner concept difficulty increases threshold by {delta:.1f}")

    if factors.current_csi is not None:
        if factors.current_csi > 0.7:
            delta = base_threshold * 0.2
            adjustment -= delta
            reasons.append(
                f"High cognitive strain ({factors.current_csi * 100:.0f}%) decreases threshold by {delta:.1f}"
            )
        elif factors.current_csi < 0.3:
            delta = base_threshold * 0.2
            adjustment += delta
            reasons.append(
                f"Low cognitive strain ({factors.current_csi * 100:.0f}%) increases threshold by {delta:.1f}"
            )

    # Half-up rounding; Python's round() would send 2.5 to 2.
    adjusted = max(2, int(_round_half_up(base_threshold + adjustment)))

    return AdjustmentResult(
        adjusted_threshold=adjusted,
        base_threshold=base_threshold,
        adjustment=adjustment,
        reasons=reasons,
        factors=factors,
    )


def _round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


def calculate_recovery_rate(history: LearnerHistorySummary) -> float:
    if history.total_errors == 0:
        return 0.5  # neutral default without history
    return history.errors_recovered_independently / history.total_errors


def get_adaptive_profile_thresholds(
    learner_history: Sequence[InteractionEvent],
    difficulty: str = ConceptDifficulty.INTERMEDIATE.value,
    base_escalate: int = 4,
    base_aggregate: int = 8,
) -> AdaptiveThresholds:
    """Adjusted escalate/aggregate thresholds for the current problem's difficulty."""
    history = analyze_learner_history(learner_history)
    pattern = detect_struggle_pattern(history.recent_errors)
    factors = AdjustmentFactors(
        historical_recovery_rate=calculate_recovery_rate(history),
        recent_struggle_pattern=pattern,
        concept_difficulty=ConceptDifficulty(difficulty),
    )

    escalate_result = calculate_adaptive_threshold(base_escalate, factors)
    aggregate_result = calculate_adaptive_threshold(base_aggregate, factors)

    reasons = [
        f"Escalation: {'; '.join(escalate_result.reasons) or 'No adjustment'}",
        f"Aggregate: {'; '.join(aggregate_result.reasons) or 'No adjustment'}",
        f"Based on {history.total_errors} total errors, "
        f"{history.errors_recovered_independently} independent recoveries, "
        f"pattern: {pattern.value}",
    ]
    return AdaptiveThresholds(
        escalate=escalate_result.adjusted_threshold,
        aggregate=aggregate_result.adjusted_threshold,
        adjustment_reasons=reasons,
    )


def _consecutive_rate(events: List[InteractionEvent], max_gap_ms: int) -> float:
    if len(events) < 2:
        return 0.0
    quick = sum(
        1 for prev, cur in zip(events, events[1:]) if cur.timestamp - prev.timestamp < max_gap_ms
    )
    return quick / (len(events) - 1)


def calculate_csi(
    recent_interactions: Sequence[InteractionEvent],
    window: int = StrainThresholds.WINDOW,
) -> CSIResult:
    """
    Cognitive Strain Index over the most recent interactions.

    Weighted blend of rapid re-submissions, short-interval errors, long
    pauses before help, burst error clusters, and escalation density.
    Levels: <0.3 low, <0.6 medium, otherwise high.
    """
    if not recent_interactions:
        return CSIResult(csi=0.0, level="low", components=CSIComponents())

    interactions = sort_events(recent_interactions)[-window:]

    executions = [e for e in interactions if e.event_type == EventType.EXECUTION]
    errors = [e for e in interactions if e.event_type == EventType.ERROR]
    help_requests = [e for e in interactions if e.event_type in HELP_EVENT_TYPES]

    rapid_resubmission = _consecutive_rate(executions, StrainThresholds.RAPID_RESUBMISSION_MS)
    short_interval_errors = _consecutive_rate(errors, StrainThresholds.SHORT_ERROR_INTERVAL_MS)

    long_pauses = 0
    for help_event in help_requests:
        prior = [e for e in errors if e.timestamp < help_event.timestamp]
        if prior and help_event.timestamp - prior[-1].timestamp > StrainThresholds.LONG_PAUSE_MS:
            long_pauses += 1
    long_pause_before_help = long_pauses / len(help_requests) if help_requests else 0.0

    burst_count = 0
    for error in errors:
        window_end = error.timestamp + StrainThresholds.BURST_WINDOW_MS
        in_window = sum(1 for e in errors if error.timestamp <= e.timestamp <= window_end)
        if in_window >= StrainThresholds.BURST_MIN_ERRORS:
            burst_count += 1
    burst_error_clusters = min(1.0, burst_count / 3)

    escalations = sum(1 for e in interactions if e.event_type == EventType.GUIDANCE_ESCALATE)
    problems = len({e.problem_id for e in interactions})
    escalation_density = min(1.0, escalations / problems) if problems > 0 else 0.0

    components = CSIComponents(
        rapid_resubmission=rapid_resubmission,
        short_interval_errors=short_interval_errors,
        long_pause_before_help=long_pause_before_help,
        burst_error_clusters=burst_error_clusters,
        escalation_density=escalation_density,
    )
    raw = sum(getattr(components, name) * weight for name, weight in CSI_WEIGHTS.items())
    csi = min(1.0, max(0.0, raw))
    level = "low" if csi < 0.3 else "medium" if csi < 0.6 else "high"
    return CSIResult(csi=csi, level=level, components=components)


def generate_csi_report(events_df: pd.DataFrame, window: int = StrainThresholds.WINDOW) -> pd.DataFrame:
    """One row per learner with the CSI score, level, and components."""
    rows: List[Dict] = []
    events = events_from_frame(events_df)
    by_learner: Dict[str, List[InteractionEvent]] = {}
    for event in events:
        by_learner.setdefault(event.learner_id, []).append(event)

    for learner_id, learner_events in by_learner.items():
        result = calculate_csi(learner_events, window=window)
        rows.append(
            {
                "learner_id": learner_id,
                "csi": round(result.csi, 4),
                "level": result.level,
                **{name: round(getattr(result.components, name), 4) for name in CSI_WEIGHTS},
            }
        )
    return pd.DataFrame(
        rows,
        columns=["learner_id", "csi", "level", *CSI_WEIGHTS.keys()],
    )
