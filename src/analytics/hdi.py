# ABOUTME: Computes the Hint Dependency Index (HDI) from a learner's full interaction history.
# ABOUTME: Blends hint rate, escalation depth, explanation rate, post-explanation errors, and unaided success.

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Sequence, Set

import pandas as pd

from src.common.schemas import EventType, InteractionEvent, events_from_frame, sort_events

HDI_CALCULATOR_VERSION = "hdi-calculator-v1"

HDI_WEIGHTS = {
    "hpa": 0.3,  # hints per attempt
    "aed": 0.133,  # average escalation depth
    "er": 0.3,  # explanation rate
    "reae": 0.133,  # repeated error after explanation
    "iwh": 0.134,  # improvement without hint (inverted)
}

_HINT_REQUEST_TYPES = frozenset({EventType.HINT_REQUEST, EventType.GUIDANCE_REQUEST})
_LEVELED_HINT_TYPES = frozenset(
    {EventType.HINT_REQUEST, EventType.GUIDANCE_REQUEST, EventType.GUIDANCE_VIEW, EventType.HINT_VIEW}
)
_PRIOR_HINT_TYPES = frozenset({EventType.HINT_REQUEST, EventType.GUIDANCE_REQUEST, EventType.HINT_VIEW})


@dataclass(frozen=True)
class HDIComponents:
    hpa: float
    aed: float
    er: float
    reae: float
    iwh: float


@dataclass(frozen=True)
class HDIResult:
    hdi: float
    level: str  # low/medium/high
    components: HDIComponents


def _count(interactions: Sequence[InteractionEvent], types) -> int:
    return sum(1 for i in interactions if i.event_type in types)


def calculate_hpa(interactions: Sequence[InteractionEvent]) -> float:
    """Hint and guidance requests per execution, capped at 1."""
    attempts = _count(interactions, {EventType.EXECUTION})
    if attempts == 0:
        return 0.0
    return min(_count(interactions, _HINT_REQUEST_TYPES) / attempts, 1.0)


def calculate_aed(interactions: Sequence[InteractionEvent]) -> float:
    """Mean hint level over leveled hint events, mapped 1 -> 0 and 3 -> 1."""
    levels = [
        i.hint_level for i in interactions
        if i.event_type in _LEVELED_HINT_TYPES and i.hint_level is not None
    ]
    if not levels:
        return 0.0
    average = sum(levels) / len(levels)
    return min(max((average - 1) / 2, 0.0), 1.0)


def calculate_er(interactions: Sequence[InteractionEvent]) -> float:
    """Explanation views per execution, capped at 1. Guidance views are not explanations."""
    attempts = _count(interactions, {EventType.EXECUTION})
    if attempts == 0:
        return 0.0
    return min(_count(interactions, {EventType.EXPLANATION_VIEW}) / attempts, 1.0)


def calculate_reae(interactions: Sequence[InteractionEvent]) -> float:
    """Share of errors that happened after the first explanation view."""
    explanation_seen = False
    errors_after = 0
    total_errors = 0
    for interaction in sort_events(interactions):
        if interaction.event_type == EventType.EXPLANATION_VIEW:
            explanation_seen = True
        elif interaction.event_type == EventType.ERROR:
            total_errors += 1
            if explanation_seen:
                errors_after += 1

    if total_errors == 0:
        return 0.0
    return errors_after / total_errors


def calculate_iwh(interactions: Sequence[InteractionEvent]) -> float:
    """Share of solved problems whose first success came without any prior hint."""
    problems_with_hints: Set[str] = set()
    successful: Set[str] = set()
    hinted_before_success: Set[str] = set()

    for interaction in sort_events(interactions):
        problem_id = interaction.problem_id
        if interaction.event_type in _PRIOR_HINT_TYPES:
            problems_with_hints.add(problem_id)
        if interaction.event_type == EventType.EXECUTION and interaction.successful:
            if problem_id in successful:
                continue
            successful.add(problem_id)
            if problem_id in problems_with_hints:
                hinted_before_success.add(problem_id)

    if not successful:
        return 0.0
    return (len(successful) - len(hinted_before_success)) / len(successful)


def calculate_hdi_components(interactions: Sequence[InteractionEvent]) -> HDIComponents:
    return HDIComponents(
        hpa=calculate_hpa(interactions),
        aed=calculate_aed(interactions),
        er=calculate_er(interactions),
        reae=calculate_reae(interactions),
        iwh=calculate_iwh(interactions),
    )


def classify_hdi(hdi: float) -> str:
    if hdi < 0.3:
        return "low"
    if hdi <= 0.6:
        return "medium"
    return "high"


def calculate_hdi(interactions: Sequence[InteractionEvent]) -> HDIResult:
    """
    Hint Dependency Index over the whole (unwindowed) interaction list.

    IWH enters inverted, so an empty history scores exactly the IWH weight
    (0.134) and classifies as low.
    """
    components = calculate_hdi_components(interactions)
    hdi = (
        components.hpa * HDI_WEIGHTS["hpa"]
        + components.aed * HDI_WEIGHTS["aed"]
        + components.er * HDI_WEIGHTS["er"]
        + components.reae * HDI_WEIGHTS["reae"]
        + (1 - components.iwh) * HDI_WEIGHTS["iwh"]
    )
    hdi = min(max(hdi, 0.0), 1.0)
    return HDIResult(hdi=hdi, level=classify_hdi(hdi), components=components)


def build_hdi_event(learner_id: str, result: HDIResult, timestamp: int) -> Dict:
    """Analytics event for the external log carrying an HDI snapshot."""
    return {
        "event_type": EventType.HDI_CALCULATED.value,
        "learner_id": learner_id,
        "timestamp": timestamp,
        "hdi": result.hdi,
        "hdi_level": result.level,
        "hdi_components": asdict(result.components),
        "policy_version": HDI_CALCULATOR_VERSION,
    }


def generate_hdi_report(events_df: pd.DataFrame) -> pd.DataFrame:
    """One row per learner with HDI score, level, and components."""
    by_learner: Dict[str, List[InteractionEvent]] = {}
    for event in events_from_frame(events_df):
        by_learner.setdefault(event.learner_id, []).append(event)

    rows = []
    for learner_id, events in by_learner.items():
        result = calculate_hdi(events)
        rows.append(
            {
                "learner_id": learner_id,
                "hdi": round(result.hdi, 4),
                "level": result.level,
                **{name: round(value, 4) for name, value in asdict(result.components).items()},
            }
        )
    return pd.DataFrame(rows, columns=["learner_id", "hdi", "level", *HDI_WEIGHTS.keys()])
