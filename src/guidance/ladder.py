# ABOUTME: Per learner/problem guidance ladder: micro-hint, explanation, reflective note.
# ABOUTME: Authorizes rung escalations from triggers, interaction evidence, and escalation profiles.

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.common.schemas import EventType, InteractionEvent, sort_events
from src.policy.profiles import EscalationProfile

GUIDANCE_LADDER_VERSION = "guidance-ladder-v1"


class GuidanceRung(IntEnum):
    MICRO_HINT = 1
    EXPLANATION = 2
    REFLECTIVE_NOTE = 3


MAX_RUNG = GuidanceRung.REFLECTIVE_NOTE


class EscalationTrigger(str, Enum):
    LEARNER_REQUEST = "learner_request"  # explicit "get more help"
    RUNG_EXHAUSTED = "rung_exhausted"  # max hints at current rung
    REPEATED_ERROR = "repeated_error"  # same error subtype after help
    TIME_STUCK = "time_stuck"  # no progress for too long
    HINT_REOPENED = "hint_reopened"  # help reopened after dismissal
    AUTO_ESCALATION_ELIGIBLE = "auto_escalation_eligible"  # struggle pattern detected


LEARNER_INITIATED_TRIGGERS = frozenset(
    {
        EscalationTrigger.LEARNER_REQUEST,
        EscalationTrigger.HINT_REOPENED,
        EscalationTrigger.AUTO_ESCALATION_ELIGIBLE,
    }
)

RUNG_DEFINITIONS = {
    GuidanceRung.MICRO_HINT: {
        "name": "Micro-hint",
        "description": "Brief, contextual nudge pointing toward the solution",
        "max_length": 150,
    },
    GuidanceRung.EXPLANATION: {
        "name": "Explanation",
        "description": "Structured guidance with source grounding",
        "max_length": 800,
    },
    GuidanceRung.REFLECTIVE_NOTE: {
        "name": "Reflective Note",
        "description": "Textbook unit with concept tags and provenance",
        "max_length": 2500,
    },
}


class LadderDefaults:
    RUNG_EXHAUSTED = 3
    REPEATED_ERROR = 1
    TIME_STUCK_MS = 5 * 60 * 1000
    REPEATED_ERROR_WINDOW = 3


@dataclass(frozen=True)
class EscalationEvidence:
    error_count: int = 0
    time_spent_ms: int = 0
    hint_count: int = 0
    error_subtype_id: Optional[str] = None


@dataclass(frozen=True)
class EscalationRecord:
    from_rung: GuidanceRung
    to_rung: GuidanceRung
    trigger: EscalationTrigger
    timestamp: int
    evidence: EscalationEvidence


@dataclass(frozen=True)
class GuidanceLadderState:
    """Immutable ladder state; every mutator returns a new value."""

    learner_id: str
    problem_id: str
    current_rung: GuidanceRung = GuidanceRung.MICRO_HINT
    rung_attempts: Tuple[int, int, int] = (0, 0, 0)
    escalation_history: Tuple[EscalationRecord, ...] = ()
    current_concept_ids: Tuple[str, ...] = ()
    grounded_in_sources: bool = False
    last_escalation_trigger: Optional[EscalationTrigger] = None
    last_escalation_timestamp: Optional[int] = None

    def attempts_at(self, rung: int) -> int:
        return self.rung_attempts[int(rung) - 1]

    @property
    def is_terminal(self) -> bool:
        return self.current_rung >= MAX_RUNG


@dataclass(frozen=True)
class EscalationDecision:
    allowed: bool
    reason: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    profile_aware: bool = False


@dataclass(frozen=True)
class NextAction:
    action: str  # stay/escalate/aggregate
    rung: GuidanceRung
    reason: str
    trigger: Optional[EscalationTrigger] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def create_initial_ladder_state(learner_id: str, problem_id: str) -> GuidanceLadderState:
    return GuidanceLadderState(learner_id=learner_id, problem_id=problem_id)


def record_rung_attempt(state: GuidanceLadderState) -> GuidanceLadderState:
    attempts = list(state.rung_attempts)
    attempts[int(state.current_rung) - 1] += 1
    return replace(state, rung_attempts=tuple(attempts))


def _repeated_error_window(required: int) -> int:
    return max(LadderDefaults.REPEATED_ERROR_WINDOW, required)


def can_escalate(
    state: GuidanceLadderState,
    trigger: EscalationTrigger,
    interactions: Sequence[InteractionEvent],
    profile: Optional[EscalationProfile] = None,
    now: Optional[int] = None,
) -> EscalationDecision:
    """
    Decide whether the ladder may move up one rung for the given trigger.

    Counter-based triggers (rung_exhausted, repeated_error, time_stuck) use the
    profile's trigger thresholds when a profile is supplied. Learner-initiated
    triggers are always allowed. Nothing escalates past rung 3.
    """
    if state.is_terminal:
        return EscalationDecision(allowed=False, reason="Maximum rung reached (3)")

    try:
        trigger = EscalationTrigger(trigger)
    except ValueError:
        return EscalationDecision(allowed=False, reason=f"Unknown trigger type: {trigger}")

    if trigger in LEARNER_INITIATED_TRIGGERS:
        return EscalationDecision(
            allowed=True,
            reason=f"Learner-initiated trigger {trigger.value} bypasses counters",
            evidence={"trigger": trigger.value},
        )

    problem_events = sort_events([i for i in interactions if i.problem_id == state.problem_id])
    profile_aware = profile is not None

    if trigger is EscalationTrigger.RUNG_EXHAUSTED:
        threshold = profile.triggers.rung_exhausted if profile else LadderDefaults.RUNG_EXHAUSTED
        attempts = state.attempts_at(state.current_rung)
        evidence = {"current_attempts": attempts, "threshold": threshold}
        if attempts >= threshold:
            return EscalationDecision(
                True, f"Rung {int(state.current_rung)} exhausted ({attempts} >= {threshold})", evidence, profile_aware
            )
        return EscalationDecision(
            False, f"Rung {int(state.current_rung)} not yet exhausted ({attempts} < {threshold})", evidence, profile_aware
        )

    if trigger is EscalationTrigger.REPEATED_ERROR:
        repeats = profile.triggers.repeated_error if profile else LadderDefaults.REPEATED_ERROR
        required = repeats + 1
        window = _repeated_error_window(required)
        recent = [e for e in problem_events if e.event_type == EventType.ERROR][-window:]
        counts: Dict[str, int] = {}
        for error in recent:
            subtype = error.error_subtype_id or "unknown"
            counts[subtype] = counts.get(subtype, 0) + 1
        evidence = {"subtype_counts": counts, "required": required, "window": window}
        if any(count >= required for count in counts.values()):
            return EscalationDecision(
                True, f"Same error subtype repeated {required}+ times in last {window} errors", evidence, profile_aware
            )
        return EscalationDecision(False, "No repeated error subtype detected", evidence, profile_aware)

    # time_stuck
    threshold = profile.triggers.time_stuck if profile else LadderDefaults.TIME_STUCK_MS
    if not problem_events:
        return EscalationDecision(False, "No interactions recorded", {}, profile_aware)
    successes = [
        e for e in problem_events if e.event_type == EventType.EXECUTION and e.successful
    ]
    reference = successes[-1].timestamp if successes else problem_events[0].timestamp
    elapsed = (now if now is not None else _now_ms()) - reference
    evidence = {"time_spent_ms": elapsed, "threshold_ms": threshold}
    if elapsed >= threshold:
        return EscalationDecision(
            True, f"No progress for {elapsed // 1000}s (threshold: {threshold // 1000}s)", evidence, profile_aware
        )
    return EscalationDecision(
        False, f"Only {elapsed // 1000}s elapsed (threshold: {threshold // 1000}s)", evidence, profile_aware
    )


def escalate(
    state: GuidanceLadderState,
    trigger: EscalationTrigger,
    evidence: EscalationEvidence,
    concept_ids: Sequence[str],
    now: Optional[int] = None,
) -> GuidanceLadderState:
    """Move up one rung and append a history entry; a no-op at rung 3."""
    if state.is_terminal:
        return state

    from_rung = state.current_rung
    to_rung = GuidanceRung(from_rung + 1)
    timestamp = now if now is not None else _now_ms()
    trigger = EscalationTrigger(trigger)

    merged = list(state.current_concept_ids)
    for concept_id in concept_ids:
        if concept_id not in merged:
            merged.append(concept_id)

    record = EscalationRecord(
        from_rung=from_rung,
        to_rung=to_rung,
        trigger=trigger,
        timestamp=timestamp,
        evidence=evidence,
    )
    return replace(
        state,
        current_rung=to_rung,
        last_escalation_trigger=trigger,
        last_escalation_timestamp=timestamp,
        current_concept_ids=tuple(merged),
        grounded_in_sources=to_rung >= GuidanceRung.EXPLANATION,
        escalation_history=state.escalation_history + (record,),
    )


def get_current_rung_info(state: GuidanceLadderState) -> Dict[str, Any]:
    rung = state.current_rung
    return {
        "rung": int(rung),
        "name": RUNG_DEFINITIONS[rung]["name"],
        "attempts_at_rung": state.attempts_at(rung),
        "can_escalate_to": int(rung) + 1 if rung < MAX_RUNG else None,
        "grounded_in_sources": state.grounded_in_sources or rung >= GuidanceRung.EXPLANATION,
    }


def determine_next_action(
    state: GuidanceLadderState,
    interactions: Sequence[InteractionEvent],
    profile: Optional[EscalationProfile] = None,
    now: Optional[int] = None,
) -> NextAction:
    """
    Pick the next ladder move from the interaction stream.

    At rung 3 the learner's note is aggregated into the textbook once the
    problem's error count reaches the profile's aggregate threshold.
    """
    problem_events = sort_events([i for i in interactions if i.problem_id == state.problem_id])
    error_count = sum(1 for e in problem_events if e.event_type == EventType.ERROR)

    if state.is_terminal:
        if profile is not None and error_count >= profile.thresholds.aggregate:
            return NextAction(
                "aggregate",
                state.current_rung,
                f"{error_count} errors reached aggregate threshold {profile.thresholds.aggregate}",
            )
        return NextAction("stay", state.current_rung, "Already at maximum rung")

    next_rung = GuidanceRung(state.current_rung + 1)
    last = problem_events[-1] if problem_events else None
    if last is not None and (
        last.event_type == EventType.EXPLANATION_VIEW or last.metadata.get("escalation_requested")
    ):
        decision = can_escalate(state, EscalationTrigger.LEARNER_REQUEST, interactions, profile, now)
        return NextAction("escalate", next_rung, decision.reason, EscalationTrigger.LEARNER_REQUEST)

    for trigger in (
        EscalationTrigger.RUNG_EXHAUSTED,
        EscalationTrigger.REPEATED_ERROR,
        EscalationTrigger.TIME_STUCK,
    ):
        decision = can_escalate(state, trigger, interactions, profile, now)
        if decision.allowed:
            return NextAction("escalate", next_rung, decision.reason, trigger)

    if profile is not None and error_count >= profile.thresholds.escalate:
        return NextAction(
            "escalate",
            next_rung,
            f"{error_count} errors reached escalate threshold {profile.thresholds.escalate}",
            EscalationTrigger.AUTO_ESCALATION_ELIGIBLE,
        )

    return NextAction("stay", state.current_rung, "No escalation triggers met")


def build_escalation_event(state: GuidanceLadderState) -> Optional[Dict[str, Any]]:
    """guidance_escalate event for the most recent escalation, if any."""
    if not state.escalation_history:
        return None
    record = state.escalation_history[-1]
    return {
        "event_type": EventType.GUIDANCE_ESCALATE.value,
        "learner_id": state.learner_id,
        "problem_id": state.problem_id,
        "timestamp": record.timestamp,
        "from_rung": int(record.from_rung),
        "to_rung": int(record.to_rung),
        "trigger": record.trigger.value,
        "error_count": record.evidence.error_count,
        "hint_count": record.evidence.hint_count,
        "time_spent_ms": record.evidence.time_spent_ms,
        "error_subtype_id": record.evidence.error_subtype_id,
        "concept_ids": list(state.current_concept_ids),
        "policy_version": GUIDANCE_LADDER_VERSION,
    }


def summarize_history(state: GuidanceLadderState) -> List[Dict[str, Any]]:
    """Escalation history as plain dicts for prompt templates."""
    return [
        {
            "from_rung": int(r.from_rung),
            "to_rung": int(r.to_rung),
            "trigger": r.trigger.value,
            "timestamp": r.timestamp,
        }
        for r in state.escalation_history
    ]
