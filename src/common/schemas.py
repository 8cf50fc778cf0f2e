# ABOUTME: Defines canonical data structures shared by the policy, analytics, and guidance packages.
# ABOUTME: Centralizes interaction events, learning outcomes, and retrieval bundle schemas.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd


class EventType(str, Enum):
    """Interaction event types appended to the external event log."""

    CODE_CHANGE = "code_change"
    EXECUTION = "execution"
    ERROR = "error"
    HINT_REQUEST = "hint_request"
    HINT_VIEW = "hint_view"
    HINT_DISMISS = "hint_dismiss"
    HELP_CLOSE = "help_close"
    EXPLANATION_VIEW = "explanation_view"
    GUIDANCE_REQUEST = "guidance_request"
    GUIDANCE_VIEW = "guidance_view"
    GUIDANCE_ESCALATE = "guidance_escalate"
    LLM_GENERATE = "llm_generate"
    TEXTBOOK_ADD = "textbook_add"
    TEXTBOOK_UPDATE = "textbook_update"
    BANDIT_UPDATED = "bandit_updated"
    PROFILE_ASSIGNED = "profile_assigned"
    HDI_CALCULATED = "hdi_calculated"


@dataclass(frozen=True)
class InteractionEvent:
    """Read-only learner interaction record from the event log."""

    id: str
    learner_id: str
    timestamp: int
    event_type: EventType
    problem_id: str = ""
    error_subtype_id: Optional[str] = None
    hint_level: Optional[int] = None
    successful: Optional[bool] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.event_type, EventType):
            object.__setattr__(self, "event_type", EventType(self.event_type))


@dataclass(frozen=True)
class LearningOutcome:
    """Per-problem outcome produced by grading logic, consumed once by the reward calculator."""

    solved: bool
    used_explanation: bool
    error_count: int
    baseline_errors: float
    time_spent_ms: float
    median_time_ms: float
    hdi_score: float


@dataclass(frozen=True)
class ConceptCandidate:
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class SourcePassage:
    doc_id: str
    page: int
    text: str
    chunk_id: str = ""
    score: float = 0.0


@dataclass(frozen=True)
class HintHistoryEntry:
    hint_level: int
    hint_text: str
    interaction_id: str = ""


@dataclass
class RetrievalBundle:
    """Grounding context assembled by the external retrieval pipeline."""

    learner_id: str
    problem_id: str
    problem_title: str = ""
    schema_text: str = ""
    last_error_subtype_id: str = ""
    concept_candidates: List[ConceptCandidate] = field(default_factory=list)
    source_passages: List[SourcePassage] = field(default_factory=list)
    pdf_passages: List[SourcePassage] = field(default_factory=list)
    retrieved_source_ids: List[str] = field(default_factory=list)
    hint_history: List[HintHistoryEntry] = field(default_factory=list)
    why_retrieved: Dict[str, Any] = field(default_factory=dict)
    concept_source_refs: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def has_sources(self) -> bool:
        return bool(self.source_passages or self.pdf_passages or self.retrieved_source_ids)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetrievalBundle":
        """Build a bundle from a JSON-style mapping (snake_case keys)."""
        return cls(
            learner_id=str(data.get("learner_id", "")),
            problem_id=str(data.get("problem_id", "")),
            problem_title=str(data.get("problem_title", "")),
            schema_text=str(data.get("schema_text", "")),
            last_error_subtype_id=str(data.get("last_error_subtype_id", "")),
            concept_candidates=[ConceptCandidate(**c) for c in data.get("concept_candidates", [])],
            source_passages=[SourcePassage(**p) for p in data.get("source_passages", [])],
            pdf_passages=[SourcePassage(**p) for p in data.get("pdf_passages", [])],
            retrieved_source_ids=[str(s) for s in data.get("retrieved_source_ids", [])],
            hint_history=[HintHistoryEntry(**h) for h in data.get("hint_history", [])],
            why_retrieved=dict(data.get("why_retrieved", {})),
            concept_source_refs={k: list(v) for k, v in data.get("concept_source_refs", {}).items()},
        )


def sort_events(interactions: Sequence[InteractionEvent]) -> List[InteractionEvent]:
    """Return interactions in chronological order (stable for equal timestamps)."""
    return sorted(interactions, key=lambda e: e.timestamp)


def _optional(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _id_text(value: Any) -> Optional[str]:
    # integer id columns with gaps are read back as floats
    value = _optional(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def events_from_frame(events_df: pd.DataFrame) -> List[InteractionEvent]:
    """
    Convert an event-log DataFrame into InteractionEvent records.

    Expected columns: learner_id, timestamp, event_type. Optional columns:
    id, problem_id, error_subtype_id, hint_level, successful. Datetime
    timestamps are converted to epoch milliseconds.
    """
    if events_df is None or events_df.empty:
        return []

    df = events_df.copy()
    if pd.api.types.is_datetime64_any_dtype(df["timestamp"]):
        stamps = df["timestamp"]
        if stamps.dt.tz is not None:
            stamps = stamps.dt.tz_convert(None)
        df["timestamp"] = (stamps - pd.Timestamp("1970-01-01")) // pd.Timedelta(milliseconds=1)

    events: List[InteractionEvent] = []
    for position, (_, row) in enumerate(df.iterrows()):
        hint_level = _optional(row.get("hint_level"))
        successful = _optional(row.get("successful"))
        subtype = _id_text(row.get("error_subtype_id"))
        event_id = _id_text(row.get("id"))
        events.append(
            InteractionEvent(
                id=event_id if event_id is not None else f"evt-{position}",
                learner_id=_id_text(row["learner_id"]) or "",
                timestamp=int(row["timestamp"]),
                event_type=EventType(row["event_type"]),
                problem_id=_id_text(row.get("problem_id")) or "",
                error_subtype_id=subtype,
                hint_level=int(hint_level) if hint_level is not None else None,
                successful=bool(successful) if successful is not None else None,
            )
        )
    return events
