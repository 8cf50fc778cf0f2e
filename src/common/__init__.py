# ABOUTME: Makes the shared common package importable across the policy engine.
# ABOUTME: Re-exports event, outcome, and retrieval bundle schema types for convenience.

from .schemas import (
    ConceptCandidate,
    EventType,
    HintHistoryEntry,
    InteractionEvent,
    LearningOutcome,
    RetrievalBundle,
    SourcePassage,
    events_from_frame,
    sort_events,
)

__all__ = [
    "ConceptCandidate",
    "EventType",
    "HintHistoryEntry",
    "InteractionEvent",
    "LearningOutcome",
    "RetrievalBundle",
    "SourcePassage",
    "events_from_frame",
    "sort_events",
]
