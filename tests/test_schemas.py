# ABOUTME: Tests shared schemas: event coercion, ordering, frame conversion, and bundles.
# ABOUTME: Ensures event logs from pandas map cleanly onto InteractionEvent records.

import pandas as pd
import pytest

from src.common.schemas import (
    EventType,
    InteractionEvent,
    RetrievalBundle,
    events_from_frame,
    sort_events,
)


def test_event_type_coerced_from_string():
    event = InteractionEvent(id="e1", learner_id="l1", timestamp=1, event_type="hint_request")
    assert event.event_type is EventType.HINT_REQUEST


def test_unknown_event_type_rejected():
    with pytest.raises(ValueError):
        InteractionEvent(id="e1", learner_id="l1", timestamp=1, event_type="teleport")


def test_sort_events_is_stable():
    a = InteractionEvent("a", "l1", 5, "error")
    b = InteractionEvent("b", "l1", 1, "execution")
    c = InteractionEvent("c", "l1", 5, "execution")
    assert [e.id for e in sort_events([a, b, c])] == ["b", "a", "c"]


def test_events_from_frame_handles_missing_values():
    df = pd.DataFrame(
        {
            "learner_id": ["l1", "l1"],
            "timestamp": [1000, 2000],
            "event_type": ["error", "hint_view"],
            "problem_id": ["p1", "p1"],
            "error_subtype_id": ["typo", None],
            "hint_level": [None, 2],
        }
    )
    events = events_from_frame(df)
    assert [e.event_type for e in events] == [EventType.ERROR, EventType.HINT_VIEW]
    assert events[0].error_subtype_id == "typo"
    assert events[0].hint_level is None
    assert events[1].hint_level == 2
    assert events[1].error_subtype_id is None
    assert events[0].id == "evt-0"


def test_events_from_frame_keeps_integer_ids_with_gaps():
    df = pd.DataFrame(
        {
            "learner_id": [7, 7],
            "timestamp": [1000, 2000],
            "event_type": ["error", "execution"],
            "problem_id": [1, None],
        }
    )
    events = events_from_frame(df)
    assert [e.problem_id for e in events] == ["1", ""]
    assert events[0].learner_id == "7"


def test_events_from_frame_converts_datetimes():
    df = pd.DataFrame(
        {
            "learner_id": ["l1"],
            "timestamp": pd.to_datetime(["1970-01-01 00:00:01.500"], utc=True),
            "event_type": ["execution"],
            "successful": [True],
        }
    )
    event = events_from_frame(df)[0]
    assert event.timestamp == 1500
    assert event.successful is True
    assert event.problem_id == ""


def test_events_from_empty_frame():
    assert events_from_frame(pd.DataFrame()) == []


def test_bundle_from_dict():
    bundle = RetrievalBundle.from_dict(
        {
            "learner_id": "l1",
            "problem_id": "p1",
            "concept_candidates": [{"id": "joins", "name": "Joins"}],
            "pdf_passages": [{"doc_id": "book", "page": 3, "text": "..."}],
            "hint_history": [{"hint_level": 1, "hint_text": "Look at ON"}],
        }
    )
    assert bundle.concept_candidates[0].id == "joins"
    assert bundle.has_sources
    assert bundle.hint_history[0].hint_level == 1
    assert not RetrievalBundle(learner_id="l1", problem_id="p1").has_sources
