# ABOUTME: Guidance package: three-rung ladder state machine and grounded LLM contracts.
# ABOUTME: Re-exports ladder transitions and the generation entry points.

from .contracts import (
    LLMGuidanceOutput,
    generate_fallback_content,
    generate_guidance,
    parse_llm_output,
    validate_llm_output,
)
from .ladder import (
    EscalationEvidence,
    EscalationTrigger,
    GuidanceLadderState,
    GuidanceRung,
    can_escalate,
    create_initial_ladder_state,
    determine_next_action,
    escalate,
    record_rung_attempt,
)

__all__ = [
    "EscalationEvidence",
    "EscalationTrigger",
    "GuidanceLadderState",
    "GuidanceRung",
    "LLMGuidanceOutput",
    "can_escalate",
    "create_initial_ladder_state",
    "determine_next_action",
    "escalate",
    "generate_fallback_content",
    "generate_guidance",
    "parse_llm_output",
    "record_rung_attempt",
    "validate_llm_output",
]
