# ABOUTME: Grounded generation contract for LLM guidance: parse, validate, and fall back.
# ABOUTME: Ensures every concept and source cited by generated text exists in the retrieval bundle.

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from src.common.schemas import EventType, RetrievalBundle

from .ladder import RUNG_DEFINITIONS, GuidanceRung
from .prompts import PROMPT_TEMPLATES, render_rung_prompt

logger = logging.getLogger(__name__)

LLM_CONTRACT_VERSION = "llm-contract-grounded-v1"

FALLBACK_REASON_EMPTY_RETRIEVAL = "Retrieval bundle empty or insufficient sources"
FALLBACK_REASON_INVALID_OUTPUT = "Generated output failed contract validation"

LLMCall = Callable[[str], Awaitable[str]]

FALLBACK_MESSAGES = {
    1: "Try breaking down your query step by step. Start with SELECT, then add FROM.",
    2: (
        "I don't have a textbook source for this specific error yet. Try checking your syntax - "
        "common issues include missing commas, unmatched brackets, or incorrect table names. "
        "If you're stuck, try a simpler version of your query first."
    ),
    3: (
        "## Summary\n"
        "This type of error doesn't have a documented pattern in our textbook yet.\n\n"
        "## Common Mistakes\n"
        "- Syntax errors (check commas, brackets)\n"
        "- Misspelled table or column names\n"
        "- Missing required clauses\n\n"
        "## Minimal Example\n"
        "```sql\n"
        "-- Start with a simple query\n"
        "SELECT * FROM table_name;\n\n"
        "-- Then add complexity gradually\n"
        "```\n\n"
        "## Key Takeaway\n"
        "Build queries incrementally - start simple and add complexity one step at a time."
    ),
}

_CONCEPT_IDS_RE = re.compile(r"conceptIds:\s*\[([^\]]*)\]", re.IGNORECASE)
_SOURCE_REF_IDS_RE = re.compile(r"sourceRefIds:\s*\[([^\]]*)\]", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedOutput:
    content: str
    concept_ids: List[str]
    source_ref_ids: List[str]


@dataclass(frozen=True)
class LLMOutputMetadata:
    grounded: bool
    source_ref_ids_count: int
    concept_ids_count: int
    ungrounded_concepts: List[str] = field(default_factory=list)
    ungrounded_sources: List[str] = field(default_factory=list)
    contract_version: str = LLM_CONTRACT_VERSION
    validation_errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    metadata: LLMOutputMetadata


@dataclass(frozen=True)
class LLMGuidanceOutput:
    content: str
    concept_ids: List[str]
    source_ref_ids: List[str]
    metadata: LLMOutputMetadata
    fallback_used: bool = False
    fallback_reason: Optional[str] = None


def _split_ids(raw: str) -> List[str]:
    return [part.strip().strip("\"'") for part in raw.split(",") if part.strip().strip("\"'")]


def parse_llm_output(raw_output: str) -> ParsedOutput:
    """
    Pull the trailing conceptIds / sourceRefIds bracket lists out of raw model text.

    Both lists are removed from the returned content; missing lists parse as empty.
    """
    content = raw_output
    concept_ids: List[str] = []
    source_ref_ids: List[str] = []

    match = _CONCEPT_IDS_RE.search(raw_output)
    if match:
        content = content.replace(match.group(0), "", 1)
        concept_ids = _split_ids(match.group(1))

    match = _SOURCE_REF_IDS_RE.search(raw_output)
    if match:
        content = content.replace(match.group(0), "", 1)
        source_ref_ids = _split_ids(match.group(1))

    return ParsedOutput(content=content.strip(), concept_ids=concept_ids, source_ref_ids=source_ref_ids)


def _has_section(content: str, section: str) -> bool:
    return re.search(rf"^\s*#*\s*{re.escape(section)}\b", content, re.IGNORECASE | re.MULTILINE) is not None


def validate_llm_output(output: ParsedOutput, rung: int, bundle: RetrievalBundle) -> ValidationResult:
    """
    Check parsed output against the rung's contract and the bundle's grounding sets.

    Rung 1 is grounded when it names at least one concept. Rungs 2 and 3 are
    grounded when they cite at least one source and every cited source came
    from the bundle.
    """
    template = PROMPT_TEMPLATES[int(rung)]
    errors: List[str] = []

    if "concept_ids" in template.required_fields and not output.concept_ids:
        errors.append("Missing required field: conceptIds")
    if "source_ref_ids" in template.required_fields and not output.source_ref_ids:
        errors.append(f"Missing required field: sourceRefIds (required for rung {int(rung)})")

    if len(output.content) > template.max_output_length:
        errors.append(
            f"Content length ({len(output.content)}) exceeds rung {int(rung)} maximum ({template.max_output_length})"
        )

    for section in template.required_sections:
        if not _has_section(output.content, section):
            errors.append(f"Missing required section: {section}")

    bundle_concepts = {c.id for c in bundle.concept_candidates}
    ungrounded_concepts = [cid for cid in output.concept_ids if cid not in bundle_concepts]
    if ungrounded_concepts:
        errors.append(
            f"Ungrounded concepts introduced: {', '.join(ungrounded_concepts)} (not in retrieval bundle)"
        )

    bundle_sources = set(bundle.retrieved_source_ids)
    ungrounded_sources = [sid for sid in output.source_ref_ids if sid not in bundle_sources]
    if ungrounded_sources:
        errors.append(f"Ungrounded sources cited: {', '.join(ungrounded_sources)} (not in retrieval bundle)")

    if int(rung) == 1:
        grounded = len(output.concept_ids) > 0
    else:
        grounded = len(output.source_ref_ids) > 0 and not ungrounded_sources

    metadata = LLMOutputMetadata(
        grounded=grounded,
        source_ref_ids_count=len(output.source_ref_ids),
        concept_ids_count=len(output.concept_ids),
        ungrounded_concepts=ungrounded_concepts,
        ungrounded_sources=ungrounded_sources,
        validation_errors=errors,
    )
    return ValidationResult(valid=not errors, metadata=metadata)


def generate_fallback_content(rung: int, error_subtype: Optional[str] = None) -> LLMGuidanceOutput:
    """Canned, explicitly ungrounded guidance for when generation cannot be trusted."""
    concept_ids = ["syntax-error"] if error_subtype else []
    return LLMGuidanceOutput(
        content=FALLBACK_MESSAGES[int(rung)],
        concept_ids=concept_ids,
        source_ref_ids=[],
        metadata=LLMOutputMetadata(
            grounded=False,
            source_ref_ids_count=0,
            concept_ids_count=len(concept_ids),
        ),
        fallback_used=True,
        fallback_reason=FALLBACK_REASON_EMPTY_RETRIEVAL,
    )


async def generate_guidance(
    rung: int,
    bundle: RetrievalBundle,
    llm_call: LLMCall,
    escalation_history: Optional[Sequence[Dict[str, Any]]] = None,
) -> LLMGuidanceOutput:
    """
    Generate guidance for a rung under the grounding contract.

    Never raises for generation problems. Rungs 2 and 3 without any retrieved
    source skip the call entirely; invalid rung 2/3 output and call failures
    degrade to fallback content. Rung 1 returns parsed output even when it is
    weakly grounded.
    """
    rung = int(rung)
    if rung >= 2 and not bundle.has_sources:
        logger.warning("No sources for rung %d guidance on %s; using fallback", rung, bundle.problem_id)
        return generate_fallback_content(rung, bundle.last_error_subtype_id)

    prompt = render_rung_prompt(rung, bundle, escalation_history)

    try:
        raw_output = await llm_call(prompt)
        if not isinstance(raw_output, str):
            raise TypeError(f"LLM returned {type(raw_output).__name__} instead of text")
    except Exception as exc:
        logger.warning("Guidance generation failed for rung %d: %s", rung, exc)
        return replace(
            generate_fallback_content(rung, bundle.last_error_subtype_id),
            fallback_reason=str(exc) or "LLM call failed",
        )

    parsed = parse_llm_output(raw_output)
    validation = validate_llm_output(parsed, rung, bundle)

    if rung >= 2 and not validation.valid:
        logger.warning(
            "Rung %d output rejected: %s", rung, "; ".join(validation.metadata.validation_errors)
        )
        return replace(
            generate_fallback_content(rung, bundle.last_error_subtype_id),
            metadata=replace(validation.metadata, grounded=False),
            fallback_reason=FALLBACK_REASON_INVALID_OUTPUT,
        )

    return LLMGuidanceOutput(
        content=parsed.content,
        concept_ids=parsed.concept_ids,
        source_ref_ids=parsed.source_ref_ids,
        metadata=validation.metadata,
        fallback_used=False,
    )


def create_llm_log_entry(
    output: LLMGuidanceOutput,
    rung: int,
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    """llm_generate event for replay and offline analysis."""
    return {
        "event_type": EventType.LLM_GENERATE.value,
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
        "rung": int(rung),
        "grounded": output.metadata.grounded,
        "source_ref_ids_count": output.metadata.source_ref_ids_count,
        "concept_ids_count": output.metadata.concept_ids_count,
        "fallback_used": output.fallback_used,
        "fallback_reason": output.fallback_reason,
        "contract_version": LLM_CONTRACT_VERSION,
    }


_EXPLANATION_INDICATORS = (
    re.compile(r"\b(because|since|therefore|this is why)\b", re.IGNORECASE),
    re.compile(r"\b(step|first|second|third|finally)\b", re.IGNORECASE),
    re.compile(r"\b(concept|definition|means|refers to)\b", re.IGNORECASE),
    re.compile(r"[.!?]\s+[A-Z].{20,}[.!?]"),
)
_SOURCE_CITATION = re.compile(r"\b(page|chapter|see|source|textbook|according to)\b", re.IGNORECASE)


def validate_content_for_rung(content: str, rung: int) -> Tuple[bool, List[str]]:
    """Heuristic check that content reads like its rung (hint vs explanation)."""
    rung = GuidanceRung(int(rung))
    max_length = RUNG_DEFINITIONS[rung]["max_length"]
    violations: List[str] = []

    if len(content) > max_length:
        violations.append(f"Content length ({len(content)}) exceeds rung {int(rung)} maximum ({max_length})")

    if rung == GuidanceRung.MICRO_HINT and len(content) > 100:
        if any(pattern.search(content) for pattern in _EXPLANATION_INDICATORS):
            violations.append("Rung 1 content appears to contain explanation-length material")

    if rung == GuidanceRung.EXPLANATION and len(content) > 200 and not _SOURCE_CITATION.search(content):
        violations.append("Rung 2 content should cite sources (page, chapter, etc.)")

    return not violations, violations
