# ABOUTME: Rung-specific prompt templates for grounded SQL guidance generation.
# ABOUTME: Substitutes retrieval bundle fields into templates with prompt-injection sanitization.

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from src.common.schemas import RetrievalBundle


def sanitize_for_prompt(text: str, max_length: int = 100) -> str:
    """
    Sanitize user-provided text for safe inclusion in LLM prompts.

    Removes newlines, non-printable characters, and truncates to prevent
    prompt injection attacks.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length (default 100)

    Returns:
        Sanitized text safe for prompt inclusion
    """
    if not isinstance(text, str):
        text = str(text)

    text = text.replace("\n", " ").replace("\r", " ")
    text = "".join(char for char in text if char.isprintable() or char == " ")
    text = re.sub(r"\s+", " ", text)
    return text[:max_length].strip()


@dataclass(frozen=True)
class PromptTemplate:
    system: str
    user: str
    required_fields: Tuple[str, ...]
    max_output_length: int
    required_sections: Tuple[str, ...] = ()


RUNG3_SECTIONS = ("Summary", "Common Mistakes", "Minimal Example", "Key Takeaway")

PROMPT_TEMPLATES: Dict[int, PromptTemplate] = {
    1: PromptTemplate(
        system="""You are a SQL learning assistant providing brief micro-hints.

CONTRACT REQUIREMENTS (MUST FOLLOW):
1. Output MUST be under 150 characters
2. Include conceptIds[] array at the end
3. Do NOT provide full explanations, only brief nudges
4. Stay grounded in the provided retrieval bundle

VALID OUTPUT FORMAT:
[Brief hint text here]

conceptIds: ["concept-id-1"]""",
        user="""Retrieval Bundle:
- Error subtype: {{errorSubtype}}
- Problem: {{problemTitle}}
- Schema: {{schemaText}}
- Concept candidates: {{conceptCandidates}}
- PDF passages: {{pdfPassages}}
- Previous hints: {{hintHistory}}

Provide a brief micro-hint (max 150 chars) that nudges toward the solution without giving it away.""",
        required_fields=("concept_ids",),
        max_output_length=150,
    ),
    2: PromptTemplate(
        system="""You are a SQL learning assistant providing structured explanations.

CONTRACT REQUIREMENTS (MUST FOLLOW):
1. Output MUST be under 800 characters
2. MUST cite at least one source from the retrieval bundle
3. Include conceptIds[] array at the end
4. Include sourceRefIds[] array at the end
5. Do NOT provide copy-paste solutions
6. Explain the CONCEPT, not just the fix

VALID OUTPUT FORMAT:
[Your explanation here, citing sources like "(see textbook p.XX)"]

conceptIds: ["concept-id-1", "concept-id-2"]
sourceRefIds: ["doc:chunk:page"]

GROUNDING RULES:
- Every concept mentioned must have a corresponding sourceRefId
- Ungrounded explanations will be rejected""",
        user="""Retrieval Bundle:
- Error subtype: {{errorSubtype}}
- Problem: {{problemTitle}}
- Schema: {{schemaText}}
- Concept candidates: {{conceptCandidates}}
- Source passages: {{sourcePassages}}
- PDF passages: {{pdfPassages}}
- Why retrieved: {{whyRetrieved}}
- Previous hints: {{hintHistory}}

Provide a structured explanation (max 800 chars) that:
1. Explains the underlying concept
2. Cites specific sources from the retrieval bundle
3. Guides toward understanding without giving the full answer""",
        required_fields=("concept_ids", "source_ref_ids"),
        max_output_length=800,
    ),
    3: PromptTemplate(
        system="""You are a SQL learning assistant creating reflective notes for "My Textbook".

CONTRACT REQUIREMENTS (MUST FOLLOW):
1. Output MUST include ALL required sections
2. MUST cite all relevant sources from retrieval bundle
3. Include conceptIds[] array
4. Include sourceRefIds[] array with ALL cited sources

REQUIRED SECTIONS:
## Summary
## Common Mistakes
## Minimal Example
## Key Takeaway

VALID OUTPUT FORMAT:
## Summary
[Summary text]

## Common Mistakes
- Mistake 1: [description]

## Minimal Example
```sql
[SQL code]
```

## Key Takeaway
[Key rule]

conceptIds: ["concept-id-1"]
sourceRefIds: ["doc:chunk:page"]""",
        user="""Retrieval Bundle:
- Error subtype: {{errorSubtype}}
- Problem: {{problemTitle}}
- Schema: {{schemaText}}
- Concept candidates: {{conceptCandidates}}
- Source passages: {{sourcePassages}}
- Concept source refs: {{conceptSourceRefs}}
- PDF passages: {{pdfPassages}}
- Why retrieved: {{whyRetrieved}}
- Escalation history: {{escalationHistory}}

Create a reflective note (My Textbook unit) with a summary, common mistakes,
a minimal SQL example, and a key takeaway. Ensure all concepts are grounded
in the provided sources.""",
        required_fields=("concept_ids", "source_ref_ids"),
        max_output_length=2500,
        required_sections=RUNG3_SECTIONS,
    ),
}


def _format_passages(passages) -> str:
    return "\n".join(
        f"[{sanitize_for_prompt(p.doc_id, 50)} p.{p.page}]: {sanitize_for_prompt(p.text, 100)}..."
        for p in passages
    )


def build_prompt(
    template: str,
    bundle: RetrievalBundle,
    escalation_history: Optional[Sequence[Dict[str, Any]]] = None,
) -> str:
    """Fill {{placeholders}} in a template from the retrieval bundle."""
    values = {
        "errorSubtype": sanitize_for_prompt(bundle.last_error_subtype_id or "", 50),
        "problemTitle": sanitize_for_prompt(bundle.problem_title, 100),
        "schemaText": sanitize_for_prompt(bundle.schema_text, 500),
        "conceptCandidates": ", ".join(
            f"{sanitize_for_prompt(c.id, 50)} ({sanitize_for_prompt(c.name, 80)})"
            for c in bundle.concept_candidates
        ),
        "sourcePassages": _format_passages(bundle.source_passages),
        "pdfPassages": _format_passages(bundle.pdf_passages),
        "whyRetrieved": json.dumps(bundle.why_retrieved, indent=2, default=str),
        "hintHistory": "\n".join(
            f"Rung {h.hint_level}: {sanitize_for_prompt(h.hint_text, 50)}..." for h in bundle.hint_history
        ),
        "conceptSourceRefs": json.dumps(bundle.concept_source_refs, indent=2),
        "escalationHistory": json.dumps(list(escalation_history or []), default=str),
    }
    return re.sub(r"\{\{(\w+)\}\}", lambda m: values.get(m.group(1), m.group(0)), template)


def render_rung_prompt(
    rung: int,
    bundle: RetrievalBundle,
    escalation_history: Optional[Sequence[Dict[str, Any]]] = None,
) -> str:
    template = PROMPT_TEMPLATES[int(rung)]
    return template.system + "\n\n" + build_prompt(template.user, bundle, escalation_history)
