# ABOUTME: Provider adapters turning LLM settings into an async prompt -> completion callable.
# ABOUTME: Supports OpenAI and Anthropic clients plus a synchronous guidance wrapper.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

import anthropic
import openai

from src.common.config import LLMSettings
from src.common.schemas import RetrievalBundle

from .contracts import LLMCall, LLMGuidanceOutput, generate_guidance

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-3-haiku-20240307"


def _strip_code_fence(content: str) -> str:
    # Some models wrap the whole answer in a fence; rung 3 examples keep their inner fences.
    stripped = content.strip()
    if stripped.startswith("```") and stripped.endswith("```") and stripped.count("```") == 2:
        body = stripped[3:-3]
        return body.split("\n", 1)[1] if "\n" in body else body
    return content


def make_llm_call(settings: LLMSettings) -> LLMCall:
    """
    Build the async generation call for the configured provider.

    A missing API key surfaces as ValueError when the call is awaited, so
    generate_guidance turns it into fallback content.
    """
    provider = settings.provider.lower()
    if provider not in ("openai", "anthropic"):
        raise ValueError(f"Unsupported LLM provider: {settings.provider}")

    async def call(prompt: str) -> str:
        api_key = settings.resolve_api_key()
        if provider == "anthropic":
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY not set")
            client = anthropic.AsyncAnthropic(api_key=api_key)
            model = settings.model if settings.model.startswith("claude") else DEFAULT_ANTHROPIC_MODEL
            response = await client.messages.create(
                model=model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            content = response.content[0].text
        else:  # OpenAI
            if not api_key:
                raise ValueError("OPENAI_API_KEY not set")
            client = openai.AsyncOpenAI(api_key=api_key)
            response = await client.chat.completions.create(
                model=settings.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
            )
            content = response.choices[0].message.content or ""
        logger.debug("%s returned %d characters", provider, len(content))
        return _strip_code_fence(content)

    return call


def generate_guidance_sync(
    rung: int,
    bundle: RetrievalBundle,
    settings: Optional[LLMSettings] = None,
    escalation_history: Optional[Sequence[Dict[str, Any]]] = None,
) -> LLMGuidanceOutput:
    """Synchronous wrapper."""
    llm_call = make_llm_call(settings or LLMSettings())
    return asyncio.run(generate_guidance(rung, bundle, llm_call, escalation_history))
