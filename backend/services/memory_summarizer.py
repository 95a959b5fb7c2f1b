"""
Summary generation for clusters of related memories.

Uses Claude (via AnthropicTextService) to condense a cluster's texts into a
single paragraph. MemorySummarizer owns prompt construction, the timeout, and
the "any failure means no summary" contract; the text service only talks to
the model.
"""

import asyncio
import logging
import math
from typing import Optional

from anthropic import AsyncAnthropic

from config import settings
from services.memory_types import GenerativeTextService, MemoryType

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an assistant that creates concise, informative summaries of CRM knowledge."

TYPE_FOCUS: dict[MemoryType, str] = {
    MemoryType.DECISION: "Focus on the key decisions, their rationale, and outcomes.",
    MemoryType.OBSERVATION: "Focus on the key observations, patterns, and insights.",
    MemoryType.FEEDBACK: "Focus on the main feedback points, sentiment, and actionable insights.",
    MemoryType.INTERACTION: "Focus on the key interactions, their context, and outcomes.",
    MemoryType.TACTIC: "Focus on the main tactics, their application, and effectiveness.",
    MemoryType.PREFERENCE: "Focus on the key preferences, their context, and implications.",
    MemoryType.INSIGHT: "Focus on the main insights, their significance, and applications.",
}
DEFAULT_FOCUS = "Focus on the key points and their significance."

# Rough estimate used to size max_tokens from a character budget
CHARS_PER_TOKEN = 4


def build_summary_prompt(texts: list[str], target_type: MemoryType, max_output_chars: int) -> str:
    """Build the user prompt for one cluster."""
    lines = [
        "Summarize the following related information into a single concise paragraph "
        f"of at most {max_output_chars} characters that captures what they have in common. "
        + TYPE_FOCUS.get(target_type, DEFAULT_FOCUS),
        "",
        "Information to summarize:",
    ]
    for i, text in enumerate(texts, start=1):
        lines.append(f"[{i}] {text}")
    return "\n".join(lines)


class AnthropicTextService:
    """GenerativeTextService backed by the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None) -> None:
        self._api_key = api_key or settings.ANTHROPIC_API_KEY
        self._model = model or settings.SUMMARIZATION_MODEL
        self._client: Optional[AsyncAnthropic] = None

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy-load the Anthropic client."""
        if self._client is None:
            if not self._api_key:
                raise ValueError("ANTHROPIC_API_KEY is required for memory summarization")
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def complete(self, prompt: str, max_output_chars: int) -> str:
        response = await self.client.messages.create(
            model=self._model,
            max_tokens=max(1, math.ceil(max_output_chars / CHARS_PER_TOKEN)),
            temperature=0.3,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

        for block in response.content:
            if block.type == "text":
                return block.text
        return ""


class MemorySummarizer:
    """Turns a list of memory texts into one summary string, or None."""

    def __init__(
        self,
        text_service: GenerativeTextService,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._text_service = text_service
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.SUMMARIZATION_TIMEOUT_SECONDS

    async def generate_summary(
        self,
        texts: list[str],
        target_type: MemoryType,
        max_output_chars: int,
    ) -> Optional[str]:
        """
        Generate a summary for ``texts``.

        Returns None without calling the text service when ``texts`` is
        empty, and None when the service errors, times out, or returns
        nothing. A single attempt is made; retries belong to the caller.
        """
        if not texts:
            return None

        prompt = build_summary_prompt(texts, target_type, max_output_chars)

        try:
            raw = await asyncio.wait_for(
                self._text_service.complete(prompt, max_output_chars),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[MemorySummarizer] Summary generation timed out after %.1fs (%d texts)",
                self._timeout,
                len(texts),
            )
            return None
        except Exception as e:
            logger.error("[MemorySummarizer] Summary generation failed: %s", e)
            return None

        summary = raw.strip() if isinstance(raw, str) else ""
        if not summary:
            logger.error("[MemorySummarizer] Empty summary generated")
            return None

        if len(summary) > max_output_chars:
            summary = summary[:max_output_chars].rstrip()

        return summary
