# File: aeo_scout/scoring/preparer.py
"""aeo_scout.scoring.preparer: shrink page content before AI scoring.

Short pages (token estimate at or below the threshold) are passed through
whole, prefixed by a structured context block. Long pages are replaced by an
LLM summary plus the same context; the reduction is reported, the body is
never cut.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Awaitable, Callable, List, Optional

import tiktoken

from aeo_scout.errors import LlmError
from aeo_scout.llm import DEFAULT_MODEL, CompletionRequest, CompletionResponse, LLMClient, TokenUsage
from aeo_scout.logger import LOGGER_NAME
from aeo_scout.parser.html_parser import ContentExtraction
from aeo_scout.utils import round_half_up

__all__ = [
    "STRUCTURED_ONLY",
    "AI_SUMMARIZED",
    "TokenCounter",
    "PreparedContent",
    "ContentPreparer",
    "structured_context",
]

STRUCTURED_ONLY = "structured-only"
AI_SUMMARIZED = "ai-summarized"

_FALLBACK_ENCODING = "cl100k_base"

_log = logging.getLogger(LOGGER_NAME)


@lru_cache(maxsize=8)
def _encoding_for(model: str) -> Optional[Any]:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        pass
    except Exception as exc:  # BPE files are fetched on first use
        _log.warning("tiktoken encoding for %s unavailable (%s); estimating tokens", model, exc)
        return None
    try:
        return tiktoken.get_encoding(_FALLBACK_ENCODING)
    except Exception as exc:
        _log.warning("tiktoken encoding %s unavailable (%s); estimating tokens", _FALLBACK_ENCODING, exc)
        return None


class TokenCounter:
    """Counts tokens with tiktoken; ``ceil(len / 4)`` when no encoding loads."""

    def __init__(self, model: str = DEFAULT_MODEL) -> None:
        self.model = model

    @property
    def exact(self) -> bool:
        return _encoding_for(self.model) is not None

    def count(self, text: str) -> int:
        if not text:
            return 0
        encoding = _encoding_for(self.model)
        if encoding is None:
            return math.ceil(len(text) / 4)
        return len(encoding.encode(text, disallowed_special=()))

    __call__ = count


@dataclass(slots=True, frozen=True)
class PreparedContent:
    content: str
    method: str
    original_tokens: int
    final_tokens: int
    reduction_percent: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens


def structured_context(extraction: ContentExtraction, word_count: Optional[int] = None) -> str:
    """Compact description of the page: title, meta, headings, FAQ sample, schema, links, words."""
    parts: List[str] = []
    if extraction.title:
        parts.append(f"Title: {extraction.title}")
    if extraction.meta_description:
        parts.append(f"Meta: {extraction.meta_description}")
    if extraction.headings:
        parts.append("Headings: " + ", ".join(f"{h.text} (H{h.level})" for h in extraction.headings[:10]))
    if extraction.faq:
        parts.append("FAQs: " + "; ".join(p.question for p in extraction.faq[:3]))
    if extraction.schema_types:
        parts.append("Schema: " + ", ".join(extraction.schema_types))
    parts.append(f"Links: {len(extraction.internal_links)} internal, {len(extraction.outbound_links)} external")
    parts.append(f"Words: {extraction.word_count if word_count is None else word_count}")
    return "\n".join(parts)


def _summary_system_prompt(target_words: int) -> str:
    return (
        "You are a content summarization expert. Your task is to create concise, accurate summaries "
        "of web page content.\n\n"
        "Guidelines:\n"
        "- Preserve key facts, entities, and concepts\n"
        "- Maintain technical accuracy\n"
        "- Focus on main topics and themes\n"
        "- Remove boilerplate, navigation, ads\n"
        f"- Target length: ~{target_words} words\n"
        "- Use clear, professional language\n\n"
        "Output only the summary text, no additional commentary."
    )


class ContentPreparer:
    """Decides between pass-through and LLM summary for one extraction."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        *,
        token_threshold: int = 1000,
        target_words: int = 300,
        temperature: float = 0.3,
        token_counter: Optional[Callable[[str], int]] = None,
    ) -> None:
        self.llm = llm
        self.token_threshold = token_threshold
        self.target_words = target_words
        self.temperature = temperature
        self.count_tokens = token_counter or TokenCounter()

    def needs_summary(self, text: str) -> bool:
        return self.count_tokens(text) > self.token_threshold

    async def prepare(
        self,
        extraction: ContentExtraction,
        page_type: str = "unknown",
        *,
        force_summarize: bool = False,
        complete: Optional[Callable[[CompletionRequest], Awaitable[CompletionResponse]]] = None,
    ) -> PreparedContent:
        """Pass *extraction* through or summarize it.

        *complete* заменяет ``self.llm.complete``: AiRubricScorer передаёт сюда
        свой вызов с семафором и таймаутом, чтобы summary подчинялся тем же лимитам.
        """
        body = extraction.body
        context = structured_context(extraction)
        original_tokens = self.count_tokens(body)

        if not force_summarize and original_tokens <= self.token_threshold:
            content = f"{context}\n\nMain Content:\n{body}"
            return PreparedContent(
                content=content,
                method=STRUCTURED_ONLY,
                original_tokens=original_tokens,
                final_tokens=original_tokens,
            )

        if complete is None and self.llm is not None:
            complete = self.llm.complete
        if complete is None:
            raise LlmError("content exceeds the token threshold and no LLM client is configured")

        page_type = str(getattr(page_type, "value", page_type))
        request = CompletionRequest(
            system_prompt=_summary_system_prompt(self.target_words),
            user_prompt=(
                f"Page Type: {page_type}\n\n"
                f"Structured Context:\n{context}\n\n"
                f"Full Content to Summarize:\n{body}"
            ),
            max_tokens=min(800, self.target_words * 2),
            temperature=self.temperature,
            structured_output=False,
        )
        response = await complete(request)
        summary = response.content.strip()
        summary_tokens = self.count_tokens(summary)
        reduction = (original_tokens - summary_tokens) / original_tokens * 100 if original_tokens else 0.0
        _log.debug(
            "Summarized %s: %d -> %d tokens (%.0f%%)", extraction.url, original_tokens, summary_tokens, reduction
        )
        return PreparedContent(
            content=f"{context}\n\nContent Summary:\n{summary}",
            method=AI_SUMMARIZED,
            original_tokens=original_tokens,
            final_tokens=summary_tokens,
            reduction_percent=round_half_up(reduction),
            usage=response.usage,
        )
