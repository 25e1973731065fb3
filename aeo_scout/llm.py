# File: aeo_scout/llm.py
"""aeo_scout.llm: text-completion contract used by the preparer and the AI scorer.

Anything with an ``async complete(request) -> CompletionResponse`` method is a
valid :class:`LLMClient`. :class:`OpenAIClient` is the production adapter; tests
pass small fakes.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI, OpenAIError

from aeo_scout.errors import AiResponseParseError, LlmError
from aeo_scout.logger import LOGGER_NAME

__all__ = [
    "DEFAULT_MODEL",
    "TokenUsage",
    "CompletionRequest",
    "CompletionResponse",
    "LLMClient",
    "OpenAIClient",
    "parse_json_response",
]

DEFAULT_MODEL = "gpt-4o-mini"

_log = logging.getLogger(LOGGER_NAME)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S | re.I)


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
        )


@dataclass(slots=True, frozen=True)
class CompletionRequest:
    system_prompt: str
    user_prompt: str
    max_tokens: int = 2000
    temperature: float = 0.3
    structured_output: bool = True


@dataclass(slots=True, frozen=True)
class CompletionResponse:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


@runtime_checkable
class LLMClient(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...


class OpenAIClient:
    """Chat-completions adapter over :class:`openai.AsyncOpenAI`."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncOpenAI] = None,
        timeout: float = 60.0,
    ) -> None:
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=2)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.structured_output:
            params["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**params)
        except OpenAIError as exc:
            raise LlmError(f"completion request failed: {exc}") from exc

        if not response.choices:
            raise LlmError("completion returned no choices")
        usage = response.usage
        _log.debug(
            "LLM %s: %s prompt / %s completion tokens",
            response.model,
            getattr(usage, "prompt_tokens", 0),
            getattr(usage, "completion_tokens", 0),
        )
        return CompletionResponse(
            content=response.choices[0].message.content or "",
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=response.model or self.model,
        )

    async def close(self) -> None:
        await self._client.close()


def parse_json_response(content: str) -> Dict[str, Any]:
    """Decode a JSON object from *content*, tolerating a markdown code fence."""
    text = (content or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise AiResponseParseError(f"response is not valid JSON: {exc}", raw=content) from exc
    if not isinstance(data, dict):
        raise AiResponseParseError("response JSON is not an object", raw=content)
    return data
