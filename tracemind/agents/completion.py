"""
Completion service contract and the OpenAI-compatible implementation

The memory pipeline only needs two things from a language model: free text
(session summaries, compressions) and a JSON object (core-memory extraction).
Anything that implements :class:`CompletionService` can be plugged in; tests use
scripted fakes.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from ..utils.exceptions import CompletionError

Message = Mapping[str, str]


@runtime_checkable
class CompletionService(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        *,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""

    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(text: str | None) -> dict[str, Any]:
    """Parse a completion into a JSON object or raise :class:`CompletionError`."""

    if not text or not text.strip():
        raise CompletionError("Empty response from model")
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise CompletionError(
            f"Model returned malformed JSON: {e}",
            context={"preview": text[:200]},
        ) from e
    if not isinstance(parsed, dict):
        raise CompletionError(
            "Model returned JSON that is not an object",
            context={"received": type(parsed).__name__},
        )
    return parsed


async def _request(
    service: CompletionService,
    system_prompt: str,
    messages: Sequence[Message],
    **kwargs: Any,
) -> str:
    try:
        return await service.complete(system_prompt, messages, **kwargs)
    except CompletionError:
        raise
    except Exception as e:
        raise CompletionError(
            f"Completion service failed: {e}",
            context={"error_type": type(e).__name__},
        ) from e


async def complete_json(
    service: CompletionService,
    system_prompt: str,
    messages: Sequence[Message],
    **kwargs: Any,
) -> dict[str, Any]:
    """Request a JSON object from ``service`` and parse it strictly."""

    text = await _request(service, system_prompt, messages, json_mode=True, **kwargs)
    return parse_json_object(text)


async def complete_text(
    service: CompletionService,
    system_prompt: str,
    messages: Sequence[Message],
    **kwargs: Any,
) -> str:
    """Request free text from ``service``; empty output raises."""

    text = await _request(service, system_prompt, messages, **kwargs)
    if not text or not text.strip():
        raise CompletionError("Empty response from model")
    return text.strip()


class OpenAICompletionService:
    """Completion service backed by any OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout
        )

    @classmethod
    def from_settings(cls, agents: Any) -> OpenAICompletionService:
        """Build from :class:`~tracemind.config.settings.AgentSettings`."""
        return cls(
            api_key=agents.openai_api_key,
            model=agents.default_model,
            base_url=agents.base_url,
            timeout=float(agents.timeout_seconds),
        )

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        *,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}]
            + [{"role": m["role"], "content": m["content"]} for m in messages],
        }
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            completion = await self.client.chat.completions.create(**request)
        except OpenAIError as e:
            raise CompletionError(f"Completion request failed: {e}", model=self.model) from e

        if not completion.choices:
            raise CompletionError("Completion returned no choices", model=self.model)
        content = completion.choices[0].message.content or ""
        logger.debug(f"Completion from {self.model}: {len(content)} chars")
        return content


__all__ = [
    "CompletionService",
    "OpenAICompletionService",
    "strip_code_fences",
    "parse_json_object",
    "complete_json",
    "complete_text",
]
