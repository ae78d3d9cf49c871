"""Completion-service contract, OpenAI adapter and prompts."""

from .completion import (
    CompletionService,
    OpenAICompletionService,
    complete_json,
    complete_text,
    parse_json_object,
    strip_code_fences,
)
from .prompts import (
    COMPRESSION_PROMPT,
    EXTRACTION_PROMPT,
    SESSION_SUMMARY_PROMPT,
    build_compression_prompt,
)

__all__ = [
    "CompletionService",
    "OpenAICompletionService",
    "complete_json",
    "complete_text",
    "parse_json_object",
    "strip_code_fences",
    "EXTRACTION_PROMPT",
    "SESSION_SUMMARY_PROMPT",
    "COMPRESSION_PROMPT",
    "build_compression_prompt",
]
