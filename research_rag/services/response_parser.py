# =============================================================================
# Model Output Parser — JSON out of free-form LLM text
# =============================================================================
#
# Chat models are asked for JSON but frequently wrap it in Markdown fences,
# prefix it with prose ("Here is the analysis:"), or trail off with a
# sentence after the closing brace. All of that string surgery lives here,
# so call sites only ever see a tagged result:
#
#   ParsedJSON(value)                 — a dict or list was recovered
#   MalformedResponse(raw_text, ...)  — nothing usable; carries the raw text
#
# Steps:
#   1. Strip a leading ```json / ``` fence and a trailing ``` fence
#   2. Locate the outermost {...} (or [...] when an array is expected)
#   3. json.loads() the span
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Literal, Union

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^\s*```(?:json|JSON)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")

# How much of an unparseable response to keep in log lines
_LOG_EXCERPT = 500


@dataclass(frozen=True)
class ParsedJSON:
    value: Any


@dataclass(frozen=True)
class MalformedResponse:
    raw_text: str
    reason: str


ParseResult = Union[ParsedJSON, MalformedResponse]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    cleaned = _FENCE_OPEN.sub("", text, count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def _outermost_span(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def parse_json_response(
    text: str | None,
    expect: Literal["object", "array", "any"] = "any",
) -> ParseResult:
    """
    Recover a JSON value from model output.

    Args:
        text: Raw completion text.
        expect: "object" only accepts a dict, "array" only a list,
            "any" tries an object span first, then an array span.

    Returns:
        ParsedJSON on success, MalformedResponse otherwise. Never raises.
    """
    raw = text or ""
    cleaned = strip_code_fences(raw)

    if expect == "object":
        delimiters = [("{", "}")]
    elif expect == "array":
        delimiters = [("[", "]")]
    else:
        delimiters = [("{", "}"), ("[", "]")]

    reason = "no JSON span found"
    for opener, closer in delimiters:
        span = _outermost_span(cleaned, opener, closer)
        if span is None:
            continue
        try:
            value = json.loads(span)
        except json.JSONDecodeError as e:
            reason = f"invalid JSON: {e.msg} at position {e.pos}"
            continue

        if expect == "object" and not isinstance(value, dict):
            reason = "expected a JSON object"
            continue
        if expect == "array" and not isinstance(value, list):
            reason = "expected a JSON array"
            continue
        return ParsedJSON(value)

    logger.warning(
        "Malformed model response (%s): %r", reason, raw[:_LOG_EXCERPT]
    )
    return MalformedResponse(raw_text=raw, reason=reason)
