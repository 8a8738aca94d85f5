"""Parsing of free-text model replies into insight drafts.

Structured-output models hand back a validated InsightDraft directly. Local
OpenAI-compatible servers return plain text instead, usually JSON, sometimes
wrapped in a markdown fence or surrounded by commentary. This module recovers
the JSON object and validates it; enumerated fields are normalized by the
draft model itself, so only a reply with no usable JSON object fails.
"""

import json
import re

from models.insight import InsightDraft

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class InsightParseError(ValueError):
    """The reply did not contain a JSON object."""


def _extract_json_text(text: str) -> str:
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        return fenced.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise InsightParseError("no JSON object in model reply")
    return text[start:end + 1]


def parse_insight_text(text: str | None) -> InsightDraft:
    """Parse a model reply into an InsightDraft.

    Args:
        text: Raw reply content

    Returns:
        Normalized draft

    Raises:
        InsightParseError: If no JSON object can be decoded from the reply
    """
    if not text or not text.strip():
        raise InsightParseError("empty model reply")

    candidate = _extract_json_text(text.strip())
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise InsightParseError(f"invalid JSON in model reply: {e.msg}") from e
    if not isinstance(data, dict):
        raise InsightParseError(f"expected a JSON object, got {type(data).__name__}")

    return InsightDraft.model_validate(data)
