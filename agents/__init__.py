"""Inference adapters.

InsightAgent:
    One structured inference call per item, through PydanticAI for remote
    models or a direct OpenAI-compatible call for local servers.

parse_insight_text:
    Recovers an InsightDraft from a free-text JSON reply.

Example:
    >>> from agents import InsightAgent
    >>> agent = InsightAgent(config.insight_model)
"""

from agents.insight import InsightAgent
from agents.parsing import InsightParseError, parse_insight_text

__all__ = [
    "InsightAgent",
    "InsightParseError",
    "parse_insight_text",
]
