from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from ..chat.llm import ChatMessage, OllamaChatClient
from ..graph.keywords import SUMMARY_FIELDS


logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 15_000

CATEGORIES = (
    "Science",
    "Technology",
    "Artificial Intelligence",
    "Business",
    "Health",
    "Education",
    "Politics",
    "Environment",
    "Arts",
    "Sports",
    "Other",
)

SYSTEM_PROMPT = (
    "You summarize and categorize documents for a personal knowledge base.\n"
    "Ignore navigation, boilerplate and footers; focus on the main content.\n"
    "Choose exactly one category from: " + ", ".join(CATEGORIES) + ".\n"
    "\n"
    "Respond with ONLY a JSON object, no markdown and no commentary, shaped as:\n"
    "{\n"
    '  "summary_text": "a concise summary (max 250 words)",\n'
    '  "summary_json": {\n'
    '    "key_points": ["point 1", "point 2", "point 3"],\n'
    '    "main_ideas": ["idea 1", "idea 2"],\n'
    '    "insights": ["insight 1", "insight 2"]\n'
    "  },\n"
    '  "category": "one of the categories above"\n'
    "}"
)

_FENCED_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class SummaryError(ValueError):
    pass


@dataclass(frozen=True)
class StructuredSummary:
    summary_text: str
    summary_json: dict[str, list[str]]
    category: str


def _json_candidate(text: str) -> str:
    m = _FENCED_RE.search(text)
    if m:
        return m.group(1)
    m = _OBJECT_RE.search(text)
    if m:
        return m.group(0)
    return text


def parse_summary(raw: str) -> StructuredSummary:
    """Parse an LLM reply into a StructuredSummary or raise SummaryError."""
    try:
        data = json.loads(_json_candidate(raw))
    except ValueError as e:
        raise SummaryError(f"Failed to parse AI response: {e}") from e
    if not isinstance(data, dict):
        raise SummaryError("AI returned invalid content structure")

    summary_text = data.get("summary_text")
    summary_json = data.get("summary_json")
    category = data.get("category")

    # Some models return the nested object as a JSON string.
    if isinstance(summary_json, str):
        try:
            summary_json = json.loads(summary_json)
        except ValueError:
            logger.warning("summary_json was an unparseable string; using empty arrays")
            summary_json = {}

    if not isinstance(summary_text, str) or not isinstance(summary_json, dict) or not category:
        raise SummaryError("AI returned invalid content structure")

    fields: dict[str, list[str]] = {}
    for name in SUMMARY_FIELDS:
        value = summary_json.get(name)
        fields[name] = [str(v) for v in value] if isinstance(value, list) else []

    category = str(category).strip()
    if category not in CATEGORIES:
        logger.warning("Invalid category, defaulting to 'Other': %s", category)
        category = "Other"

    return StructuredSummary(summary_text=summary_text.strip(), summary_json=fields, category=category)


class Summarizer:
    def __init__(self, llm: OllamaChatClient):
        self.llm = llm

    def summarize(self, text: str, *, source: str = "") -> StructuredSummary:
        body = text[:MAX_INPUT_CHARS]
        label = f" from {source}" if source else ""
        msgs = [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            ChatMessage(role="user", content=f"Process this text content{label}:\n\n{body}"),
        ]
        raw = self.llm.chat(msgs, json_mode=True)
        return parse_summary(raw)

