from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger(__name__)

# Anything that is not a letter, digit or whitespace becomes a space.
_PUNCT_RE = re.compile(r"[^\w\s]|_")

# Common long-ish words that carry no topical signal.
STOP_WORDS: frozenset[str] = frozenset(
    {
        "that",
        "this",
        "with",
        "from",
        "have",
        "their",
        "would",
        "about",
        "there",
        "which",
        "could",
        "other",
        "these",
        "those",
        "being",
        "should",
        "where",
        "while",
        "after",
        "before",
        "through",
        "during",
        "between",
    }
)

# Recognised summary keys, in extraction order.
SUMMARY_FIELDS: tuple[str, ...] = ("key_points", "main_ideas", "insights")


@dataclass(frozen=True)
class SummaryFields:
    """The parts of a structured summary the extractor understands."""

    key_points: tuple[str, ...] = ()
    main_ideas: tuple[str, ...] = ()
    insights: tuple[str, ...] = ()

    @classmethod
    def from_json(cls, summary: Any) -> "SummaryFields":
        if not isinstance(summary, Mapping):
            return cls()
        return cls(
            key_points=_string_items(summary.get("key_points")),
            main_ideas=_string_items(summary.get("main_ideas")),
            insights=_string_items(summary.get("insights")),
        )

    def sections(self) -> tuple[tuple[str, tuple[str, ...]], ...]:
        """(name, items) pairs in extraction order."""
        return (
            ("key_points", self.key_points),
            ("main_ideas", self.main_ideas),
            ("insights", self.insights),
        )


def _string_items(value: Any) -> tuple[str, ...]:
    # Only arrays of strings count; a bare string or a dict is ignored.
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(v for v in value if isinstance(v, str))


def tokenize(text: str, *, min_chars: int = 5) -> list[str]:
    cleaned = _PUNCT_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) >= min_chars]


class KeywordExtractor:
    def __init__(
        self,
        *,
        stop_words: frozenset[str] | set[str] = STOP_WORDS,
        min_chars: int = 5,
        max_keywords: int = 15,
        fields: tuple[str, ...] = SUMMARY_FIELDS,
    ):
        self.stop_words = frozenset(stop_words)
        self.min_chars = int(min_chars)
        self.max_keywords = int(max_keywords)
        self.fields = tuple(f for f in fields if f in SUMMARY_FIELDS)

    def extract(self, summary: Any) -> tuple[str, ...]:
        """Return up to ``max_keywords`` unique keywords, key points first.

        Never raises: malformed summaries yield an empty tuple.
        """
        try:
            return self._extract(SummaryFields.from_json(summary))
        except Exception:
            logger.exception("Error extracting keywords; using an empty keyword set")
            return ()

    def _extract(self, fields: SummaryFields) -> tuple[str, ...]:
        out: list[str] = []
        seen: set[str] = set()
        for name, items in fields.sections():
            if name not in self.fields:
                continue
            for text in items:
                for tok in tokenize(text, min_chars=self.min_chars):
                    if tok in self.stop_words or tok in seen:
                        continue
                    seen.add(tok)
                    out.append(tok)
                    if len(out) >= self.max_keywords:
                        return tuple(out)
        return tuple(out)
