from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal


logger = logging.getLogger(__name__)

AUTO_LINK_TYPE = "auto"

LinkOrder = Literal["discovery", "strength"]


@dataclass(frozen=True)
class KeyedEntry:
    """An entry reduced to what the link builder compares."""

    id: str
    category: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class GraphLink:
    source_entry_id: str
    target_entry_id: str
    link_strength: float
    shared_keywords: tuple[str, ...]
    similarity: float
    link_type: str = AUTO_LINK_TYPE


@dataclass(frozen=True)
class LinkBuildResult:
    links: list[GraphLink]
    comparisons: int

    @property
    def candidates(self) -> int:
        return len(self.links)


def jaccard(a: Sequence[str], b: Sequence[str]) -> tuple[tuple[str, ...], float]:
    """Return (shared keywords in ``a`` order, Jaccard similarity).

    Two empty keyword lists have similarity 0.
    """
    set_b = set(b)
    shared = tuple(k for k in dict.fromkeys(a) if k in set_b)
    union = len(set(a) | set_b)
    if union == 0:
        return shared, 0.0
    return shared, len(shared) / union


class LinkBuilder:
    def __init__(
        self,
        *,
        min_similarity: float = 0.15,
        max_links: int = 1000,
        category_bonus: float = 0.1,
        min_shared: int = 2,
        order: LinkOrder = "discovery",
    ):
        if order not in ("discovery", "strength"):
            raise ValueError(f"order must be 'discovery' or 'strength', got {order!r}")
        if int(max_links) < 1:
            raise ValueError(f"max_links must be >= 1, got {max_links!r}")
        self.min_similarity = float(min_similarity)
        self.max_links = int(max_links)
        self.category_bonus = float(category_bonus)
        self.min_shared = int(min_shared)
        self.order = order

    def score(self, a: KeyedEntry, b: KeyedEntry) -> GraphLink | None:
        """Compare two entries; return a link if they clear the gate."""
        if a.id == b.id:
            return None

        shared, similarity = jaccard(a.keywords, b.keywords)
        # Gate on the raw similarity; the bonus never lets a pair through.
        if similarity < self.min_similarity or len(shared) < self.min_shared:
            return None

        bonus = self.category_bonus if a.category == b.category else 0.0
        strength = max(0.0, min(similarity + bonus, 1.0))
        return GraphLink(
            source_entry_id=a.id,
            target_entry_id=b.id,
            link_strength=strength,
            shared_keywords=shared,
            similarity=similarity,
        )

    def build(self, entries: Sequence[KeyedEntry]) -> LinkBuildResult:
        if self.order == "strength":
            return self._build_strongest(entries)

        links: list[GraphLink] = []
        comparisons = 0
        n = len(entries)
        for i in range(n):
            for j in range(i + 1, n):
                comparisons += 1
                link = self.score(entries[i], entries[j])
                if link is None:
                    continue
                links.append(link)
                if len(links) >= self.max_links:
                    logger.info("Reached maximum links limit (%d)", self.max_links)
                    return LinkBuildResult(links=links, comparisons=comparisons)

        return LinkBuildResult(links=links, comparisons=comparisons)

    def _build_strongest(self, entries: Sequence[KeyedEntry]) -> LinkBuildResult:
        found: list[GraphLink] = []
        comparisons = 0
        n = len(entries)
        for i in range(n):
            for j in range(i + 1, n):
                comparisons += 1
                link = self.score(entries[i], entries[j])
                if link is not None:
                    found.append(link)

        # sorted() is stable, so equal strengths keep discovery order.
        top = sorted(found, key=lambda link: link.link_strength, reverse=True)[: self.max_links]
        if len(found) > self.max_links:
            logger.info("Kept the %d strongest of %d candidate links", self.max_links, len(found))
        return LinkBuildResult(links=top, comparisons=comparisons)
