from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import Settings
from ..store import sqlite_store
from .keywords import KeywordExtractor
from .links import GraphLink, KeyedEntry, LinkBuilder, LinkOrder
from .sqlite_graph import SchemaMissingError, upsert_links


logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 50
MAX_BATCH_SIZE = 500

WriteBatch = Callable[..., int]


@dataclass(frozen=True)
class BatchOutcome:
    index: int
    size: int
    written: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PersistResult:
    outcomes: list[BatchOutcome] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(o.written for o in self.outcomes)

    @property
    def failed_batches(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


def persist_links(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    links: Sequence[GraphLink],
    batch_size: int = 100,
    write_batch: WriteBatch = upsert_links,
) -> PersistResult:
    """Write links in sequential batches; a failed batch does not stop the rest.

    Raises SchemaMissingError if the links table does not exist.
    """
    result = PersistResult()
    for idx, start in enumerate(range(0, len(links), batch_size)):
        batch = links[start : start + batch_size]
        try:
            written = write_batch(conn, owner_id=owner_id, links=batch)
        except SchemaMissingError:
            raise
        except sqlite3.Error as e:
            logger.error("Error inserting batch %d (%d links): %s", idx, len(batch), e)
            result.outcomes.append(BatchOutcome(index=idx, size=len(batch), written=0, error=str(e)))
            continue
        result.outcomes.append(BatchOutcome(index=idx, size=len(batch), written=int(written)))
    return result


def keyed_entries(
    entries: Sequence[sqlite_store.KnowledgeEntry],
    extractor: KeywordExtractor,
) -> list[KeyedEntry]:
    return [
        KeyedEntry(id=e.id, category=e.category, keywords=extractor.extract(e.summary_json))
        for e in entries
    ]


def generate_links(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    min_similarity: float | None = None,
    max_links: int | None = None,
    batch_size: int | None = None,
    order: LinkOrder = "discovery",
    extractor: KeywordExtractor | None = None,
    builder: LinkBuilder | None = None,
    write_batch: WriteBatch = upsert_links,
) -> dict[str, Any]:
    """Recompute and upsert one owner's auto links.

    Returns a result dict; it never raises for storage or schema problems.
    Invalid parameters raise ValueError before any work is done.
    """
    settings = Settings()
    min_similarity = settings.min_similarity if min_similarity is None else float(min_similarity)
    max_links = settings.max_links if max_links is None else int(max_links)
    batch_size = settings.batch_size if batch_size is None else int(batch_size)

    if not 0.0 <= min_similarity <= 1.0:
        raise ValueError("min_similarity must be between 0 and 1")
    if max_links < 1:
        raise ValueError("max_links must be >= 1")
    if not MIN_BATCH_SIZE <= batch_size <= MAX_BATCH_SIZE:
        raise ValueError(f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}")

    extractor = extractor or KeywordExtractor()
    builder = builder or LinkBuilder(
        min_similarity=min_similarity,
        max_links=max_links,
        category_bonus=settings.category_bonus,
        order=order,
    )

    try:
        logger.info("Generating links for owner %s with min_similarity=%s", owner_id, min_similarity)
        entries = list(sqlite_store.iter_entries(conn, owner_id))
        if not entries:
            return {
                "success": True,
                "links_created": 0,
                "total_entries": 0,
                "comparisons": 0,
                "message": "No knowledge base entries found",
            }

        logger.info("Found %d entries to analyze", len(entries))
        built = builder.build(keyed_entries(entries, extractor))
        logger.info("Made %d comparisons, found %d potential links", built.comparisons, built.candidates)

        persisted = persist_links(
            conn,
            owner_id=owner_id,
            links=built.links,
            batch_size=batch_size,
            write_batch=write_batch,
        )
        if persisted.failed_batches:
            logger.warning(
                "%d of %d batches failed; wrote %d of %d links",
                persisted.failed_batches,
                len(persisted.outcomes),
                persisted.written,
                built.candidates,
            )
    except SchemaMissingError as e:
        logger.error("%s", e)
        return {
            "success": False,
            "code": "relation_not_found",
            "error": "Knowledge graph table not found",
            "message": e.hint,
            "details": e.details,
        }
    except Exception as e:
        logger.exception("Error generating links for owner %s", owner_id)
        return {
            "success": False,
            "code": "internal_error",
            "error": "Failed to generate links",
            "details": str(e),
        }

    return {
        "success": True,
        "links_created": persisted.written,
        "total_entries": len(entries),
        "comparisons": built.comparisons,
        "candidates": built.candidates,
        "failed_batches": persisted.failed_batches,
        "message": f"Successfully generated {persisted.written} connections from {len(entries)} entries",
    }
