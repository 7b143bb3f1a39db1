from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from ..graph.keywords import SummaryFields
from ..store import sqlite_store
from ..store.sqlite_store import KnowledgeEntry
from . import vector_store
from .embedder import Embedder
from .vector_store import StoredVector


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchHit:
    entry_id: str
    score: float
    title: str
    category: str
    summary: str
    source_ref: str
    source_type: str


def entry_text(entry: KnowledgeEntry) -> str:
    """The text an entry is embedded from: title, summary, then summary items."""
    parts = [entry.title, entry.summary_text]
    for _, items in SummaryFields.from_json(entry.summary_json).sections():
        parts.extend(items)
    return "\n".join(p.strip() for p in parts if p and p.strip())


def embed_entries(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    embedder: Embedder,
    batch_size: int = 10,
) -> dict[str, Any]:
    """Embed entries that are new or changed since their last embedding.

    A batch that fails is logged and counted; later batches still run.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    vector_store.init_embeddings(conn)

    done = vector_store.embedded_hashes(conn, owner_id, embedder.model_name)
    pending: list[tuple[KnowledgeEntry, str]] = []
    for e in sqlite_store.iter_entries(conn, owner_id):
        digest = e.content_hash()
        if done.get(e.id) != digest:
            pending.append((e, digest))

    if not pending:
        return {"processed": 0, "failed": 0, "message": "No entries need embeddings"}

    logger.info("Embedding %d entries for owner %s", len(pending), owner_id)
    processed = 0
    failed = 0
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        try:
            vectors = embedder.embed_texts([entry_text(e) for e, _ in batch])
            processed += vector_store.save_vectors(
                conn,
                owner_id=owner_id,
                model=embedder.model_name,
                items=[StoredVector(entry_id=e.id, sha256=digest, vector=v) for (e, digest), v in zip(batch, vectors)],
            )
        except Exception as e:
            logger.error("Error embedding batch at %d (%d entries): %s", start, len(batch), e)
            failed += len(batch)

    return {
        "processed": processed,
        "failed": failed,
        "message": f"Processed {processed} entries with embeddings",
    }


def search_entries(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    query: str,
    embedder: Embedder,
    limit: int = 5,
    min_score: float = 0.5,
) -> list[SearchHit]:
    query = (query or "").strip()
    if not query:
        raise ValueError("Query is required")
    if limit < 1:
        raise ValueError("limit must be >= 1")
    vector_store.init_embeddings(conn)

    index = vector_store.load_index(conn, owner_id, embedder.model_name)
    hits = vector_store.topk_cosine(index, embedder.embed_query(query), k=limit, min_score=min_score)

    out: list[SearchHit] = []
    for entry_id, score in hits:
        e = sqlite_store.get_entry(conn, owner_id, entry_id)
        if e is None:
            continue
        out.append(
            SearchHit(
                entry_id=e.id,
                score=score,
                title=e.title or "Unknown",
                category=e.category or "Uncategorized",
                summary=e.summary_text,
                source_ref=e.source_ref,
                source_type=e.source_type,
            )
        )
    return out
