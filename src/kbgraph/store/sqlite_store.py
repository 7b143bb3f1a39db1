from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class KnowledgeEntry:
    id: str
    owner_id: str
    title: str
    category: str
    summary_json: Any = None
    summary_text: str = ""
    source_type: str = "jsonl"
    source_ref: str = ""
    created_at: int = field(default_factory=lambda: int(time.time()))

    def content_hash(self) -> str:
        payload = json.dumps(
            [self.title, self.category, self.summary_json, self.summary_text, self.source_type, self.source_ref],
            ensure_ascii=True,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def connect(db_path: str | os.PathLike[str]) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS entries (
          owner_id TEXT NOT NULL,
          id TEXT NOT NULL,
          title TEXT NOT NULL,
          category TEXT NOT NULL DEFAULT 'Uncategorized',
          summary_json TEXT,
          summary_text TEXT NOT NULL DEFAULT '',
          source_type TEXT NOT NULL,
          source_ref TEXT NOT NULL DEFAULT '',
          sha256 TEXT NOT NULL,
          created_at INTEGER NOT NULL,
          PRIMARY KEY (owner_id, id)
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_owner_created ON entries(owner_id, created_at);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_category ON entries(owner_id, category);")

    conn.execute(
        "INSERT OR REPLACE INTO meta(key, value) VALUES(?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def upsert_entry(conn: sqlite3.Connection, entry: KnowledgeEntry) -> tuple[str, bool]:
    """Insert/update an entry.

    Returns: (entry_id, changed)
    """
    digest = entry.content_hash()
    row = conn.execute(
        "SELECT sha256 FROM entries WHERE owner_id = ? AND id = ?",
        (entry.owner_id, entry.id),
    ).fetchone()

    summary = json.dumps(entry.summary_json, ensure_ascii=True) if entry.summary_json is not None else None

    if row is None:
        conn.execute(
            """
            INSERT INTO entries(
              owner_id, id, title, category, summary_json, summary_text,
              source_type, source_ref, sha256, created_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.owner_id,
                entry.id,
                entry.title,
                entry.category,
                summary,
                entry.summary_text,
                entry.source_type,
                entry.source_ref,
                digest,
                int(entry.created_at),
            ),
        )
        return entry.id, True

    if row["sha256"] == digest:
        # No change
        return entry.id, False

    conn.execute(
        """
        UPDATE entries
        SET title=?, category=?, summary_json=?, summary_text=?, source_type=?, source_ref=?, sha256=?
        WHERE owner_id=? AND id=?
        """,
        (
            entry.title,
            entry.category,
            summary,
            entry.summary_text,
            entry.source_type,
            entry.source_ref,
            digest,
            entry.owner_id,
            entry.id,
        ),
    )
    return entry.id, True


def row_to_entry(row: sqlite3.Row) -> KnowledgeEntry:
    return KnowledgeEntry(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        title=str(row["title"]),
        category=str(row["category"]),
        summary_json=_decode_summary(row["summary_json"]),
        summary_text=str(row["summary_text"] or ""),
        source_type=str(row["source_type"]),
        source_ref=str(row["source_ref"] or ""),
        created_at=int(row["created_at"]),
    )


def _decode_summary(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        # The extractor treats None as an empty summary.
        logger.warning("Undecodable summary_json; treating as empty")
        return None


_ENTRY_COLUMNS = "owner_id, id, title, category, summary_json, summary_text, source_type, source_ref, created_at"


def iter_entries(conn: sqlite3.Connection, owner_id: str) -> Iterable[KnowledgeEntry]:
    """Yield one owner's entries, newest first (ties by id)."""
    cur = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE owner_id = ? ORDER BY created_at DESC, id ASC",
        (str(owner_id),),
    )
    for row in cur:
        yield row_to_entry(row)


def get_entry(conn: sqlite3.Connection, owner_id: str, entry_id: str) -> KnowledgeEntry | None:
    row = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE owner_id = ? AND id = ?",
        (str(owner_id), str(entry_id)),
    ).fetchone()
    return row_to_entry(row) if row is not None else None


def delete_entry(conn: sqlite3.Connection, owner_id: str, entry_id: str) -> bool:
    # graph_links rows go with it via ON DELETE CASCADE.
    cur = conn.execute(
        "DELETE FROM entries WHERE owner_id = ? AND id = ?",
        (str(owner_id), str(entry_id)),
    )
    conn.commit()
    return cur.rowcount > 0


def category_counts(conn: sqlite3.Connection, owner_id: str) -> dict[str, int]:
    rows = conn.execute(
        """
        SELECT category, COUNT(*) AS n
        FROM entries
        WHERE owner_id = ?
        GROUP BY category
        ORDER BY n DESC, category ASC
        """,
        (str(owner_id),),
    ).fetchall()
    return {str(r["category"] or "Uncategorized"): int(r["n"]) for r in rows}


def entry_stats(conn: sqlite3.Connection, owner_id: str) -> dict[str, Any]:
    counts = category_counts(conn, owner_id)
    total = sum(counts.values())
    top_category, top_count = ("None", 0)
    if counts:
        top_category, top_count = next(iter(counts.items()))

    recent = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE owner_id = ? ORDER BY created_at DESC, id ASC LIMIT 5",
        (str(owner_id),),
    ).fetchall()

    return {
        "total_entries": total,
        "category_counts": counts,
        "top_category": top_category,
        "top_category_count": top_count,
        "recent_entries": [
            {"id": str(r["id"]), "title": str(r["title"]) or "Untitled", "category": str(r["category"])}
            for r in recent
        ],
    }
