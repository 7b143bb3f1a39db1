from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Sequence

from .links import AUTO_LINK_TYPE, GraphLink


LINKS_TABLE = "graph_links"

MIGRATION_HINT = "Please run the database migration first: `kbgraph migrate --db <path>`"


class SchemaMissingError(RuntimeError):
    """The links table has not been provisioned."""

    def __init__(self, details: str, *, hint: str = MIGRATION_HINT):
        super().__init__(f"Knowledge graph table not found: {details}")
        self.details = details
        self.hint = hint


def is_missing_relation(err: sqlite3.Error) -> bool:
    msg = str(err).lower()
    return "no such table" in msg and LINKS_TABLE in msg


def init_graph(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {LINKS_TABLE} (
          link_id INTEGER PRIMARY KEY,
          owner_id TEXT NOT NULL,
          source_entry_id TEXT NOT NULL,
          target_entry_id TEXT NOT NULL,
          link_type TEXT NOT NULL DEFAULT 'auto',
          link_strength REAL NOT NULL DEFAULT 1.0,
          shared_keywords TEXT NOT NULL DEFAULT '[]',
          created_at INTEGER NOT NULL,
          updated_at INTEGER NOT NULL,
          UNIQUE (owner_id, source_entry_id, target_entry_id),
          CHECK (source_entry_id != target_entry_id),
          CHECK (link_strength >= 0.0 AND link_strength <= 1.0),
          FOREIGN KEY (owner_id, source_entry_id) REFERENCES entries(owner_id, id) ON DELETE CASCADE,
          FOREIGN KEY (owner_id, target_entry_id) REFERENCES entries(owner_id, id) ON DELETE CASCADE
        );
        """
    )
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_graph_links_owner ON {LINKS_TABLE}(owner_id);")
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_graph_links_source ON {LINKS_TABLE}(owner_id, source_entry_id);")
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_graph_links_target ON {LINKS_TABLE}(owner_id, target_entry_id);")
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_graph_links_strength ON {LINKS_TABLE}(link_strength DESC);")

    conn.commit()


def upsert_links(conn: sqlite3.Connection, *, owner_id: str, links: Sequence[GraphLink]) -> int:
    """Upsert one batch atomically. Returns the number of rows written.

    The whole batch rolls back if any row fails.
    """
    if not links:
        return 0
    now = int(time.time())
    rows = [
        (
            str(owner_id),
            link.source_entry_id,
            link.target_entry_id,
            link.link_type,
            float(link.link_strength),
            json.dumps(list(link.shared_keywords), ensure_ascii=True),
            now,
            now,
        )
        for link in links
    ]
    try:
        with conn:
            conn.executemany(
                f"""
                INSERT INTO {LINKS_TABLE}(
                  owner_id, source_entry_id, target_entry_id, link_type,
                  link_strength, shared_keywords, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id, source_entry_id, target_entry_id) DO UPDATE SET
                  link_type = excluded.link_type,
                  link_strength = excluded.link_strength,
                  shared_keywords = excluded.shared_keywords,
                  updated_at = excluded.updated_at
                """,
                rows,
            )
    except sqlite3.OperationalError as e:
        if is_missing_relation(e):
            raise SchemaMissingError(str(e)) from e
        raise
    return len(rows)


def clear_links(conn: sqlite3.Connection, *, owner_id: str, link_type: str | None = AUTO_LINK_TYPE) -> int:
    if link_type is None:
        cur = conn.execute(f"DELETE FROM {LINKS_TABLE} WHERE owner_id = ?", (str(owner_id),))
    else:
        cur = conn.execute(
            f"DELETE FROM {LINKS_TABLE} WHERE owner_id = ? AND link_type = ?",
            (str(owner_id), str(link_type)),
        )
    conn.commit()
    return int(cur.rowcount)


def count_links(conn: sqlite3.Connection, owner_id: str) -> int:
    return int(
        conn.execute(f"SELECT COUNT(*) AS n FROM {LINKS_TABLE} WHERE owner_id = ?", (str(owner_id),)).fetchone()["n"]
    )


def get_links(conn: sqlite3.Connection, owner_id: str, *, limit: int | None = None):
    sql = f"""
        SELECT source_entry_id, target_entry_id, link_type, link_strength, shared_keywords
        FROM {LINKS_TABLE}
        WHERE owner_id = ?
        ORDER BY link_strength DESC, link_id ASC
    """
    params: tuple = (str(owner_id),)
    if limit is not None:
        sql += " LIMIT ?"
        params = (str(owner_id), int(limit))
    return conn.execute(sql, params).fetchall()


def get_neighbors(conn: sqlite3.Connection, owner_id: str, entry_id: str, *, limit: int = 10):
    # Links are stored in discovery orientation; query both sides.
    eid = str(entry_id)
    return conn.execute(
        f"""
        SELECT
          CASE
            WHEN source_entry_id = ? THEN target_entry_id
            ELSE source_entry_id
          END AS neighbor_id,
          link_strength,
          shared_keywords
        FROM {LINKS_TABLE}
        WHERE owner_id = ? AND (source_entry_id = ? OR target_entry_id = ?)
        ORDER BY link_strength DESC
        LIMIT ?
        """,
        (eid, str(owner_id), eid, eid, int(limit)),
    ).fetchall()


def decode_keywords(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    return [str(k) for k in data] if isinstance(data, list) else []
