from __future__ import annotations

import sqlite3
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


EMBEDDINGS_TABLE = "entry_embeddings"


@dataclass(frozen=True)
class VectorIndex:
    entry_ids: list[str]
    embeddings: np.ndarray  # shape [n, d], float32, L2-normalized


@dataclass(frozen=True)
class StoredVector:
    entry_id: str
    sha256: str
    vector: np.ndarray


def init_embeddings(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {EMBEDDINGS_TABLE} (
          owner_id TEXT NOT NULL,
          entry_id TEXT NOT NULL,
          model TEXT NOT NULL,
          sha256 TEXT NOT NULL,
          dim INTEGER NOT NULL,
          vector BLOB NOT NULL,
          updated_at INTEGER NOT NULL,
          PRIMARY KEY (owner_id, entry_id),
          FOREIGN KEY (owner_id, entry_id) REFERENCES entries(owner_id, id) ON DELETE CASCADE
        );
        """
    )
    conn.commit()


def embedded_hashes(conn: sqlite3.Connection, owner_id: str, model: str) -> dict[str, str]:
    """entry_id -> entry sha256 the stored vector was computed from."""
    rows = conn.execute(
        f"SELECT entry_id, sha256 FROM {EMBEDDINGS_TABLE} WHERE owner_id = ? AND model = ?",
        (str(owner_id), str(model)),
    ).fetchall()
    return {str(r["entry_id"]): str(r["sha256"]) for r in rows}


def save_vectors(
    conn: sqlite3.Connection,
    *,
    owner_id: str,
    model: str,
    items: Sequence[StoredVector],
) -> int:
    if not items:
        return 0
    now = int(time.time())
    rows = []
    for it in items:
        vec = np.asarray(it.vector, dtype=np.float32).ravel()
        rows.append((str(owner_id), it.entry_id, str(model), it.sha256, int(vec.shape[0]), vec.tobytes(), now))
    with conn:
        conn.executemany(
            f"""
            INSERT INTO {EMBEDDINGS_TABLE}(owner_id, entry_id, model, sha256, dim, vector, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(owner_id, entry_id) DO UPDATE SET
              model = excluded.model,
              sha256 = excluded.sha256,
              dim = excluded.dim,
              vector = excluded.vector,
              updated_at = excluded.updated_at
            """,
            rows,
        )
    return len(rows)


def load_index(conn: sqlite3.Connection, owner_id: str, model: str) -> VectorIndex:
    rows = conn.execute(
        f"""
        SELECT entry_id, dim, vector FROM {EMBEDDINGS_TABLE}
        WHERE owner_id = ? AND model = ?
        ORDER BY entry_id
        """,
        (str(owner_id), str(model)),
    ).fetchall()
    if not rows:
        return VectorIndex(entry_ids=[], embeddings=np.zeros((0, 0), dtype=np.float32))

    entry_ids = [str(r["entry_id"]) for r in rows]
    embeddings = np.vstack([np.frombuffer(r["vector"], dtype=np.float32, count=int(r["dim"])) for r in rows])
    return VectorIndex(entry_ids=entry_ids, embeddings=embeddings)


def topk_cosine(
    index: VectorIndex,
    query_vec: np.ndarray,
    k: int = 5,
    *,
    min_score: float = 0.0,
) -> list[tuple[str, float]]:
    """Return [(entry_id, cosine_sim)] sorted best-first, dropping hits below min_score."""
    if index.embeddings.size == 0:
        return []

    q = np.asarray(query_vec, dtype=np.float32)
    sims = index.embeddings @ q  # [n]

    k = int(max(1, min(k, sims.shape[0])))
    # argpartition is O(n)
    top_idx = np.argpartition(-sims, k - 1)[:k]
    top_sorted = top_idx[np.argsort(-sims[top_idx], kind="stable")]

    return [(index.entry_ids[i], float(sims[i])) for i in top_sorted if sims[i] >= min_score]
