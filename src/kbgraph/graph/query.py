from __future__ import annotations

import sqlite3
from typing import Any

from .sqlite_graph import decode_keywords, get_links, get_neighbors


CATEGORY_COLORS = {
    "Science": "#3b82f6",
    "Technology": "#8b5cf6",
    "AI": "#ec4899",
    "Artificial Intelligence": "#ec4899",
    "Business": "#f59e0b",
    "Health": "#10b981",
    "Education": "#06b6d4",
    "Politics": "#ef4444",
    "Environment": "#84cc16",
    "Arts": "#f97316",
    "Sports": "#6366f1",
    "Other": "#64748b",
    "Uncategorized": "#64748b",
}


def category_color(category: str) -> str:
    return CATEGORY_COLORS.get(category, CATEGORY_COLORS["Other"])


def graph_data(
    *,
    conn: sqlite3.Connection,
    owner_id: str,
    page: int = 0,
    page_size: int = 1000,
    category: str | None = None,
) -> dict[str, Any]:
    """Node/link lists for one page of an owner's entries."""
    page = max(0, int(page))
    page_size = max(1, int(page_size))

    where = "owner_id = ?"
    params: list[Any] = [str(owner_id)]
    if category:
        where += " AND category = ?"
        params.append(str(category))

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM entries WHERE {where}", params).fetchone()["n"])
    rows = conn.execute(
        f"""
        SELECT id, title, category, source_type, created_at
        FROM entries
        WHERE {where}
        ORDER BY created_at DESC, id ASC
        LIMIT ? OFFSET ?
        """,
        [*params, page_size, page * page_size],
    ).fetchall()

    links = get_links(conn, owner_id)

    connections: dict[str, int] = {}
    for r in links:
        for eid in (str(r["source_entry_id"]), str(r["target_entry_id"])):
            connections[eid] = connections.get(eid, 0) + 1

    nodes = []
    for r in rows:
        eid = str(r["id"])
        cat = str(r["category"] or "Uncategorized")
        n_conn = connections.get(eid, 0)
        nodes.append(
            {
                "id": eid,
                "name": str(r["title"] or "") or "Untitled",
                "category": cat,
                "source_type": str(r["source_type"]),
                "val": max(1.0, n_conn / 2),
                "color": category_color(cat),
                "connections": n_conn,
                "created_at": int(r["created_at"]),
            }
        )

    # Drop links whose endpoints are not on this page.
    node_ids = {n["id"] for n in nodes}
    out_links = []
    for r in links:
        src = str(r["source_entry_id"])
        dst = str(r["target_entry_id"])
        if src not in node_ids or dst not in node_ids:
            continue
        strength = r["link_strength"]
        out_links.append(
            {
                "source": src,
                "target": dst,
                "value": float(strength) if strength is not None else 0.5,
                "type": str(r["link_type"]),
                "keywords": decode_keywords(r["shared_keywords"]),
            }
        )

    return {
        "nodes": nodes,
        "links": out_links,
        "stats": {
            "total_nodes": total,
            "displayed_nodes": len(nodes),
            "total_links": len(links),
            "displayed_links": len(out_links),
            "has_more": page * page_size + len(nodes) < total,
            "page": page,
            "page_size": page_size,
        },
    }


def entry_neighbors(
    *,
    conn: sqlite3.Connection,
    owner_id: str,
    entry_id: str,
    limit: int = 10,
) -> list[dict[str, Any]]:
    out = []
    for n in get_neighbors(conn, owner_id, entry_id, limit=limit):
        nid = str(n["neighbor_id"])
        row = conn.execute(
            "SELECT title, category FROM entries WHERE owner_id = ? AND id = ?",
            (str(owner_id), nid),
        ).fetchone()
        if row is None:
            continue
        out.append(
            {
                "id": nid,
                "title": str(row["title"]),
                "category": str(row["category"]),
                "strength": float(n["link_strength"]),
                "keywords": decode_keywords(n["shared_keywords"]),
            }
        )
    return out
