import json
import sqlite3
import tempfile
import unittest
from pathlib import Path

from kbgraph.ingest.runner import import_jsonl
from kbgraph.store import sqlite_store
from kbgraph.store.sqlite_store import KnowledgeEntry


def _conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    sqlite_store.init_db(conn)
    return conn


class TestEntryStore(unittest.TestCase):
    def test_upsert_reports_changes(self):
        conn = _conn()
        e = KnowledgeEntry(id="a", owner_id="u1", title="A", category="Science", summary_json={"key_points": ["x"]})
        self.assertEqual(sqlite_store.upsert_entry(conn, e), ("a", True))
        self.assertEqual(sqlite_store.upsert_entry(conn, e), ("a", False))

        e2 = KnowledgeEntry(id="a", owner_id="u1", title="A", category="Health", summary_json={"key_points": ["x"]})
        self.assertEqual(sqlite_store.upsert_entry(conn, e2), ("a", True))
        self.assertEqual(sqlite_store.get_entry(conn, "u1", "a").category, "Health")

    def test_iter_entries_is_newest_first_and_owner_scoped(self):
        conn = _conn()
        for eid, ts in (("old", 1), ("new", 3), ("mid_b", 2), ("mid_a", 2)):
            sqlite_store.upsert_entry(conn, KnowledgeEntry(id=eid, owner_id="u1", title=eid, category="Other", created_at=ts))
        sqlite_store.upsert_entry(conn, KnowledgeEntry(id="x", owner_id="u2", title="x", category="Other", created_at=9))

        ids = [e.id for e in sqlite_store.iter_entries(conn, "u1")]
        self.assertEqual(ids, ["new", "mid_a", "mid_b", "old"])

    def test_summary_round_trips_through_json(self):
        conn = _conn()
        summary = {"key_points": ["Machine learning"], "main_ideas": [], "insights": ["Data matters"]}
        sqlite_store.upsert_entry(conn, KnowledgeEntry(id="a", owner_id="u1", title="A", category="AI", summary_json=summary))
        self.assertEqual(sqlite_store.get_entry(conn, "u1", "a").summary_json, summary)

    def test_entry_stats(self):
        conn = _conn()
        for i, cat in enumerate(["Science", "Science", "Arts"]):
            sqlite_store.upsert_entry(conn, KnowledgeEntry(id=str(i), owner_id="u1", title=f"t{i}", category=cat, created_at=i))
        st = sqlite_store.entry_stats(conn, "u1")
        self.assertEqual(st["total_entries"], 3)
        self.assertEqual(st["category_counts"], {"Science": 2, "Arts": 1})
        self.assertEqual((st["top_category"], st["top_category_count"]), ("Science", 2))
        self.assertEqual(st["recent_entries"][0]["id"], "2")

    def test_entry_stats_empty(self):
        st = sqlite_store.entry_stats(_conn(), "nobody")
        self.assertEqual((st["total_entries"], st["top_category"]), (0, "None"))


class TestImportJsonl(unittest.TestCase):
    def test_import_skips_bad_lines(self):
        conn = _conn()
        lines = [
            json.dumps({"id": "a", "title": "ML", "category": "Technology", "summary_json": {"key_points": ["Machine learning"]}}),
            "",
            "{not json",
            json.dumps({"category": "Arts"}),
            json.dumps({"title": "No id", "summary_json": "malformed but kept"}),
        ]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "entries.jsonl"
            path.write_text("\n".join(lines), encoding="utf-8")
            res = import_jsonl(conn=conn, owner_id="u1", path=path)
            again = import_jsonl(conn=conn, owner_id="u1", path=path)

        self.assertEqual(res, {"lines_seen": 4, "entries_changed": 2, "lines_skipped": 2})
        self.assertEqual(again["entries_changed"], 0)

        entries = {e.title: e for e in sqlite_store.iter_entries(conn, "u1")}
        self.assertEqual(entries["ML"].category, "Technology")
        self.assertEqual(entries["No id"].category, "Uncategorized")
        self.assertEqual(entries["No id"].summary_json, "malformed but kept")
        self.assertEqual(len(entries["No id"].id), 16)


if __name__ == "__main__":
    unittest.main()
