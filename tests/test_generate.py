import sqlite3
import unittest

from kbgraph.graph import sqlite_graph
from kbgraph.graph.generate import generate_links, persist_links
from kbgraph.graph.links import GraphLink
from kbgraph.store import sqlite_store
from kbgraph.store.sqlite_store import KnowledgeEntry


def _conn(*, migrate: bool = True) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    sqlite_store.init_db(conn)
    if migrate:
        sqlite_graph.init_graph(conn)
    return conn


def _add(conn, eid, key_points, *, category="Technology", owner="u1", created_at=100):
    sqlite_store.upsert_entry(
        conn,
        KnowledgeEntry(
            id=eid,
            owner_id=owner,
            title=eid.upper(),
            category=category,
            summary_json={"key_points": key_points, "main_ideas": []},
            created_at=created_at,
        ),
    )
    conn.commit()


def _link(src, dst, strength=0.5):
    return GraphLink(
        source_entry_id=src,
        target_entry_id=dst,
        link_strength=strength,
        shared_keywords=("alpha1", "bravo2"),
        similarity=strength,
    )


class TestGenerateLinks(unittest.TestCase):
    def test_machine_learning_pair_is_linked(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"], created_at=200)
        _add(conn, "b", ["Training machine learning systems needs data"], created_at=100)

        res = generate_links(conn, owner_id="u1")

        self.assertTrue(res["success"])
        self.assertEqual(res["links_created"], 1)
        self.assertEqual(res["total_entries"], 2)
        self.assertEqual(res["comparisons"], 1)
        self.assertEqual(res["candidates"], 1)
        self.assertIn("1 connections from 2 entries", res["message"])

        rows = sqlite_graph.get_links(conn, "u1")
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual((row["source_entry_id"], row["target_entry_id"]), ("a", "b"))
        self.assertEqual(row["link_type"], "auto")
        self.assertAlmostEqual(row["link_strength"], 3 / 7 + 0.1, places=6)
        self.assertEqual(sqlite_graph.decode_keywords(row["shared_keywords"]), ["machine", "learning", "training"])

    def test_disjoint_entries_make_no_links(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"], category="Technology")
        _add(conn, "b", ["Tulips bloom early every spring"], category="Arts")

        res = generate_links(conn, owner_id="u1")
        self.assertTrue(res["success"])
        self.assertEqual(res["links_created"], 0)
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), 0)

    def test_no_entries(self):
        conn = _conn()
        res = generate_links(conn, owner_id="nobody")
        self.assertEqual(
            res,
            {
                "success": True,
                "links_created": 0,
                "total_entries": 0,
                "comparisons": 0,
                "message": "No knowledge base entries found",
            },
        )

    def test_rerun_overwrites_instead_of_duplicating(self):
        conn = _conn()
        for i in range(4):
            _add(conn, f"e{i}", ["Machine learning models require training"], created_at=100 + i)

        first = generate_links(conn, owner_id="u1")
        n_first = sqlite_graph.count_links(conn, "u1")
        second = generate_links(conn, owner_id="u1")

        self.assertEqual(first["links_created"], 6)
        self.assertEqual(second["links_created"], 6)
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), n_first)

    def test_rerun_updates_strength(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"], created_at=200)
        _add(conn, "b", ["Machine learning models require training"], created_at=100)
        generate_links(conn, owner_id="u1")
        self.assertEqual(sqlite_graph.get_links(conn, "u1")[0]["link_strength"], 1.0)

        _add(conn, "b", ["Training machine learning systems needs data"], created_at=100)
        generate_links(conn, owner_id="u1")
        rows = sqlite_graph.get_links(conn, "u1")
        self.assertEqual(len(rows), 1)
        self.assertAlmostEqual(rows[0]["link_strength"], 3 / 7 + 0.1, places=6)

    def test_owners_are_isolated(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"], owner="u1")
        _add(conn, "b", ["Machine learning models require training"], owner="u2")

        res = generate_links(conn, owner_id="u1")
        self.assertEqual(res["total_entries"], 1)
        self.assertEqual(res["comparisons"], 0)
        self.assertEqual(sqlite_graph.count_links(conn, "u2"), 0)

    def test_cap_limits_stored_links(self):
        conn = _conn()
        for i in range(6):
            _add(conn, f"e{i}", ["Machine learning models require training"], created_at=100 + i)

        res = generate_links(conn, owner_id="u1", max_links=4)
        self.assertEqual(res["candidates"], 4)
        self.assertEqual(res["links_created"], 4)
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), 4)

    def test_missing_table_is_fatal_with_hint(self):
        conn = _conn(migrate=False)
        _add(conn, "a", ["Machine learning models require training"])
        _add(conn, "b", ["Machine learning models require training"])

        res = generate_links(conn, owner_id="u1")
        self.assertFalse(res["success"])
        self.assertEqual(res["code"], "relation_not_found")
        self.assertEqual(res["error"], "Knowledge graph table not found")
        self.assertIn("kbgraph migrate", res["message"])

    def test_failed_batch_is_reported_not_raised(self):
        conn = _conn()
        # 12 identical entries -> 66 candidate links -> batches of 50 and 16.
        for i in range(12):
            _add(conn, f"e{i:02d}", ["Machine learning models require training"], created_at=100 + i)

        calls = []

        def flaky(conn, *, owner_id, links):
            calls.append(len(links))
            if len(calls) == 1:
                raise sqlite3.OperationalError("disk I/O error")
            return sqlite_graph.upsert_links(conn, owner_id=owner_id, links=links)

        with self.assertLogs("kbgraph.graph.generate", level="ERROR"):
            res = generate_links(conn, owner_id="u1", batch_size=50, write_batch=flaky)

        self.assertTrue(res["success"])
        self.assertEqual(calls, [50, 16])
        self.assertEqual(res["candidates"], 66)
        self.assertEqual(res["links_created"], 16)
        self.assertEqual(res["failed_batches"], 1)
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), 16)

    def test_unexpected_error_becomes_generic_failure(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"])
        _add(conn, "b", ["Machine learning models require training"])

        def boom(conn, *, owner_id, links):
            raise RuntimeError("boom")

        res = generate_links(conn, owner_id="u1", write_batch=boom)
        self.assertFalse(res["success"])
        self.assertEqual(res["code"], "internal_error")
        self.assertEqual(res["details"], "boom")

    def test_invalid_parameters_raise(self):
        conn = _conn()
        with self.assertRaises(ValueError):
            generate_links(conn, owner_id="u1", min_similarity=1.5)
        with self.assertRaises(ValueError):
            generate_links(conn, owner_id="u1", max_links=0)
        with self.assertRaises(ValueError):
            generate_links(conn, owner_id="u1", batch_size=10)

    def test_malformed_summary_does_not_break_run(self):
        conn = _conn()
        _add(conn, "a", ["Machine learning models require training"])
        _add(conn, "b", ["Machine learning models require training"])
        sqlite_store.upsert_entry(
            conn, KnowledgeEntry(id="c", owner_id="u1", title="C", category="Other", summary_json="not an object")
        )
        conn.execute("UPDATE entries SET summary_json = '{broken' WHERE id = 'a'")
        conn.commit()

        res = generate_links(conn, owner_id="u1")
        self.assertTrue(res["success"])
        self.assertEqual(res["total_entries"], 3)
        self.assertEqual(res["links_created"], 0)


class TestPersistLinks(unittest.TestCase):
    def test_failed_batch_rolls_back_and_later_batches_continue(self):
        conn = _conn()
        for eid in ("a", "b", "c", "d"):
            _add(conn, eid, ["Machine learning models require training"])

        links = [
            _link("a", "b"),
            _link("a", "c"),
            _link("a", "d"),
            _link("b", "missing"),  # violates the entries foreign key
            _link("c", "d"),
        ]
        res = persist_links(conn, owner_id="u1", links=links, batch_size=2)

        self.assertEqual(len(res.outcomes), 3)
        self.assertEqual([o.ok for o in res.outcomes], [True, False, True])
        self.assertEqual(res.written, 3)
        self.assertEqual(res.failed_batches, 1)
        # The good row in the failed batch was rolled back with it.
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), 3)

    def test_missing_table_raises_schema_error(self):
        conn = _conn(migrate=False)
        _add(conn, "a", ["x"])
        _add(conn, "b", ["x"])
        with self.assertRaises(sqlite_graph.SchemaMissingError) as ctx:
            persist_links(conn, owner_id="u1", links=[_link("a", "b")])
        self.assertIsInstance(ctx.exception, RuntimeError)
        self.assertIn("graph_links", ctx.exception.details)
        self.assertEqual(ctx.exception.hint, sqlite_graph.MIGRATION_HINT)

    def test_deleting_an_entry_cascades_to_links(self):
        conn = _conn()
        for eid in ("a", "b", "c"):
            _add(conn, eid, ["Machine learning models require training"])
        persist_links(conn, owner_id="u1", links=[_link("a", "b"), _link("b", "c")])

        self.assertTrue(sqlite_store.delete_entry(conn, "u1", "a"))
        rows = sqlite_graph.get_links(conn, "u1")
        self.assertEqual([(r["source_entry_id"], r["target_entry_id"]) for r in rows], [("b", "c")])

    def test_strength_constraint_enforced_by_schema(self):
        conn = _conn()
        _add(conn, "a", ["x"])
        _add(conn, "b", ["y"])
        with self.assertRaises(sqlite3.IntegrityError):
            sqlite_graph.upsert_links(conn, owner_id="u1", links=[_link("a", "b", strength=1.5)])

    def test_clear_links(self):
        conn = _conn()
        for eid in ("a", "b"):
            _add(conn, eid, ["x"])
        persist_links(conn, owner_id="u1", links=[_link("a", "b")])
        self.assertEqual(sqlite_graph.clear_links(conn, owner_id="u1"), 1)
        self.assertEqual(sqlite_graph.count_links(conn, "u1"), 0)


if __name__ == "__main__":
    unittest.main()
