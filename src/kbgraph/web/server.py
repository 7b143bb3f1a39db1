from typing import Any

import sqlite3


def _camel(result: dict[str, Any]) -> dict[str, Any]:
    keys = {
        "links_created": "linksCreated",
        "total_entries": "totalEntries",
        "failed_batches": "failedBatches",
    }
    return {keys.get(k, k): v for k, v in result.items()}


def create_app(*, default_db_path: str | None = None, embedder: Any = None):
    # Lazy import so the CLI works without web deps.
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    from .. import __version__
    from .._logging import configure_logging
    from ..config import Settings
    from ..graph.generate import generate_links
    from ..graph.query import graph_data
    from ..index.search import embed_entries, search_entries
    from ..store import sqlite_store

    configure_logging()
    settings = Settings()
    db_default = default_db_path or settings.db_path

    app = FastAPI(title="kbgraph", version=__version__)
    loaded: dict[str, Any] = {"embedder": embedder}

    def _embedder():
        if loaded["embedder"] is None:
            from ..index.embedder import Embedder

            loaded["embedder"] = Embedder(settings.embed_model)
        return loaded["embedder"]

    def _open_db(db_path: str) -> sqlite3.Connection:
        conn = sqlite_store.connect(db_path)
        sqlite_store.init_db(conn)
        return conn

    @app.get("/api/health")
    def health():
        return {"ok": True, "db_path": db_default}

    @app.post("/api/graph/generate-links")
    def generate(payload: dict[str, Any]):
        owner_id = str(payload.get("owner_id") or "").strip()
        if not owner_id:
            return JSONResponse({"success": False, "error": "owner_id is required"}, status_code=400)
        db_path = str(payload.get("db_path") or db_default)

        conn = _open_db(db_path)
        try:
            res = generate_links(
                conn,
                owner_id=owner_id,
                min_similarity=payload.get("minSimilarity"),
                max_links=payload.get("maxLinks"),
                order=str(payload.get("order") or "discovery"),  # type: ignore[arg-type]
            )
        except (TypeError, ValueError) as e:
            return JSONResponse({"success": False, "error": str(e)}, status_code=400)
        finally:
            conn.close()

        if not res["success"]:
            return JSONResponse(_camel(res), status_code=500)
        return _camel(res)

    @app.get("/api/graph/data")
    def data(
        owner_id: str,
        page: int = 0,
        pageSize: int = 1000,
        category: str | None = None,
        db_path: str | None = None,
    ):
        conn = _open_db(db_path or db_default)
        try:
            res = graph_data(conn=conn, owner_id=owner_id, page=page, page_size=pageSize, category=category)
        except sqlite3.OperationalError as e:
            return JSONResponse(
                {"error": "Failed to fetch graph data", "details": str(e)},
                status_code=500,
            )
        finally:
            conn.close()
        return res

    @app.post("/api/embeddings/generate")
    def generate_embeddings(payload: dict[str, Any]):
        owner_id = str(payload.get("owner_id") or "").strip()
        if not owner_id:
            return JSONResponse({"success": False, "error": "owner_id is required"}, status_code=400)

        conn = _open_db(str(payload.get("db_path") or db_default))
        try:
            res = embed_entries(
                conn,
                owner_id=owner_id,
                embedder=_embedder(),
                batch_size=int(payload.get("batchSize") or 10),
            )
        except (TypeError, ValueError) as e:
            return JSONResponse({"success": False, "error": str(e)}, status_code=400)
        finally:
            conn.close()
        return {"success": True, **res}

    @app.post("/api/search")
    def search(payload: dict[str, Any]):
        owner_id = str(payload.get("owner_id") or "").strip()
        query = payload.get("query")
        if not owner_id:
            return JSONResponse({"error": "owner_id is required"}, status_code=400)
        if not isinstance(query, str) or not query.strip():
            return JSONResponse({"error": "Query is required"}, status_code=400)

        conn = _open_db(str(payload.get("db_path") or db_default))
        try:
            hits = search_entries(
                conn,
                owner_id=owner_id,
                query=query,
                embedder=_embedder(),
                limit=int(payload.get("limit") or 5),
                min_score=float(payload.get("minScore", settings.search_min_score)),
            )
        except (TypeError, ValueError) as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        finally:
            conn.close()

        if not hits:
            return {"results": [], "message": "No similar content found"}
        return {
            "results": [
                {
                    "kb_id": h.entry_id,
                    "similarity": h.score,
                    "title": h.title,
                    "category": h.category,
                    "summary": h.summary,
                    "source_url": h.source_ref,
                    "source_type": h.source_type,
                }
                for h in hits
            ]
        }

    return app
