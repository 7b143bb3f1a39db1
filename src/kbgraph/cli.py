from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ._logging import configure_logging
from .chat.llm import LLMError, OllamaChatClient
from .config import Settings
from .graph import sqlite_graph
from .graph.generate import generate_links
from .graph.query import entry_neighbors, graph_data
from .index import vector_store
from .index.search import embed_entries, search_entries
from .ingest.runner import IngestOptions, import_jsonl, ingest_into_db, ingest_url
from .ingest.summarize import Summarizer
from .ingest.web import FetchError
from .store import sqlite_store


app = typer.Typer(add_completion=False, help="kbgraph: link your knowledge base entries into a similarity graph.")
console = Console()

graph_app = typer.Typer(add_completion=False, help="Knowledge graph links (generate, inspect, export).")
app.add_typer(graph_app, name="graph")


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    configure_logging(log_level)


@app.command()
def migrate(
    db: Path = typer.Option(Path(Settings().db_path), "--db", help="SQLite DB path to create/update"),
):
    """Create the entries, graph_links and entry_embeddings tables."""
    conn = sqlite_store.connect(db)
    try:
        sqlite_store.init_db(conn)
        sqlite_graph.init_graph(conn)
        vector_store.init_embeddings(conn)
    finally:
        conn.close()
    console.print(f"Schema ready in {db}", style="green")


@app.command("import")
def import_(
    input: Path = typer.Option(..., "--input", exists=True, file_okay=True, dir_okay=False, help="JSONL of entries"),
    db: Path = typer.Option(Path(Settings().db_path), "--db"),
    owner: str = typer.Option(..., "--owner", help="Owner id the entries belong to"),
):
    """Import pre-summarized entries from a JSONL file."""
    conn = sqlite_store.connect(db)
    try:
        res = import_jsonl(conn=conn, owner_id=owner, path=input)
    finally:
        conn.close()

    console.print(f"Lines seen: {res['lines_seen']}")
    console.print(f"Entries changed: {res['entries_changed']}")
    if res["lines_skipped"]:
        console.print(f"Lines skipped: {res['lines_skipped']}", style="yellow")
    console.print("Next: run `kbgraph graph generate --owner ...` to link them.")


@app.command()
def ingest(
    input: Path | None = typer.Option(None, "--input", exists=True, file_okay=False, dir_okay=True),
    url: str | None = typer.Option(None, "--url", help="Summarize one web page instead of a directory"),
    db: Path = typer.Option(Path(Settings().db_path), "--db"),
    owner: str = typer.Option(..., "--owner"),
    model: str | None = typer.Option(None, "--model", help="Ollama model name"),
    base_url: str | None = typer.Option(None, "--base-url", help="Ollama base URL"),
    temperature: float | None = typer.Option(None, "--temperature", help="Ollama temperature"),
):
    """Summarize Markdown/text/PDF files or a web page with Ollama and store them as entries."""
    if (input is None) == (url is None):
        raise typer.BadParameter("Pass exactly one of --input or --url")

    settings = Settings()
    llm = OllamaChatClient(
        base_url=(base_url or settings.ollama_base_url),
        model=(model or settings.ollama_model),
        options={"temperature": float(temperature if temperature is not None else settings.ollama_temperature)},
    )

    conn = sqlite_store.connect(db)
    try:
        if url is not None:
            try:
                res = ingest_url(conn=conn, owner_id=owner, url=url, summarizer=Summarizer(llm))
            except (ValueError, FetchError, LLMError) as e:
                # ValueError covers a bad URL and SummaryError; nothing was stored.
                console.print(str(e), style="red", markup=False)
                raise typer.Exit(code=1)
            state = "Stored" if res["changed"] else "Unchanged"
            console.print(f"{state}: {res['title']} [{res['category']}] as {res['entry_id']}", markup=False)
            return

        res = ingest_into_db(
            conn=conn,
            owner_id=owner,
            options=IngestOptions(input_dir=input),
            summarizer=Summarizer(llm),
        )
    finally:
        conn.close()

    console.print(f"Documents seen: {res['documents_seen']}")
    console.print(f"Documents changed: {res['documents_changed']}")
    if res["documents_skipped"]:
        console.print(f"Documents skipped (too short): {res['documents_skipped']}", style="yellow")
    if res["documents_failed"]:
        console.print(f"Documents failed: {res['documents_failed']}", style="red")


@app.command()
def doctor(
    base_url: str | None = typer.Option(None, "--base-url", help="Ollama base URL"),
    model: str | None = typer.Option(None, "--model", help="Ollama model name to check"),
):
    """Check that Ollama is reachable for ingestion."""
    settings = Settings()
    ollama_url = (base_url or settings.ollama_base_url).rstrip("/")
    ollama_model = model or settings.ollama_model

    try:
        r = httpx.get(f"{ollama_url}/api/tags", timeout=5.0)
        r.raise_for_status()
        models = [m.get("name") for m in (r.json().get("models") or []) if isinstance(m, dict)]
    except (httpx.HTTPError, ValueError) as e:
        console.print(f"- Not reachable at {ollama_url}: {e}", style="red")
        console.print("  Fix: start Ollama (`ollama serve`) then retry.", style="yellow")
        raise typer.Exit(code=1)

    console.print(f"- Server reachable at {ollama_url} ({len(models)} model(s) installed).", style="green")
    if ollama_model not in models:
        console.print(f"- Missing model: {ollama_model}", style="yellow")
        console.print(f"  Fix: `ollama pull {ollama_model}`", style="yellow")
        raise typer.Exit(code=1)
    console.print(f"- Model OK: {ollama_model}", style="green")


@app.command()
def stats(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
):
    """Show entry and link counts for one owner."""
    conn = sqlite_store.connect(db)
    try:
        sqlite_store.init_db(conn)
        st = sqlite_store.entry_stats(conn, owner)
        try:
            n_links = sqlite_graph.count_links(conn, owner)
        except sqlite3.OperationalError as e:
            if not sqlite_graph.is_missing_relation(e):
                raise
            n_links = None
    finally:
        conn.close()

    table = Table(title=f"kbgraph stats ({owner})")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Entries", str(st["total_entries"]))
    table.add_row("Top category", f"{st['top_category']} ({st['top_category_count']})")
    table.add_row("Links", "not migrated" if n_links is None else str(n_links))
    console.print(table)

    if st["category_counts"]:
        t2 = Table(title="Entries by Category")
        t2.add_column("category")
        t2.add_column("count")
        for cat, n in st["category_counts"].items():
            t2.add_row(cat, str(n))
        console.print(t2)


@app.command()
def embed(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    model: str | None = typer.Option(None, "--model", help="fastembed model name"),
    batch_size: int = typer.Option(10, "--batch-size", min=1),
):
    """Compute embeddings for new or changed entries."""
    embedder = _load_embedder(model or Settings().embed_model)

    conn = sqlite_store.connect(db)
    try:
        res = embed_entries(conn, owner_id=owner, embedder=embedder, batch_size=batch_size)
    finally:
        conn.close()

    console.print(res["message"], style="yellow" if res["failed"] else "green")
    if res["failed"]:
        console.print(f"Failed: {res['failed']}", style="red")
        raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument(..., help="What to look for"),
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    limit: int = typer.Option(5, "--limit", min=1),
    min_score: float | None = typer.Option(None, "--min-score", help="Cosine cutoff (default 0.5)"),
    model: str | None = typer.Option(None, "--model", help="fastembed model name"),
):
    """Find entries semantically similar to a query (run `kbgraph embed` first)."""
    settings = Settings()
    embedder = _load_embedder(model or settings.embed_model)

    conn = sqlite_store.connect(db)
    try:
        hits = search_entries(
            conn,
            owner_id=owner,
            query=query,
            embedder=embedder,
            limit=limit,
            min_score=settings.search_min_score if min_score is None else min_score,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))
    finally:
        conn.close()

    if not hits:
        console.print("No similar content found", style="yellow")
        return

    table = Table(title=f"Top {len(hits)} matches")
    table.add_column("score", justify="right", width=6)
    table.add_column("title")
    table.add_column("category")
    table.add_column("source")
    for h in hits:
        table.add_row(Text(f"{h.score:.3f}"), Text(h.title), Text(h.category), Text(h.source_ref))
    console.print(table)


def _load_embedder(model: str):
    from .index.embedder import Embedder

    try:
        return Embedder(model)
    except ImportError:
        console.print("Missing embedding dependencies. Install: `pip install -e '.[embed]'`", style="red")
        raise typer.Exit(code=2)


@app.command()
def serve(
    db: Path = typer.Option(Path(Settings().db_path), "--db", help="Default DB path for the server"),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes (dev only)"),
):
    """Run the kbgraph JSON API (FastAPI)."""
    try:
        import uvicorn
    except ImportError:
        console.print("Missing web dependencies. Install: `pip install -e '.[web]'`", style="red")
        raise typer.Exit(code=2)

    from .web.server import create_app

    app_ = create_app(default_db_path=str(db))
    uvicorn.run(app_, host=host, port=int(port), reload=bool(reload))


@graph_app.command("generate")
def graph_generate(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    min_similarity: float | None = typer.Option(None, "--min-similarity", help="Jaccard threshold (default 0.15)"),
    max_links: int | None = typer.Option(None, "--max-links", help="Maximum links to create (default 1000)"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Rows per upsert batch (50-500)"),
    order: str = typer.Option(
        "discovery",
        "--order",
        help="discovery: cap by comparison order; strength: keep the strongest links",
    ),
):
    """Recompute similarity links between one owner's entries."""
    if order not in ("discovery", "strength"):
        raise typer.BadParameter("--order must be 'discovery' or 'strength'")

    conn = sqlite_store.connect(db)
    try:
        try:
            res = generate_links(
                conn,
                owner_id=owner,
                min_similarity=min_similarity,
                max_links=max_links,
                batch_size=batch_size,
                order=order,  # type: ignore[arg-type]
            )
        except ValueError as e:
            raise typer.BadParameter(str(e))
    finally:
        conn.close()

    if not res["success"]:
        console.print(f"{res['error']}: {res.get('details', '')}", style="red", markup=False)
        if res.get("code") == "relation_not_found":
            console.print(res["message"], style="yellow", markup=False)
            raise typer.Exit(code=2)
        raise typer.Exit(code=1)

    for k in ("total_entries", "comparisons", "candidates", "links_created"):
        if k in res:
            console.print(f"{k}: {res[k]}", markup=False)
    style = "yellow" if res.get("failed_batches") else "green"
    console.print(res["message"], style=style, markup=False)


@graph_app.command("show")
def graph_show(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    entry: str | None = typer.Option(None, "--entry", help="Show neighbors of this entry id"),
    limit: int = typer.Option(20, help="Max links to show"),
):
    """Show the strongest links, or one entry's neighbors."""
    conn = sqlite_store.connect(db)
    try:
        if entry is not None:
            rows = [
                (entry, n["id"], n["title"], n["strength"], n["keywords"])
                for n in entry_neighbors(conn=conn, owner_id=owner, entry_id=entry, limit=limit)
            ]
        else:
            rows = [
                (
                    str(r["source_entry_id"]),
                    str(r["target_entry_id"]),
                    "",
                    float(r["link_strength"]),
                    sqlite_graph.decode_keywords(r["shared_keywords"]),
                )
                for r in sqlite_graph.get_links(conn, owner, limit=limit)
            ]
    except sqlite3.OperationalError as e:
        _exit_if_missing_schema(e)
        raise
    finally:
        conn.close()

    if not rows:
        console.print("No links found. Run `kbgraph graph generate` first.", style="yellow")
        raise typer.Exit(code=2)

    table = Table(title=f"Top {len(rows)} Links")
    table.add_column("source")
    table.add_column("target")
    table.add_column("strength", justify="right", width=8)
    table.add_column("shared keywords")
    for src, dst, title, strength, keywords in rows:
        table.add_row(
            Text(src),
            Text(f"{dst} ({title})" if title else dst),
            Text(f"{strength:.3f}"),
            Text(", ".join(keywords)),
        )
    console.print(table)


@graph_app.command("clear")
def graph_clear(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    all_types: bool = typer.Option(False, "--all", help="Also delete links that were not auto-generated"),
):
    """Delete an owner's links so the next generate starts fresh."""
    conn = sqlite_store.connect(db)
    try:
        n = sqlite_graph.clear_links(conn, owner_id=owner, link_type=None if all_types else sqlite_graph.AUTO_LINK_TYPE)
    except sqlite3.OperationalError as e:
        _exit_if_missing_schema(e)
        raise
    finally:
        conn.close()
    console.print(f"Deleted {n} link(s) for {owner}")


@graph_app.command("export")
def graph_export(
    db: Path = typer.Option(Path(Settings().db_path), "--db", exists=True, file_okay=True, dir_okay=False),
    owner: str = typer.Option(..., "--owner"),
    out: Path = typer.Option(..., "--out", help="Output JSON path"),
    category: str | None = typer.Option(None, "--category"),
    page: int = typer.Option(0, "--page"),
    page_size: int = typer.Option(1000, "--page-size"),
):
    """Export nodes and links as JSON for a force-graph viewer."""
    conn = sqlite_store.connect(db)
    try:
        data = graph_data(conn=conn, owner_id=owner, page=page, page_size=page_size, category=category)
    except sqlite3.OperationalError as e:
        _exit_if_missing_schema(e)
        raise
    finally:
        conn.close()

    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    s = data["stats"]
    console.print(f"Wrote {s['displayed_nodes']} nodes and {s['displayed_links']} links to {out}")


def _exit_if_missing_schema(err: sqlite3.Error) -> None:
    if sqlite_graph.is_missing_relation(err):
        console.print(sqlite_graph.MIGRATION_HINT, style="yellow", markup=False)
        raise typer.Exit(code=2)


if __name__ == "__main__":
    app()
