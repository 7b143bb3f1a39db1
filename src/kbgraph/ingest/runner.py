from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import httpx

from ..chat.llm import LLMError
from ..store import sqlite_store
from ..store.sqlite_store import KnowledgeEntry
from . import pdf, web
from .summarize import Summarizer, SummaryError


logger = logging.getLogger(__name__)

SUPPORTED_TEXT_EXTS = {".md", ".markdown", ".txt"}


@dataclass(frozen=True)
class IngestOptions:
    input_dir: Path
    min_chars: int = 40


def iter_files(root: Path) -> Iterable[Path]:
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        if p.name.startswith("."):
            continue
        yield p


def _source_type_for(path: Path) -> str:
    ext = path.suffix.lower()
    if ext == ".pdf":
        return "pdf"
    return "txt" if ext == ".txt" else "md"


def _read_text(path: Path) -> str:
    if path.suffix.lower() == ".pdf":
        return pdf.extract_text(path)
    return path.read_text(encoding="utf-8", errors="replace")


def ingest_into_db(
    *,
    conn: sqlite3.Connection,
    owner_id: str,
    options: IngestOptions,
    summarizer: Summarizer,
) -> dict[str, Any]:
    """Summarize every supported file under input_dir into an entry."""
    sqlite_store.init_db(conn)

    docs_seen = 0
    docs_changed = 0
    docs_failed = 0
    docs_skipped = 0

    for path in iter_files(options.input_dir):
        ext = path.suffix.lower()
        if ext not in SUPPORTED_TEXT_EXTS and ext != ".pdf":
            continue

        docs_seen += 1
        rel = path.relative_to(options.input_dir).as_posix()
        stype = _source_type_for(path)
        entry_id = f"{stype}:{rel}"

        try:
            text = _read_text(path)
        except Exception as e:
            logger.error("Failed to read %s: %s", rel, e)
            docs_failed += 1
            continue

        if len(text.strip()) < options.min_chars:
            logger.info("Skipping %s: too little text", rel)
            docs_skipped += 1
            continue

        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        existing = sqlite_store.get_entry(conn, owner_id, entry_id)
        if existing is not None and existing.source_ref == f"{rel}#sha256={digest}":
            # Unchanged file; avoid paying for another summary.
            continue

        try:
            summary = summarizer.summarize(text, source=rel)
        except (LLMError, SummaryError) as e:
            logger.error("Failed to summarize %s: %s", rel, e)
            docs_failed += 1
            continue

        _, changed = sqlite_store.upsert_entry(
            conn,
            KnowledgeEntry(
                id=entry_id,
                owner_id=owner_id,
                title=path.stem,
                category=summary.category,
                summary_json=summary.summary_json,
                summary_text=summary.summary_text,
                source_type=stype,
                source_ref=f"{rel}#sha256={digest}",
            ),
        )
        if changed:
            docs_changed += 1

        # Commit periodically to keep memory stable
        if docs_seen % 20 == 0:
            conn.commit()

    conn.commit()

    return {
        "documents_seen": docs_seen,
        "documents_changed": docs_changed,
        "documents_skipped": docs_skipped,
        "documents_failed": docs_failed,
    }


def import_jsonl(
    *,
    conn: sqlite3.Connection,
    owner_id: str,
    path: str | Path,
) -> dict[str, Any]:
    """Import pre-summarized entries, one JSON object per line."""
    sqlite_store.init_db(conn)

    lines_seen = 0
    lines_skipped = 0
    entries_changed = 0

    p = Path(path)
    for lineno, line in enumerate(p.read_text(encoding="utf-8", errors="replace").splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        lines_seen += 1

        try:
            rec = json.loads(line)
        except ValueError as e:
            logger.warning("%s:%d: invalid JSON (%s); skipped", p.name, lineno, e)
            lines_skipped += 1
            continue
        if not isinstance(rec, dict) or not str(rec.get("title") or "").strip():
            logger.warning("%s:%d: record needs a title; skipped", p.name, lineno)
            lines_skipped += 1
            continue

        title = str(rec["title"]).strip()
        entry_id = str(rec.get("id") or hashlib.sha256(title.encode("utf-8")).hexdigest()[:16])
        entry = KnowledgeEntry(
            id=entry_id,
            owner_id=owner_id,
            title=title,
            category=str(rec.get("category") or "Uncategorized"),
            # Stored as-is; malformed summaries just yield no keywords later.
            summary_json=rec.get("summary_json"),
            summary_text=str(rec.get("summary_text") or ""),
            source_type=str(rec.get("source_type") or "jsonl"),
            source_ref=str(rec.get("source_ref") or f"{p.name}#L{lineno}"),
            created_at=_created_at(rec.get("created_at")),
        )
        _, changed = sqlite_store.upsert_entry(conn, entry)
        if changed:
            entries_changed += 1

    conn.commit()

    return {
        "lines_seen": lines_seen,
        "entries_changed": entries_changed,
        "lines_skipped": lines_skipped,
    }


def _created_at(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return int(time.time())


def url_entry_id(url: str) -> str:
    return "url:" + hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def ingest_url(
    *,
    conn: sqlite3.Connection,
    owner_id: str,
    url: str,
    summarizer: Summarizer,
    min_chars: int = 40,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """Fetch one web page, summarize it and store it as an entry.

    Raises ValueError for a malformed URL, FetchError when the page can't be
    retrieved or has no text, and LLMError/SummaryError from the summarizer.
    """
    sqlite_store.init_db(conn)

    page = web.fetch_page(url, transport=transport)
    if len(page.text) < min_chars:
        raise web.FetchError(f"Too little text at {page.url}")

    summary = summarizer.summarize(page.text, source=page.url)
    entry_id = url_entry_id(page.url)
    _, changed = sqlite_store.upsert_entry(
        conn,
        KnowledgeEntry(
            id=entry_id,
            owner_id=owner_id,
            title=page.title,
            category=summary.category,
            summary_json=summary.summary_json,
            summary_text=summary.summary_text,
            source_type="url",
            source_ref=page.url,
        ),
    )
    conn.commit()
    logger.info("Stored %s as %s (%s)", page.url, entry_id, summary.category)

    return {
        "entry_id": entry_id,
        "title": page.title,
        "category": summary.category,
        "changed": changed,
    }
