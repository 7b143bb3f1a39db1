from __future__ import annotations

from pathlib import Path


def extract_text(path: str | Path) -> str:
    """Return the text of every page, separated by blank lines."""
    p = Path(path)
    # Prefer PyMuPDF for better extraction.
    try:
        import fitz  # type: ignore
    except ImportError:
        fitz = None

    pages: list[str] = []
    if fitz is not None:
        with fitz.open(str(p)) as doc:
            for i in range(doc.page_count):
                pages.append(_clean(doc.load_page(i).get_text("text") or ""))
    else:
        from pypdf import PdfReader

        reader = PdfReader(str(p))
        for page in reader.pages:
            pages.append(_clean(page.extract_text() or ""))

    return "\n\n".join(t for t in pages if t)


def _clean(text: str) -> str:
    # Normalize line endings and strip trailing spaces.
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [ln.rstrip() for ln in text.split("\n")]
    return "\n".join(lines).strip()
