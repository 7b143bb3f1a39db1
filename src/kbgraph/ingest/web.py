from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup


USER_AGENT = "Mozilla/5.0 (compatible; kbgraph/0.1)"

_WS_RE = re.compile(r"\s+")


class FetchError(RuntimeError):
    pass


@dataclass(frozen=True)
class FetchedPage:
    url: str
    title: str
    text: str


def validate_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid URL format: {url!r}")
    return url


def html_to_text(html: str) -> tuple[str, str]:
    """Return (title, visible text) for an HTML document."""
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    if soup.title is not None and soup.title.string:
        title = soup.title.string.strip()

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    body = soup.body or soup
    text = _WS_RE.sub(" ", body.get_text(separator=" ", strip=True)).strip()
    return title, text


def fetch_page(
    url: str,
    *,
    timeout_s: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> FetchedPage:
    url = validate_url(url)
    try:
        with httpx.Client(
            timeout=timeout_s,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            r = client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch URL: {e}") from e

    if r.status_code != 200:
        raise FetchError(f"Failed to fetch URL content: {r.status_code} {r.reason_phrase}")
    if not r.text.strip():
        raise FetchError("Empty content from URL")

    title, text = html_to_text(r.text)
    return FetchedPage(url=url, title=title or urlparse(url).hostname or "Untitled Page", text=text)
