# hubcrawl/urls.py
"""
Small URL utilities shared by prediction, validation and the controller.

Everything here is pure and cheap. Canonical form rules:
- remove fragments (part after '#')
- lowercase scheme and hostname
- drop default ports (80 for http, 443 for https)
- keep query (?a=1) because it may change content
"""

from __future__ import annotations

import re
import unicodedata
from typing import List, Set
from urllib.parse import urldefrag, urlparse

from .errors import StructuralError

# Binary/asset extensions; a hub is never one of these.
DEFAULT_DISALLOWED_EXT: Set[str] = {
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico",
    ".pdf", ".ps", ".eps",
    ".mp3", ".wav", ".ogg", ".flac",
    ".mp4", ".mkv", ".avi", ".mov", ".wmv", ".webm",
    ".css", ".js", ".mjs", ".ts",
    ".zip", ".tar", ".gz", ".tgz", ".rar", ".7z",
    ".rss", ".json", ".txt", ".csv", ".xml",
}

_DATE_PATTERNS = (
    re.compile(r"/\d{4}/\d{1,2}/\d{1,2}(/|$)"),   # /2024/05/17/
    re.compile(r"\d{4}-\d{2}-\d{2}"),             # 2024-05-17
    re.compile(r"/\d{2}/\d{2}/\d{4}(/|$)"),       # /05/17/2024/
    re.compile(r"/\d{4}/(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*/\d{1,2}(/|$)"),
)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def canonicalize(url: str) -> str:
    """Return the canonical form of an http(s) URL or raise StructuralError."""
    if not url or not isinstance(url, str):
        raise StructuralError(f"empty url: {url!r}")
    try:
        url, _ = urldefrag(url.strip())
        p = urlparse(url)
        scheme = p.scheme.lower()
        host = (p.hostname or "").lower()
        port = p.port
    except ValueError as exc:
        raise StructuralError(f"malformed url {url!r}: {exc}") from exc
    if scheme not in ("http", "https") or not host or " " in host:
        raise StructuralError(f"not an http(s) url: {url!r}")
    # Keep explicit non-default ports
    if port and not (scheme == "http" and port == 80) and not (scheme == "https" and port == 443):
        host = f"{host}:{port}"
    path = p.path or "/"
    q = f"?{p.query}" if p.query else ""
    return f"{scheme}://{host}{path}{q}"


def domain_of(url: str) -> str:
    """Return hostname of a URL or empty string if parsing fails."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def normalize_domain(domain: str) -> str:
    """'WWW.Example.com/' -> 'www.example.com'. Accepts bare hosts or full URLs."""
    d = domain.strip().lower()
    if "://" in d:
        d = domain_of(d)
    return d.rstrip("/")


def has_disallowed_ext(path: str, disallowed: Set[str]) -> bool:
    """True if the path ends with a file extension we don't crawl."""
    path = path.lower()
    for ext in disallowed:
        if path.endswith(ext):
            return True
    return False


def slugify(text: str) -> str:
    """'Côte d'Ivoire' -> 'cote-d-ivoire'."""
    folded = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _SLUG_STRIP.sub("-", folded.lower()).strip("-")


def path_segments(url: str) -> List[str]:
    """Lowercased, non-empty path segments of a URL."""
    try:
        path = urlparse(url).path
    except ValueError:
        return []
    return [s.lower() for s in path.split("/") if s]


def is_root_path(url: str) -> bool:
    return not path_segments(url)


def is_dated_article(url: str) -> bool:
    """Hubs are timeless: a date in the path means an article."""
    lowered = url.lower()
    return any(p.search(lowered) for p in _DATE_PATTERNS)


def join_path(domain: str, path: str, scheme: str = "https") -> str:
    """Build an absolute URL on `domain` from a path that may or may not start with '/'."""
    if not path.startswith("/"):
        path = "/" + path
    return f"{scheme}://{domain}{path}"
