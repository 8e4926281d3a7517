# hubcrawl/parser_bs4.py
"""
Page analysis helpers using BeautifulSoup.

Why this file exists:
- The validator needs a handful of structural facts about a page, not its text.
- HTML on the internet is a glorious mess. BeautifulSoup is good at surviving it.
- We keep this module focused: take HTML bytes + a base URL, return clean facts.

Public API:
    looks_like_article_url(url: str, host: str) -> bool
    profile_page(html_bytes: bytes, base_url: str) -> PageProfile

What "clean links" means here:
- Only hyperlinks from <a href="...">.
- Relative URLs are turned into absolute ones using the page's URL.
- Fragments (#section) are removed, because they don't change the resource.
- Non-web schemes (mailto:, javascript:, data:, ftp:, etc.) are discarded.
- Duplicates are removed while preserving the first-seen order.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from .urls import is_dated_article

# A slug with several words or a long numeric id looks like an article, not a section.
_ARTICLE_SLUG = re.compile(r"([a-z0-9]+-){3,}[a-z0-9]+|\d{5,}")


def _is_navigable_href(href: str) -> bool:
    """
    Decide whether an href value is something a crawler should even consider.

    Returns:
      True for potentially navigable URLs (e.g., "/about", "https://example.com").
      False for empty values and clearly non-navigable schemes.
    """
    if not href:
        return False
    h = href.strip()
    if h.lower().startswith(("javascript:", "mailto:", "tel:", "data:")):
        return False
    return True


def _dedupe_keep_order(urls: Iterable[str]) -> List[str]:
    """
    Remove duplicates but keep the order of the first time we saw each link.
    Order often reflects on-page priority, so we keep it.
    """
    seen = set()
    out: List[str] = []
    for u in urls:
        if u not in seen:
            seen.add(u)
            out.append(u)
    return out


def _absolute(base_url: str, href: str) -> Optional[str]:
    if not _is_navigable_href(href):
        return None
    try:
        abs_url, _ = urldefrag(urljoin(base_url, href.strip()))
        scheme = urlparse(abs_url).scheme.lower()
    except ValueError:
        return None
    if scheme not in ("http", "https"):
        return None
    return abs_url


def looks_like_article_url(url: str, host: str) -> bool:
    """Same-host link whose last path segment reads like a story slug or id."""
    try:
        p = urlparse(url)
    except ValueError:
        return False
    if (p.hostname or "").lower() != host:
        return False
    segments = [s for s in p.path.lower().split("/") if s]
    if len(segments) < 2:
        return False
    if is_dated_article(url):
        return True
    return bool(_ARTICLE_SLUG.search(segments[-1]))


def _soup(html_bytes: bytes) -> BeautifulSoup:
    # Decode best-effort. Bad bytes shouldn't stop the crawl.
    return BeautifulSoup(html_bytes.decode("utf-8", errors="ignore"), "html.parser")


@dataclass
class PageProfile:
    """The structural facts the hub validator reasons over."""
    title: str = ""
    headings: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    article_links: List[str] = field(default_factory=list)
    nav_links: int = 0
    paragraph_words: int = 0
    article_tags: int = 0
    og_type: str = ""
    has_byline: bool = False

    @property
    def text_markers(self) -> Tuple[str, ...]:
        """Lowercased title and headings, for entity name matching."""
        return tuple(t.lower() for t in [self.title] + self.headings if t)

    @property
    def is_empty(self) -> bool:
        return not self.links and self.paragraph_words == 0 and not self.title


def profile_page(html_bytes: bytes, base_url: str) -> PageProfile:
    """
    Summarize a page for hub validation.

    Counts:
      - links:          every navigable link, deduplicated
      - article_links:  same-host links that look like stories
      - nav_links:      links inside <nav>, <header> or <footer>
      - paragraph_words: words in <p> elements outside navigation chrome
      - article_tags:   number of <article> elements (listings repeat them, stories have one)
    """
    soup = _soup(html_bytes)
    host = (urlparse(base_url).hostname or "").lower()
    prof = PageProfile()

    if soup.title and soup.title.string:
        prof.title = soup.title.string.strip()
    prof.headings = [h.get_text(" ", strip=True) for h in soup.find_all(["h1", "h2"])][:20]

    og = soup.find("meta", attrs={"property": "og:type"})
    if og and og.get("content"):
        prof.og_type = og["content"].strip().lower()

    prof.article_tags = len(soup.find_all("article"))
    prof.has_byline = bool(soup.find(attrs={"rel": "author"}) or soup.find(class_=re.compile("byline")))

    links: List[str] = []
    for a in soup.find_all("a", href=True):
        u = _absolute(base_url, a.get("href"))
        if not u:
            continue
        links.append(u)
        if a.find_parent(["nav", "header", "footer"]) is not None:
            prof.nav_links += 1
    prof.links = _dedupe_keep_order(links)
    prof.article_links = [u for u in prof.links if looks_like_article_url(u, host)]

    words = 0
    for p in soup.find_all("p"):
        if p.find_parent(["nav", "header", "footer", "a"]) is not None:
            continue
        words += len(p.get_text(" ", strip=True).split())
    prof.paragraph_words = words
    return prof
