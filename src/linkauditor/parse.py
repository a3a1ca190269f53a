from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import List, Tuple
from bs4 import BeautifulSoup
from defusedxml import ElementTree as SafeET
from .urls import resolve_href, normalize_url, is_same_domain

_WHITESPACE_RE = re.compile(r"\s+")
_INVISIBLE_TAGS = ("script", "style", "noscript", "template")

# ------------------ HTML ------------------


@dataclass
class ParsedPage:
    title: str = ""
    description: str = ""
    text_length: int = 0
    internal_links: List[str] = field(default_factory=list)
    external_links: List[str] = field(default_factory=list)


def _collect_links(soup: BeautifulSoup, base_url: str) -> Tuple[List[str], List[str]]:
    internal: List[str] = []
    external: List[str] = []
    seen = set()
    for tag in soup.find_all(["a", "area"], href=True):
        resolved = resolve_href(tag.get("href"), base_url)
        if resolved is None:
            continue
        key = normalize_url(resolved)
        if key is None or key in seen:
            continue
        seen.add(key)
        if is_same_domain(resolved, base_url):
            internal.append(resolved)
        else:
            external.append(resolved)
    return internal, external


def extract_links(html: str, base_url: str) -> Tuple[List[str], List[str]]:
    """Return (internal, external) absolute links of a page, each deduplicated.

    Malformed markup never raises; an unparseable document has no links.
    """
    try:
        soup = BeautifulSoup(html or "", "html.parser")
        return _collect_links(soup, base_url)
    except Exception:
        return [], []


def parse_page(html: str, base_url: str) -> ParsedPage:
    """Extract title, meta description, visible body text length and links."""
    try:
        soup = BeautifulSoup(html or "", "html.parser")
        internal, external = _collect_links(soup, base_url)

        title_tag = soup.find("title")
        title = title_tag.get_text().strip() if title_tag else ""

        description = ""
        for meta in soup.find_all("meta"):
            if (meta.get("name") or "").strip().lower() == "description":
                description = (meta.get("content") or "").strip()
                break

        # Count visible text only
        for tag in soup(list(_INVISIBLE_TAGS)):
            tag.decompose()
        body = soup.find("body") or soup
        text = _WHITESPACE_RE.sub(" ", body.get_text(" ")).strip()

        return ParsedPage(
            title=title,
            description=description,
            text_length=len(text),
            internal_links=internal,
            external_links=external,
        )
    except Exception:
        return ParsedPage()


# ------------------ sitemaps ------------------

def sniff_sitemap_kind(root) -> str:
    tag = root.tag.lower()
    if tag.endswith("sitemapindex"):
        return "sitemap_index"
    return "sitemap"


def extract_sitemap_locs(xml_text: str) -> Tuple[str, List[str]]:
    """Return (kind, locs) for a sitemap or sitemap index document.

    kind is "sitemap_index" or "sitemap"; unparseable XML gives ("sitemap", []).
    Namespaced and namespace-less documents are both accepted.
    """
    try:
        root = SafeET.fromstring(xml_text.encode("utf-8") if isinstance(xml_text, str) else xml_text)
    except Exception:
        return "sitemap", []
    kind = sniff_sitemap_kind(root)
    locs = []
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        if element.tag.rsplit("}", 1)[-1].lower() == "loc" and element.text and element.text.strip():
            locs.append(element.text.strip())
    return kind, locs
