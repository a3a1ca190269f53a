from __future__ import annotations
from functools import lru_cache
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit
import idna

# ------------------ URL helpers ------------------

DEFAULT_PORTS = {"http": 80, "https": 443}
CRAWLABLE_SCHEMES = ("http", "https")
NON_NAVIGATIONAL_PREFIXES = ("#", "mailto:", "tel:", "javascript:")

ASSET_EXT = {
    "image": {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif", ".ico", ".bmp"},
    "asset": {".css", ".js", ".pdf", ".zip", ".gz", ".tar", ".rar", ".woff", ".woff2", ".ttf", ".eot"},
    "media": {".mp3", ".mp4", ".webm", ".ogg", ".wav", ".avi", ".mov"},
}


def _normalize_host(host: str) -> str:
    host = host.lower()
    try:
        # Convert domain to punycode for international domains
        return idna.encode(host).decode("ascii")
    except (idna.IDNAError, UnicodeError):
        return host


@lru_cache(maxsize=10000)
def normalize_url(url: str) -> Optional[str]:
    """
    Canonical dedup key for a URL:
    - lowercase scheme, host and path
    - punycode host, default port stripped
    - query and fragment dropped
    - trailing slash stripped except for the root path

    Returns None for anything that is not an absolute http(s) URL.
    Cached with LRU cache (10,000 entries).
    """
    if not url:
        return None
    try:
        parsed = urlsplit(url.strip())
        scheme = parsed.scheme.lower()
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return None
    if scheme not in CRAWLABLE_SCHEMES or not hostname:
        return None

    host = _normalize_host(hostname)
    if ":" in host:
        host = f"[{host}]"
    if port and port != DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"

    path = parsed.path.lower() or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    return urlunsplit((scheme, host, path, "", ""))


def is_valid_url(url: str) -> bool:
    return normalize_url(url) is not None


def get_hostname(url: str) -> Optional[str]:
    try:
        hostname = urlsplit(url).hostname
    except (ValueError, TypeError, AttributeError):
        return None
    return hostname.lower() if hostname else None


def is_same_domain(a: str, b: str) -> bool:
    """Exact, case-insensitive hostname comparison. Malformed input is never same-domain."""
    host_a = get_hostname(a)
    return host_a is not None and host_a == get_hostname(b)


def resolve_href(href: str, base: str) -> Optional[str]:
    """Resolve an href found on ``base`` to an absolute http(s) URL without fragment.

    Fragment-only, mailto:, tel: and javascript: hrefs are not links to crawl
    and resolve to None, as does anything malformed.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(NON_NAVIGATIONAL_PREFIXES):
        return None
    try:
        absolute = href if href.lower().startswith(("http://", "https://")) else urljoin(base, href)
        parts = urlsplit(absolute)
        # parts.port raises ValueError on a malformed port
        if parts.scheme.lower() not in CRAWLABLE_SCHEMES or not parts.hostname or (parts.port or 0) < 0:
            return None
    except ValueError:
        return None
    return urlunsplit(parts._replace(fragment=""))


def path_depth(url: str) -> int:
    """Number of non-empty path segments, e.g. ``/a/b/`` -> 2."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return 0
    return len([segment for segment in path.split("/") if segment])


def is_asset_url(url: str) -> bool:
    """True for URLs whose path ends in a known non-HTML file extension."""
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return False
    for exts in ASSET_EXT.values():
        for ext in exts:
            if path.endswith(ext):
                return True
    return False
