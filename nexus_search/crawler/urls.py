"""
URL normalization and link filtering.

A normalized URL is the identity of a Webpage: scheme, host, optional
non-default port and path, with no query, fragment or trailing slash.
"""

import re
from typing import Iterable, List, Optional
from urllib.parse import urlsplit, urljoin, quote

DEFAULT_PORTS = {'http': 80, 'https': 443}

# Characters left untouched when quoting a path; '%' keeps quoting idempotent
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"

LINK_BLACKLIST = re.compile(
    r"(?:[/.](?:youtube|facebook|twitter|x|linkedin|snapchat|instagram|github)\.com\b"
    r"|cloudfront\.net|wp-content"
    r"|\.(?:pdf|png|jpg|jpeg|docx|json|txt|gif|svg|mp4|mp3)$)",
    re.IGNORECASE
)


def normalize_url(url: str) -> str:
    """
    Return the canonical form of an http(s) URL.

    Raises:
        ValueError: if the URL is not an absolute http(s) URL with a host
    """
    if not isinstance(url, str):
        raise ValueError(f"URL must be a string, got {type(url).__name__}")

    parsed = urlsplit(url.strip())
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"Unsupported URL scheme: {url!r}")

    host = parsed.hostname
    if not host:
        raise ValueError(f"URL has no host: {url!r}")
    if ':' in host:
        host = f"[{host}]"

    # Raises ValueError for out-of-range ports
    port = parsed.port
    netloc = host if port is None or port == DEFAULT_PORTS[scheme] else f"{host}:{port}"

    path = quote(parsed.path, safe=_PATH_SAFE).rstrip('/')
    return f"{scheme}://{netloc}{path}"


def try_normalize(url: str) -> Optional[str]:
    """normalize_url, returning None instead of raising."""
    try:
        return normalize_url(url)
    except ValueError:
        return None


def get_host(url: str) -> str:
    """Lower-cased host of a URL, '' when it has none."""
    return (urlsplit(url).hostname or '').lower()


def get_origin(url: str) -> str:
    """scheme://netloc of a normalized URL."""
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def _site_host(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith('www.') else host


def is_same_site(url: str, host: str) -> bool:
    """
    True when the link's host is `host` or one of its subdomains.

    A leading 'www.' is ignored on both sides, so example.com and
    www.example.com are the same site.
    """
    link_host = _site_host(get_host(url))
    site = _site_host(host)
    if not link_host or not site:
        return False
    return link_host == site or link_host.endswith('.' + site)


def is_crawlable_link(url: str, host: str) -> bool:
    """True when a normalized link stays on the `host` site and is not blacklisted."""
    return is_same_site(url, host) and not LINK_BLACKLIST.search(url)


def extract_crawlable_links(page_url: str, hrefs: Iterable[str]) -> List[str]:
    """
    Resolve raw hrefs against the page URL and keep crawlable same-site links.

    Order of first appearance is preserved; duplicates are dropped.
    """
    host = get_host(page_url)
    links = {}

    for href in hrefs:
        href = (href or '').strip()
        if not href or href.startswith('#'):
            continue

        normalized = try_normalize(urljoin(page_url, href))
        if normalized and is_crawlable_link(normalized, host):
            links.setdefault(normalized, None)

    return list(links)


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    """Normalize and de-duplicate URLs, dropping invalid ones. Order preserved."""
    seen = {}
    for url in urls:
        normalized = try_normalize(url)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)
