"""
URL Pattern Matching
====================

Classify discovered URLs against configured path patterns such as "/blog".

Two modes:
1. Root-only: the URL path must equal the pattern (trailing slash allowed)
2. Substring: the pattern may appear anywhere in the URL path

Usage:
    from sitemap_filters import match_patterns

    match_patterns(urls, ["/blog", "/posts"], root_only=True)
"""

from urllib.parse import urlsplit
from typing import Iterable, List, Optional


def _url_path(url: str) -> Optional[str]:
    """Lower-cased path of an absolute URL, or None when it cannot be parsed as one."""
    try:
        p = urlsplit(url)
    except ValueError:
        return None
    if not p.scheme or not p.netloc:
        return None
    return (p.path or "/").lower()


def _strip_href(url: str) -> str:
    return url.split("?")[0].split("#")[0].lower()


def path_matches(path: str, pattern: str, root_only: bool = True) -> bool:
    """
    Check one lower-cased path against one pattern.

    Examples:
        >>> path_matches("/blog/", "/blog", root_only=True)
        True

        >>> path_matches("/blog/post-1", "/blog", root_only=True)
        False

        >>> path_matches("/en/blog/post-1", "/blog", root_only=False)
        True
    """
    pat = (pattern or "").lower()
    if not pat:
        return False
    if root_only:
        return path == pat or path == pat + "/"
    return pat in path


def match_patterns(urls: Iterable[str], patterns: Iterable[str], root_only: bool = True) -> List[str]:
    """
    Return the URLs whose path matches any pattern.

    The input is never modified; the result is deduplicated and keeps the
    order in which URLs were first seen. URLs that do not parse as absolute
    URLs are compared on the stripped href instead of being dropped.

    Args:
        urls: Candidate URLs (absolute)
        patterns: Path patterns, e.g. ["/blog", "/posts"]
        root_only: Exact path match instead of substring containment

    Returns:
        Matching URLs
    """
    pats = [p.lower() for p in patterns if p]
    found: List[str] = []
    seen = set()
    for u in urls:
        if not u or u in seen:
            continue
        path = _url_path(u)
        hit = False
        for pat in pats:
            if path is not None:
                hit = path_matches(path, pat, root_only)
            elif root_only:
                stripped = _strip_href(u)
                hit = stripped.endswith(pat) or stripped.endswith(pat + "/")
            else:
                hit = pat in u.lower()
            if hit:
                break
        if hit:
            seen.add(u)
            found.append(u)
    return found
