import io
import re
import gzip
import zlib
import html
import httpx
import random
from urllib.parse import urlparse, urljoin, urlsplit, urlunsplit
from typing import List, Optional, Set, Union

import settings
from models import SiteTarget, SitemapDocument

# Nested sitemaps deeper than this are not expanded
MAX_SITEMAP_DEPTH = 6

SITEMAP_CANDIDATE_PATHS = [
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap.xml.gz",
    "/sitemap-index.xml",
]

# Tolerant scan: prefixed tags (<ns:loc>) and attributes are accepted
LOC_RE = re.compile(r"<(?:[\w.-]+:)?loc\b[^>]*>([\s\S]*?)</(?:[\w.-]+:)?loc\s*>", re.IGNORECASE)
CDATA_RE = re.compile(r"^<!\[CDATA\[([\s\S]*?)\]\]>$")
SITEMAP_INDEX_RE = re.compile(r"<(?:[\w.-]+:)?sitemapindex\b", re.IGNORECASE)
ROBOTS_SITEMAP_RE = re.compile(r"^\s*sitemap\s*:\s*(.+)$", re.IGNORECASE)


def _random_user_agent() -> str:
    chrome_versions = [
        "127.0.6533.72",
        "128.0.6613.84",
        "129.0.6668.90",
    ]
    version = random.choice(chrome_versions)
    platforms = [
        "Windows NT 10.0; Win64; x64",
        "Macintosh; Intel Mac OS X 10_15_7",
        "X11; Linux x86_64",
    ]
    platform = random.choice(platforms)
    return f"Mozilla/5.0 ({platform}) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{version} Safari/537.36"


def normalize_root_url(root_url: str) -> str:
    """Add a scheme to bare hosts (example.com -> https://example.com/)."""
    raw = (root_url or "").strip()
    p = urlparse(raw)
    if not p.scheme:
        raw = "https://" + raw.lstrip("/")
        p = urlparse(raw)
    if not p.path:
        raw = raw + "/"
    return raw


def site_origin(root_url: str) -> str:
    p = urlsplit(normalize_root_url(root_url))
    return f"{p.scheme}://{p.netloc}"


def canonical_sitemap_url(url: str) -> Optional[str]:
    """Key used by the visited set; None when the URL is not fetchable."""
    try:
        p = urlsplit((url or "").strip())
    except ValueError:
        return None
    scheme = (p.scheme or "").lower()
    if scheme not in ("http", "https") or not p.netloc:
        return None
    return urlunsplit((scheme, p.netloc.lower(), p.path or "/", p.query, ""))


def sitemap_candidates(root_url: str) -> List[str]:
    origin = site_origin(root_url)
    return [origin + path for path in SITEMAP_CANDIDATE_PATHS]


def looks_like_sitemap_url(loc: str) -> bool:
    low = (loc or "").split("#")[0].split("?")[0].lower()
    return low.endswith(".xml") or low.endswith(".xml.gz")


def is_sitemap_index(xml_text: str) -> bool:
    return bool(SITEMAP_INDEX_RE.search(xml_text or ""))


def _dedupe(items) -> List[str]:
    return list(dict.fromkeys(items))


def extract_locs(xml_text: str) -> List[str]:
    """Every <loc> value in document order, deduplicated. Never raises."""
    if not xml_text:
        return []
    locs: List[str] = []
    for m in LOC_RE.finditer(xml_text):
        value = m.group(1).strip()
        cdata = CDATA_RE.match(value)
        if cdata:
            value = cdata.group(1).strip()
        value = html.unescape(value)
        if value:
            locs.append(value)
    return _dedupe(locs)


def parse_sitemaps_from_robots(robots_txt: str, base_url: str) -> List[str]:
    urls: List[str] = []
    if not robots_txt:
        return urls
    base = normalize_root_url(base_url)
    # Match lines like: Sitemap: https://example.com/sitemap.xml
    for line in robots_txt.splitlines():
        m = ROBOTS_SITEMAP_RE.match(line)
        if not m:
            continue
        raw = m.group(1).strip()
        if not raw:
            continue
        urls.append(urljoin(base, raw))
    out = _dedupe(urls)
    print(f"[sitemap] Found {len(out)} sitemap URL(s) in robots.txt")
    return out


def maybe_decompress(content: bytes) -> bytes:
    """Gunzip when possible, otherwise hand the bytes back untouched."""
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(content)) as gz:
            return gz.read()
    except (OSError, EOFError, zlib.error):
        return content


def _wants_gunzip(url: str, content_type: str) -> bool:
    path = (url or "").split("#")[0].split("?")[0].lower()
    return "gzip" in (content_type or "").lower() or path.endswith(".gz")


class SitemapResolver:
    """Expands a site's sitemaps into the flat list of page URLs they reference.

    One resolver owns one shared HTTP client; every ``resolve`` call gets its
    own visited set. Fetch and parse problems are reported and skipped, so
    ``resolve`` never raises and an empty list simply means "no sitemap data".
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = settings.FETCH_TIMEOUT_SECONDS,
        max_depth: int = MAX_SITEMAP_DEPTH,
    ):
        self.timeout = timeout
        self.max_depth = max_depth
        self._owns_client = client is None
        if client is None:
            headers = {"User-Agent": _random_user_agent(), "Accept": "application/xml,text/xml,text/plain,*/*;q=0.8"}
            client = httpx.Client(timeout=timeout, headers=headers, follow_redirects=True)
        self.client = client

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "SitemapResolver":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def fetch_text(self, url: str) -> Optional[str]:
        try:
            r = self.client.get(url, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            print(f"[sitemap] Fetch failed: {url} ({type(e).__name__})")
            return None
        if r.status_code >= 400:
            print(f"[sitemap] Skip (status={r.status_code}): {url}")
            return None
        content = r.content or b""
        if _wants_gunzip(url, r.headers.get("content-type", "")):
            content = maybe_decompress(content)
        return content.decode("utf-8", errors="ignore")

    def fetch_document(self, url: str) -> Optional[SitemapDocument]:
        text = self.fetch_text(url)
        if not text:
            return None
        return SitemapDocument(url=url, raw_text=text, locations=extract_locs(text), is_index=is_sitemap_index(text))

    def expand(self, sitemap_url: str, visited: Set[str], depth: int = 0) -> List[str]:
        """Terminal page URLs reachable from one sitemap document."""
        if not sitemap_url or depth > self.max_depth:
            return []
        norm = canonical_sitemap_url(sitemap_url)
        if norm is None or norm in visited:
            return []
        visited.add(norm)
        print(f"[sitemap] Expanding (depth={depth}): {norm}")
        doc = self.fetch_document(norm)
        if doc is None or not doc.locations:
            return []
        pages: List[str] = []
        for loc in doc.locations:
            # Children of a <sitemapindex> are sitemaps whatever their suffix
            if doc.is_index or looks_like_sitemap_url(loc):
                pages.extend(self.expand(loc, visited, depth + 1))
            else:
                pages.append(loc)
        return _dedupe(pages)

    def sitemaps_from_robots(self, root_url: str) -> List[str]:
        robots_url = urljoin(site_origin(root_url) + "/", "robots.txt")
        print(f"[sitemap] Fetching robots.txt -> {robots_url}")
        text = self.fetch_text(robots_url)
        if not text:
            print("[sitemap] No robots.txt available")
            return []
        return parse_sitemaps_from_robots(text, root_url)

    def resolve(self, target: Union[SiteTarget, str]) -> List[str]:
        root_url = target.root_url if isinstance(target, SiteTarget) else str(target)
        root_url = normalize_root_url(root_url)
        visited: Set[str] = set()
        pages: List[str] = []
        for candidate in sitemap_candidates(root_url):
            pages.extend(self.expand(candidate, visited))
        if not pages:
            for sm in self.sitemaps_from_robots(root_url):
                pages.extend(self.expand(sm, visited))
        out = _dedupe(pages)
        print(f"[sitemap] Total page URLs for {root_url}: {len(out)} (sitemaps visited={len(visited)})")
        return out


def resolve_sitemap_urls(root_url: str, timeout: float = settings.FETCH_TIMEOUT_SECONDS) -> List[str]:
    with SitemapResolver(timeout=timeout) as resolver:
        return resolver.resolve(root_url)
