import random
from contextlib import contextmanager
from urllib.parse import urlsplit
from typing import Iterable, Iterator, List

from playwright.sync_api import sync_playwright, Error as PlaywrightError

import settings
from models import HomepageScan, SocialLinks
from sitemap_discovery import _random_user_agent
from sitemap_filters import match_patterns


FOOTER_LINK_SELECTOR = 'footer a[href], [role="contentinfo"] a[href], [id*="footer"] a[href], [class*="footer"] a[href]'

# Resolve against document.baseURI so <base href> and JS-inserted links are honored
RESOLVED_HREFS_JS = """els => els.map(a => {
    try { return new URL(a.getAttribute('href'), document.baseURI).href; } catch (e) { return null; }
}).filter(Boolean)"""

X_HOSTS = ("x.com", "twitter.com")
X_RESERVED_PATHS = ("intent", "share", "i", "home")
LINKEDIN_PREFIXES = ("/in/", "/company/", "/pub/", "/school/")


@contextmanager
def browser_session(headless: bool = True) -> Iterator:
    """One Chromium process for a whole run."""
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless)
        try:
            yield browser
        finally:
            browser.close()


def new_page(browser):
    return browser.new_page(
        user_agent=_random_user_agent(),
        viewport={"width": random.randint(1200, 1440), "height": random.randint(800, 1000)},
    )


def _dedupe(items) -> List[str]:
    return list(dict.fromkeys(items))


def http_links(hrefs: Iterable) -> List[str]:
    out: List[str] = []
    for h in hrefs or []:
        if not isinstance(h, str) or not h.strip():
            continue
        href = h.strip()
        try:
            p = urlsplit(href)
        except ValueError:
            continue
        if p.scheme.lower() not in ("http", "https") or not p.netloc:
            continue
        out.append(href)
    return _dedupe(out)


def _is_x_host(host: str) -> bool:
    return host in X_HOSTS or any(host.endswith("." + h) for h in X_HOSTS)


def _is_linkedin_host(host: str) -> bool:
    return host == "linkedin.com" or host.endswith(".linkedin.com")


def extract_social_links(hrefs: Iterable[str]) -> SocialLinks:
    """Canonical X/Twitter and LinkedIn profile URLs from a list of hrefs."""
    x_links: List[str] = []
    linkedin_links: List[str] = []
    for h in hrefs or []:
        try:
            u = urlsplit(str(h).strip())
        except ValueError:
            continue
        host = (u.hostname or "").lower()
        if not host or u.scheme not in ("http", "https"):
            continue
        if _is_x_host(host):
            parts = [s for s in (u.path or "").split("/") if s]
            if parts and parts[0].lower() not in X_RESERVED_PATHS:
                x_links.append(f"{u.scheme}://{host}/{parts[0]}")
        elif _is_linkedin_host(host):
            path = (u.path or "").rstrip("/")
            if path.lower().startswith(LINKEDIN_PREFIXES):
                linkedin_links.append(f"{u.scheme}://{host}{path}")
    return SocialLinks(x=_dedupe(x_links), linkedin=_dedupe(linkedin_links))


def load_homepage(page, root_url: str, timeout_ms: int = settings.NAV_TIMEOUT_MS) -> bool:
    """Navigate and let client-rendered navigation settle. False means "no result"."""
    try:
        response = page.goto(root_url, wait_until="networkidle", timeout=timeout_ms)
    except PlaywrightError as e:
        print(f"[homepage] Navigation failed for {root_url}: {type(e).__name__}")
        return False
    if response is None or response.status >= 400:
        status = response.status if response is not None else "none"
        print(f"[homepage] Unusable response for {root_url} (status={status})")
        return False
    try:
        page.wait_for_load_state("networkidle", timeout=10000)
        page.wait_for_timeout(500)
    except PlaywrightError:
        pass
    return True


def _eval_hrefs(page, selector: str, script: str) -> List:
    try:
        return page.eval_on_selector_all(selector, script) or []
    except PlaywrightError as e:
        print(f"[homepage] Could not read anchors ({selector[:30]}...): {type(e).__name__}")
        return []


def scan_homepage(browser, root_url: str, patterns: Iterable[str], timeout_ms: int = settings.NAV_TIMEOUT_MS) -> HomepageScan:
    """
    Load the homepage once and collect:
      - anchors matching the patterns (always root-only: homepage anchors are noisy)
      - footer-scoped X/LinkedIn profile links

    Any navigation or browser failure gives an empty scan. The page is
    closed on every path.
    """
    print(f"[homepage] Scanning {root_url}")
    try:
        page = new_page(browser)
    except PlaywrightError as e:
        print(f"[homepage] Could not open a page for {root_url}: {e}")
        return HomepageScan()
    try:
        if not load_homepage(page, root_url, timeout_ms=timeout_ms):
            return HomepageScan()
        links = http_links(_eval_hrefs(page, "a[href]", RESOLVED_HREFS_JS))
        matches = match_patterns(links, list(patterns), root_only=True)
        socials = extract_social_links(_eval_hrefs(page, FOOTER_LINK_SELECTOR, "els => els.map(a => a.href).filter(Boolean)"))
        print(f"[homepage] {root_url}: links={len(links)} matches={len(matches)} x={len(socials.x)} linkedin={len(socials.linkedin)}")
        return HomepageScan(loaded=True, links=links, matches=matches, socials=socials)
    finally:
        try:
            page.close()
        except PlaywrightError:
            pass
