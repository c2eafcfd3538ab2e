import os
import json
from typing import Any, Dict, List, Optional

import settings
from models import DiscoveryResult, SiteTarget, SocialLinks
from sitemap_discovery import SitemapResolver
from sitemap_filters import match_patterns
from homepage_scanner import browser_session, scan_homepage
from site_config import SiteConfigError, load_patterns, load_sites, load_sites_from_excel


def should_scan_homepage(sitemap_matches: List[str], policy: str = settings.HOMEPAGE_SCAN) -> bool:
    return policy == "always" or not sitemap_matches


def discover_site(
    target: SiteTarget,
    resolver: SitemapResolver,
    browser=None,
    policy: str = settings.HOMEPAGE_SCAN,
    nav_timeout_ms: int = settings.NAV_TIMEOUT_MS,
) -> DiscoveryResult:
    """Sitemap first; the homepage is scanned when the policy asks for it."""
    page_urls = resolver.resolve(target)
    sitemap_matches = match_patterns(page_urls, target.patterns, target.root_only)
    print(f"[discover] {target.root_url}: sitemap urls={len(page_urls)} matches={len(sitemap_matches)}")

    homepage_matches: List[str] = []
    socials = SocialLinks()
    if browser is not None and should_scan_homepage(sitemap_matches, policy):
        scan = scan_homepage(browser, target.root_url, target.patterns, timeout_ms=nav_timeout_ms)
        homepage_matches = match_patterns(scan.matches, target.patterns, target.root_only)
        socials = scan.socials

    return DiscoveryResult(
        target=target,
        sitemap_matches=sitemap_matches,
        homepage_matches=homepage_matches,
        socials=socials,
    )


def _discover_all(targets: List[SiteTarget], resolver: SitemapResolver, browser, policy: str) -> List[DiscoveryResult]:
    results: List[DiscoveryResult] = []
    total = len(targets)
    for i, target in enumerate(targets, 1):
        print(f"[discover] ({i}/{total}) {target.root_url} patterns={target.patterns} rootOnly={target.root_only}")
        try:
            results.append(discover_site(target, resolver, browser, policy))
        except Exception as e:
            # One broken site never stops the run
            print(f"[discover] Error for {target.root_url}: {e}")
            results.append(DiscoveryResult(target=target, error=str(e)))
    return results


def run_discovery(
    targets: List[SiteTarget],
    policy: str = settings.HOMEPAGE_SCAN,
    headless: bool = not settings.HEADFUL,
    resolver: Optional[SitemapResolver] = None,
    browser=None,
) -> List[DiscoveryResult]:
    """Sequential discovery over all targets with one HTTP client and one browser."""
    own_resolver = resolver is None
    resolver = resolver or SitemapResolver()
    try:
        if browser is not None:
            return _discover_all(targets, resolver, browser, policy)
        with browser_session(headless=headless) as b:
            return _discover_all(targets, resolver, b, policy)
    finally:
        if own_resolver:
            resolver.close()


def discovery_records(results: List[DiscoveryResult]) -> List[Dict[str, Any]]:
    return [r.to_record() for r in results]


def write_json(data: Any, out_path: str) -> str:
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    return out_path


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Find blog/news listing pages via sitemaps, with a homepage fallback")
    parser.add_argument("--sites", default=None, help="Path to sites.json (default configs/sites.json)")
    parser.add_argument("--patterns", default=None, help="Path to patterns.json (default configs/patterns.json)")
    parser.add_argument("--excel", help="Path to .xlsx with URLs (first column or header 'url')")
    parser.add_argument("--output", default=settings.DISCOVERY_OUTPUT, help="Output JSON path")
    parser.add_argument("--homepage-scan", dest="homepage_scan", choices=["fallback", "always"], default=settings.HOMEPAGE_SCAN)
    parser.add_argument("--headful", action="store_true", default=settings.HEADFUL)
    args = parser.parse_args()

    try:
        if args.excel:
            targets = load_sites_from_excel(args.excel, load_patterns(args.patterns))
        else:
            targets = load_sites(args.sites, args.patterns)
    except SiteConfigError as e:
        raise SystemExit(f"[config] {e}")

    results = run_discovery(targets, policy=args.homepage_scan, headless=not args.headful)
    out_path = write_json(discovery_records(results), args.output)
    found = sum(1 for r in results if r.matches)
    failed = sum(1 for r in results if r.error)
    print(f"[discover] Done: sites={len(results)} with_matches={found} errors={failed}")
    print(json.dumps({"success": True, "output": out_path}, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
