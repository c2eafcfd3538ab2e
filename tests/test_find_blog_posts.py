"""Tests for per-site discovery orchestration."""

import json

from conftest import ClosedBrowser, FakeBrowser, FakeHttpClient, FakePage
from find_blog_posts import discover_site, discovery_records, run_discovery, should_scan_homepage, write_json
from models import DiscoveryResult, SiteTarget, SocialLinks
from sitemap_discovery import SitemapResolver


def urlset(*locs):
    return "<urlset>" + "".join(f"<url><loc>{u}</loc></url>" for u in locs) + "</urlset>"


class RaisingResolver:
    def resolve(self, target):
        raise RuntimeError("resolver exploded")


class TestPolicy:
    """Tests for the homepage trigger policy."""

    def test_fallback_and_always(self):
        """Fallback scans only without sitemap matches; always scans every time."""
        assert should_scan_homepage([], "fallback")
        assert not should_scan_homepage(["https://a.com/blog"], "fallback")
        assert should_scan_homepage(["https://a.com/blog"], "always")


class TestDiscoverSite:
    """Tests for discover_site."""

    def test_homepage_fallback_end_to_end(self):
        """No sitemap anywhere: homepage anchors give the listing page only."""
        resolver = SitemapResolver(client=FakeHttpClient({}))
        browser = FakeBrowser(lambda: FakePage(links=["https://example.com/blog", "https://example.com/blog/archive"]))
        target = SiteTarget(root_url="https://example.com/", patterns=["/blog"], root_only=True)
        result = discover_site(target, resolver, browser, policy="fallback")
        assert result.sitemap_matches == []
        assert set(result.matches) == {"https://example.com/blog"}

    def test_sitemap_matches_skip_homepage(self):
        """Sitemap matches win and the browser is not used under fallback."""
        client = FakeHttpClient({"https://example.com/sitemap.xml": urlset("https://example.com/blog/", "https://example.com/blog/p1")})
        browser = FakeBrowser(lambda: FakePage(links=["https://example.com/posts"]))
        target = SiteTarget(root_url="https://example.com/", patterns=["/blog", "/posts"])
        result = discover_site(target, SitemapResolver(client=client), browser, policy="fallback")
        assert result.matches == ["https://example.com/blog/"]
        assert browser.pages == []

    def test_always_collects_socials_but_keeps_sitemap_matches(self):
        """Under 'always' the homepage is scanned; sitemap matches still decide."""
        client = FakeHttpClient({"https://example.com/sitemap.xml": urlset("https://example.com/blog")})
        browser = FakeBrowser(lambda: FakePage(links=["https://example.com/posts"], footer_links=["https://x.com/example"]))
        target = SiteTarget(root_url="https://example.com/", patterns=["/blog", "/posts"])
        result = discover_site(target, SitemapResolver(client=client), browser, policy="always")
        assert result.matches == ["https://example.com/blog"]
        assert result.homepage_matches == ["https://example.com/posts"]
        assert result.socials.x == ["https://x.com/example"]

    def test_substring_mode_uses_sitemap(self):
        """rootOnly=false lets post URLs under the pattern through."""
        client = FakeHttpClient({"https://example.com/sitemap.xml": urlset("https://example.com/en/blog/p1", "https://example.com/about")})
        target = SiteTarget(root_url="https://example.com/", patterns=["/blog"], root_only=False)
        result = discover_site(target, SitemapResolver(client=client), None)
        assert result.matches == ["https://example.com/en/blog/p1"]


class TestRunDiscovery:
    """Tests for run_discovery and the output records."""

    def test_failures_do_not_stop_the_run(self):
        """A site whose resolver raises is recorded with an error."""
        targets = [SiteTarget(root_url="https://a.com/"), SiteTarget(root_url="https://b.com/")]
        browser = FakeBrowser(lambda: FakePage())
        results = run_discovery(targets, resolver=RaisingResolver(), browser=browser)
        assert len(results) == 2
        assert all(r.error == "resolver exploded" for r in results)

    def test_closed_browser_keeps_sitemap_matches(self):
        """A homepage scan that cannot open a page is no result, not a site error."""
        client = FakeHttpClient({"https://example.com/sitemap.xml": urlset("https://example.com/blog")})
        target = SiteTarget(root_url="https://example.com/", patterns=["/blog"])
        results = run_discovery([target], policy="always", resolver=SitemapResolver(client=client), browser=ClosedBrowser())
        assert results[0].error is None
        assert results[0].matches == ["https://example.com/blog"]

    def test_records_shape(self, tmp_path):
        """Successful sites carry matches and socials; failed ones carry error."""
        ok = DiscoveryResult(
            target=SiteTarget(root_url="https://a.com/", patterns=["/blog"]),
            sitemap_matches=["https://a.com/blog"],
            socials=SocialLinks(linkedin=["https://linkedin.com/company/a"]),
        )
        bad = DiscoveryResult(target=SiteTarget(root_url="https://b.com/", patterns=["/blog"]), error="boom")
        records = discovery_records([ok, bad])
        assert records[0] == {
            "url": "https://a.com/",
            "patterns": ["/blog"],
            "matches": ["https://a.com/blog"],
            "socials": {"x": [], "linkedin": ["https://linkedin.com/company/a"]},
        }
        assert records[1] == {"url": "https://b.com/", "patterns": ["/blog"], "error": "boom"}

        out = write_json(records, str(tmp_path / "out" / "find-blog-posts.json"))
        with open(out, encoding="utf-8") as f:
            assert json.load(f) == records
