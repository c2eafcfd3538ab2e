"""Tests for path pattern matching."""

from sitemap_filters import match_patterns, path_matches


class TestPathMatches:
    """Tests for the single-path predicate."""

    def test_root_only_allows_trailing_slash(self):
        """Exact path, with or without a trailing slash."""
        assert path_matches("/blog", "/blog", True)
        assert path_matches("/blog/", "/blog", True)
        assert not path_matches("/blog/post-1", "/blog", True)

    def test_substring_mode(self):
        """Pattern may appear anywhere in the path."""
        assert path_matches("/en/blog/post-1", "/blog", False)
        assert not path_matches("/news", "/blog", False)

    def test_empty_pattern_never_matches(self):
        """An empty pattern matches nothing."""
        assert not path_matches("/", "", True)
        assert not path_matches("/blog", "", False)


class TestMatchPatterns:
    """Tests for match_patterns."""

    def test_root_only_keeps_listing_page(self):
        """Only the listing page itself matches in root-only mode."""
        urls = ["https://x.com/blog/", "https://x.com/blog/post-1"]
        assert match_patterns(urls, ["/blog"], True) == ["https://x.com/blog/"]

    def test_substring_keeps_posts(self):
        """Both URLs match when substring matching is allowed."""
        urls = ["https://x.com/blog/", "https://x.com/blog/post-1"]
        assert set(match_patterns(urls, ["/blog"], False)) == set(urls)

    def test_empty_input(self):
        """No URLs in, no URLs out."""
        assert match_patterns([], ["/blog", "/posts"], True) == []

    def test_case_insensitive(self):
        """Paths and patterns are compared lower-cased."""
        assert match_patterns(["https://x.com/Blog"], ["/BLOG"], True) == ["https://x.com/Blog"]

    def test_query_and_fragment_ignored(self):
        """Only the path takes part in the comparison."""
        assert match_patterns(["https://x.com/blog?page=2#top"], ["/blog"], True) == ["https://x.com/blog?page=2#top"]

    def test_multiple_patterns_and_dedupe(self):
        """Any pattern may match; repeated URLs appear once."""
        urls = ["https://x.com/posts", "https://x.com/blog", "https://x.com/posts", "https://x.com/about"]
        assert match_patterns(urls, ["/blog", "/posts"], True) == ["https://x.com/posts", "https://x.com/blog"]

    def test_input_not_mutated(self):
        """The caller's list is left untouched."""
        urls = ["https://x.com/blog", "https://x.com/other"]
        before = list(urls)
        match_patterns(urls, ["/blog"], True)
        assert urls == before

    def test_relative_href_fallback(self):
        """Hrefs without scheme and host are compared on their stripped text."""
        assert match_patterns(["/blog/?ref=nav"], ["/blog"], True) == ["/blog/?ref=nav"]
        assert match_patterns(["/en/blog/x"], ["/blog"], False) == ["/en/blog/x"]
