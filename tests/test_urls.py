import pytest

from nexus_search.crawler.urls import (
    normalize_url, try_normalize, dedupe_urls, extract_crawlable_links, is_crawlable_link,
)


class TestNormalizeUrl:
    def test_trailing_slash_removed(self):
        assert normalize_url("https://example.com/") == "https://example.com"
        assert normalize_url("https://example.com/docs/") == "https://example.com/docs"

    def test_fragment_and_query_dropped(self):
        assert normalize_url("https://example.com/a#top") == "https://example.com/a"
        assert normalize_url("https://example.com/a?page=2") == "https://example.com/a"

    def test_scheme_and_host_lower_cased(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_default_port_dropped(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:80") == "http://example.com"

    def test_non_default_port_kept(self):
        assert normalize_url("http://example.com:8080/a/") == "http://example.com:8080/a"

    @pytest.mark.parametrize("url", [
        "https://example.com/",
        "https://example.com/a b/",
        "http://example.com:8080/x/y/#frag",
        "https://example.com/%7Euser",
    ])
    def test_idempotent(self, url):
        once = normalize_url(url)
        assert normalize_url(once) == once

    @pytest.mark.parametrize("url", ["mailto:me@example.com", "ftp://example.com", "/relative", ""])
    def test_rejects_non_http(self, url):
        with pytest.raises(ValueError):
            normalize_url(url)
        assert try_normalize(url) is None


def test_dedupe_urls_preserves_first_appearance():
    urls = ["https://example.com/b/", "https://example.com/a", "https://example.com/b", "nope"]
    assert dedupe_urls(urls) == ["https://example.com/b", "https://example.com/a"]


class TestCrawlableLinks:
    def test_relative_links_resolved_and_filtered(self):
        hrefs = [
            "/about",
            "contact/",
            "#section",
            "https://other.org/page",
            "/files/report.pdf",
            "/wp-content/theme.css",
            "mailto:hello@example.com",
            "/about#team",
        ]
        links = extract_crawlable_links("https://example.com/docs/", hrefs)
        assert links == ["https://example.com/about", "https://example.com/docs/contact"]

    def test_social_hosts_blacklisted(self):
        assert not is_crawlable_link("https://www.youtube.com/watch", "www.youtube.com")
        assert not is_crawlable_link("https://x.com/someone", "x.com")

    def test_similar_hosts_not_blacklisted(self):
        assert is_crawlable_link("https://netflix.com/browse", "netflix.com")

    @pytest.mark.parametrize("url", [
        "https://www.example.com/a",
        "https://docs.example.com/a",
        "https://example.com/a",
    ])
    def test_www_and_subdomains_are_same_site(self, url):
        assert is_crawlable_link(url, "example.com")
        assert is_crawlable_link(url, "www.example.com")

    @pytest.mark.parametrize("url", [
        "https://other.org/a",
        "https://notexample.com/a",
        "https://example.com.evil.org/a",
    ])
    def test_other_sites_rejected(self, url):
        assert not is_crawlable_link(url, "example.com")

    def test_subdomain_links_extracted(self):
        links = extract_crawlable_links("https://example.com/", ["https://www.example.com/pricing", "https://blog.example.com/"])
        assert links == ["https://www.example.com/pricing", "https://blog.example.com"]
