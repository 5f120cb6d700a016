"""
A single crawl execution unit: fetch, parse and analyze pages one at a time.
"""

import logging
from typing import Optional

from .analyzer import ContentAnalyzer
from .fetcher import WebFetcher
from .parser import ContentParser
from .urls import normalize_url, try_normalize, get_host, is_crawlable_link
from .webpage import Webpage
from ..utils.config import CrawlerConfig


class PageVisitError(Exception):
    """Raised when a page cannot be fetched."""
    pass


class CrawlWorker:
    """
    Owns one HTTP session for its lifetime. Use as an async context manager so
    the session is released on every exit path.
    """

    def __init__(self, fetcher: WebFetcher, analyzer: ContentAnalyzer,
                 parser: Optional[ContentParser] = None):
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.parser = parser or ContentParser()
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        await self.fetcher.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.fetcher.close()

    async def visit(self, url: str) -> Webpage:
        """
        Fetch and analyze one URL.

        Raises:
            PageVisitError: on transport errors and HTTP errors other than 404
        """
        result = await self.fetcher.fetch(url)
        if result.error:
            raise PageVisitError(result.error)

        page = Webpage(url=normalize_url(url), status=result.status_code)

        if result.redirected:
            target = try_normalize(result.final_url or '')
            # A redirect onto the same normalized URL (trailing slash, query) is the page itself
            if target and target != page.url:
                page.status = result.redirect_status
                page.redirects.append(target)
                return page

        if result.is_404:
            page.is_404 = True
            return page

        if result.status_code >= 400:
            raise PageVisitError(f"HTTP {result.status_code}")

        parsed = self.parser.parse(result.final_url or url, result.content or "")
        page.title = parsed.title
        page.links = [link for link in parsed.links if link != page.url]

        analysis = await self.analyzer.analyze(parsed.markdown)
        page.keywords = analysis.keywords
        page.summary = analysis.summary
        page.embeddings = analysis.embedding

        return page


def same_host_redirects(page: Webpage) -> list:
    """Redirect targets that stay on the page's host."""
    host = get_host(page.url)
    return [target for target in page.redirects if is_crawlable_link(target, host)]


class CrawlWorkerFactory:
    """Builds a fresh CrawlWorker (and HTTP session) per execution unit."""

    def __init__(self, config: CrawlerConfig, analyzer: ContentAnalyzer):
        self.config = config
        self.analyzer = analyzer

    def __call__(self) -> CrawlWorker:
        fetcher = WebFetcher(
            user_agent=self.config.user_agent,
            request_timeout=self.config.request_timeout,
            respect_robots_txt=False
        )
        return CrawlWorker(fetcher, self.analyzer)
