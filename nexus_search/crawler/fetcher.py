"""
Web page fetcher with robots.txt support and sitemap discovery.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict, List
from urllib.robotparser import RobotFileParser
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError
from bs4 import BeautifulSoup

from .urls import get_origin, try_normalize

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    final_url: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None
    redirect_status: Optional[int] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None

    @property
    def redirected(self) -> bool:
        return self.redirect_status in REDIRECT_STATUSES

    @property
    def is_404(self) -> bool:
        return self.status_code == 404


class RobotsChecker:
    """Fetches robots.txt once per origin and answers allow/deny from the cache."""

    def __init__(self, user_agent: str):
        self.user_agent = user_agent
        self.robots_cache: Dict[str, RobotFileParser] = {}
        self._loading: Dict[str, asyncio.Lock] = {}
        self.logger = logging.getLogger(__name__)

    async def load(self, url: str, session: ClientSession) -> RobotFileParser:
        """Return the cached rules for the URL's origin, fetching them on first use."""
        origin = get_origin(url)
        if origin in self.robots_cache:
            return self.robots_cache[origin]

        lock = self._loading.setdefault(origin, asyncio.Lock())
        async with lock:
            if origin in self.robots_cache:
                return self.robots_cache[origin]

            robots_url = f"{origin}/robots.txt"
            rp = RobotFileParser()
            rp.set_url(robots_url)
            try:
                async with session.get(robots_url, timeout=ClientTimeout(total=10)) as response:
                    if response.status == 200:
                        rp.parse((await response.text()).splitlines())
                    elif response.status in (401, 403):
                        rp.disallow_all = True
                    else:
                        # No robots.txt, allow everything
                        rp.parse([])
            except (ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
                self.logger.warning(f"Could not fetch robots.txt for {origin}: {e}")
                rp.parse([])

            self.robots_cache[origin] = rp
            return rp

    async def can_fetch(self, url: str, session: ClientSession) -> bool:
        """Check if URL can be fetched according to robots.txt."""
        rp = await self.load(url, session)
        return rp.can_fetch(self.user_agent, url)


class WebFetcher:
    """
    Fetches web pages, robots.txt rules and sitemaps over one aiohttp session.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 respect_robots_txt: bool = True, robots_user_agent: Optional[str] = None,
                 sitemap_timeout: int = 60):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.respect_robots_txt = respect_robots_txt
        self.sitemap_timeout = sitemap_timeout

        self.logger = logging.getLogger(__name__)
        self.robots_checker = RobotsChecker(robots_user_agent or user_agent)

        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'robots_blocked': 0,
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit_per_host=10,
                    ttl_dns_cache=300,
                )
            )
            self.logger.debug("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("WebFetcher session closed")

    async def can_fetch(self, url: str) -> bool:
        """Robots policy check; always True when robots.txt is not respected."""
        if not self.respect_robots_txt:
            return True

        allowed = await self.robots_checker.can_fetch(url, self.session)
        if not allowed:
            self.stats['robots_blocked'] += 1
            self.logger.info(f"Robots.txt blocks access to: {url}")
        return allowed

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL, following redirects.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult with the response data or error information
        """
        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, allow_redirects=True) as response:
                content_type = response.headers.get('content-type', '').lower()
                redirect_status = response.history[0].status if response.history else None

                content = None
                if 'html' in content_type or 'xml' in content_type or 'text' in content_type:
                    content = await response.text(errors='replace')

                self.stats['successful_requests'] += 1
                self.logger.debug(f"Fetched {url}: {response.status} "
                                  f"({len(content) if content else 0} chars)")

                return FetchResult(
                    url=url,
                    status_code=response.status,
                    final_url=str(response.url),
                    content=content,
                    redirect_status=redirect_status,
                    content_type=content_type,
                    fetch_time=time.time() - start_time
                )

        except asyncio.TimeoutError:
            error_msg = "Request timeout"
            self.logger.warning(f"Timeout fetching {url}")

        except ClientError as e:
            error_msg = f"Client error: {str(e)}"
            self.logger.warning(f"Client error fetching {url}: {e}")

        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=0,
            error=error_msg,
            fetch_time=time.time() - start_time
        )

    async def fetch_sitemap(self, base_url: str) -> List[str]:
        """
        Fetch {base_url}/sitemap.xml and return the page URLs it lists.

        Sitemap indexes are followed one level deep. Any failure yields [].
        """
        try:
            return await asyncio.wait_for(
                self._read_sitemap(f"{base_url}/sitemap.xml", follow_index=True),
                timeout=self.sitemap_timeout
            )
        except (ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            self.logger.warning(f"Failed to fetch sitemap for {base_url}: {e}")
            return []

    async def _read_sitemap(self, sitemap_url: str, follow_index: bool) -> List[str]:
        async with self.session.get(sitemap_url) as response:
            if response.status != 200:
                self.logger.info(f"No sitemap at {sitemap_url} (HTTP {response.status})")
                return []
            content = await response.text()

        soup = BeautifulSoup(content, "lxml-xml")
        locations = [loc.get_text(strip=True) for loc in soup.find_all("loc")]

        if soup.find("sitemapindex") is not None:
            if not follow_index:
                return []
            urls = []
            for child in locations:
                try:
                    urls.extend(await self._read_sitemap(child, follow_index=False))
                except (ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
                    self.logger.warning(f"Skipping sitemap {child}: {e}")
            return urls

        return [url for url in locations if try_normalize(url)]

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
