"""
Shared fixtures and test doubles for the crawl pipeline tests.
"""

from typing import Dict, List, Optional

import pytest

from nexus_search.crawler.coordinator import TaskCoordinator
from nexus_search.crawler.pool import WorkerPool
from nexus_search.crawler.webpage import Webpage
from nexus_search.messaging.bus import InMemoryMessageBus
from nexus_search.storage.graph import GraphStore, InMemoryGraphBackend
from nexus_search.storage.visited import VisitedLinkStore
from nexus_search.utils.config import Config, CrawlerConfig, GraphConfig
from nexus_search.utils.monitoring import initialize_monitoring


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the store makes."""

    def __init__(self):
        self.sets: Dict[str, set] = {}
        self.hashes: Dict[str, dict] = {}
        self.strings: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def sismember(self, key, value):
        self._check()
        return value in self.sets.get(key, set())

    async def sadd(self, key, *values):
        self._check()
        members = self.sets.setdefault(key, set())
        before = len(members)
        members.update(values)
        return len(members) - before

    async def scard(self, key):
        self._check()
        return len(self.sets.get(key, set()))

    async def expire(self, key, seconds):
        self._check()
        if key in self.sets or key in self.hashes:
            self.ttls[key] = seconds
            return True
        return False

    async def hset(self, key, mapping):
        self._check()
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def hgetall(self, key):
        self._check()
        return {k.encode(): str(v).encode() for k, v in self.hashes.get(key, {}).items()}

    async def get(self, key):
        self._check()
        value = self.strings.get(key)
        return value.encode() if value is not None else None

    async def set(self, key, value, ex=None):
        self._check()
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def expire_all(self):
        """Simulate every TTL running out."""
        for key in list(self.ttls):
            self.sets.pop(key, None)
            self.hashes.pop(key, None)
            self.strings.pop(key, None)
        self.ttls.clear()


class FakeSite:
    """Discovery double: robots rules and sitemap."""

    def __init__(self, disallowed: Optional[List[str]] = None,
                 sitemap: Optional[List[str]] = None):
        self.disallowed = disallowed or []
        self.sitemap = sitemap or []
        self.sitemap_requests: List[str] = []

    async def can_fetch(self, url: str) -> bool:
        return not any(url.startswith(prefix) for prefix in self.disallowed)

    async def fetch_sitemap(self, base_url: str) -> List[str]:
        self.sitemap_requests.append(base_url)
        return list(self.sitemap)


class FakeWorker:
    """Worker double serving pages from a fixed site map."""

    def __init__(self, site_pages: Dict[str, List[str]], failing: set, log: dict,
                 redirects: Optional[Dict[str, str]] = None):
        self.site_pages = site_pages
        self.failing = failing
        self.redirects = redirects or {}
        self.log = log

    async def __aenter__(self):
        self.log['opened'] += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.log['closed'] += 1

    async def visit(self, url: str) -> Webpage:
        self.log['visits'].append(url)
        if url in self.failing:
            raise RuntimeError(f"cannot fetch {url}")
        if url in self.redirects:
            return Webpage(url=url, status=301, redirects=[self.redirects[url]])
        return Webpage(
            url=url,
            title=f"Title of {url}",
            summary=f"Summary of {url}",
            keywords=["example"],
            embeddings=[1.0, 0.0],
            links=list(self.site_pages.get(url, [])),
        )


class FakeWorkerFactory:
    def __init__(self, site_pages: Optional[Dict[str, List[str]]] = None,
                 failing: Optional[set] = None, redirects: Optional[Dict[str, str]] = None):
        self.site_pages = site_pages or {}
        self.failing = failing or set()
        self.redirects = redirects or {}
        self.log = {'opened': 0, 'closed': 0, 'visits': []}

    def __call__(self) -> FakeWorker:
        return FakeWorker(self.site_pages, self.failing, self.log, self.redirects)


class FakeAnalyzer:
    def __init__(self, keywords=None, embedding=None, fail_keywords=False, fail_embedding=False):
        self.keywords = keywords or []
        self.embedding = embedding or [1.0, 0.0]
        self.fail_keywords = fail_keywords
        self.fail_embedding = fail_embedding

    async def extract_keywords(self, text):
        if self.fail_keywords:
            raise RuntimeError("model unavailable")
        return list(self.keywords)

    async def embed_query(self, text):
        if self.fail_embedding:
            raise RuntimeError("model unavailable")
        return list(self.embedding)


@pytest.fixture
def config():
    return Config(
        crawler=CrawlerConfig(parallelism=3, batch_size=2, batch_delay=0, insert_delay=0),
        graph=GraphConfig(type='memory'),
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def monitor():
    return initialize_monitoring()


@pytest.fixture
def pipeline(config, fake_redis, monitor):
    """Factory for a coordinator wired to in-memory doubles."""

    def build(site_pages=None, failing=None, site=None, redirects=None):
        bus = InMemoryMessageBus()
        graph = GraphStore(config.graph, backend=InMemoryGraphBackend())
        factory = FakeWorkerFactory(site_pages, failing, redirects)
        coordinator = TaskCoordinator(
            config,
            bus,
            site or FakeSite(),
            VisitedLinkStore(fake_redis),
            WorkerPool(factory, parallelism=config.crawler.parallelism, monitor=monitor),
            graph,
            monitor=monitor,
        )
        return coordinator, bus, graph, factory

    return build
