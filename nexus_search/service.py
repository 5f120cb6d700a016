"""
Wires the pipeline components together from a Config.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from .crawler.analyzer import ContentAnalyzer
from .crawler.coordinator import TaskCoordinator
from .crawler.fetcher import WebFetcher
from .crawler.pool import WorkerPool
from .crawler.worker import CrawlWorkerFactory
from .messaging.bus import MessageBus, create_message_bus
from .search.answer import AnswerEngine
from .search.retrieval import HybridRetrievalEngine
from .storage.graph import GraphStore
from .storage.visited import VisitedLinkStore
from .utils.config import Config
from .utils.monitoring import CrawlerMonitor, initialize_monitoring


class NexusService:
    """Owns every long-lived client: Redis, the message bus, Neo4j, Gemini and HTTP."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.redis_client: Optional[redis.Redis] = None
        self.bus: Optional[MessageBus] = None
        self.site_fetcher: Optional[WebFetcher] = None
        self.graph: Optional[GraphStore] = None
        self.analyzer: Optional[ContentAnalyzer] = None
        self.coordinator: Optional[TaskCoordinator] = None
        self.engine: Optional[HybridRetrievalEngine] = None
        self.answers: Optional[AnswerEngine] = None
        self.monitor: Optional[CrawlerMonitor] = None

    async def initialize(self):
        """Initialize all components."""
        try:
            self.monitor = initialize_monitoring(
                self.config.monitoring.metrics_enabled,
                self.config.monitoring.prometheus_port
            )
            self.monitor.metrics.start_server()

            self.redis_client = redis.Redis(
                host=self.config.redis.host,
                port=self.config.redis.port,
                db=self.config.redis.db,
                username=self.config.redis.username,
                password=self.config.redis.password,
                decode_responses=False
            )
            await self.redis_client.ping()
            self.logger.info("Redis connection established")

            self.bus = create_message_bus(self.config.messaging, self.redis_client)
            await self.bus.start()

            self.graph = GraphStore(self.config.graph)
            await self.graph.initialize()

            self.analyzer = ContentAnalyzer(self.config.analyzer)

            self.site_fetcher = WebFetcher(
                user_agent=self.config.crawler.user_agent,
                request_timeout=self.config.crawler.request_timeout,
                respect_robots_txt=self.config.crawler.respect_robots_txt,
                robots_user_agent=self.config.crawler.robots_user_agent,
                sitemap_timeout=self.config.crawler.sitemap_timeout
            )
            await self.site_fetcher.start()

            visited = VisitedLinkStore(
                self.redis_client,
                lock_scope=self.config.redis.lock_scope,
                lock_timeout=self.config.redis.lock_timeout
            )
            pool = WorkerPool(
                CrawlWorkerFactory(self.config.crawler, self.analyzer),
                parallelism=self.config.crawler.parallelism,
                monitor=self.monitor
            )

            self.coordinator = TaskCoordinator(
                self.config, self.bus, self.site_fetcher, visited, pool, self.graph,
                monitor=self.monitor
            )
            self.engine = HybridRetrievalEngine(self.graph, self.analyzer, monitor=self.monitor)
            self.answers = AnswerEngine(
                self.engine, self.analyzer, self.site_fetcher, self.redis_client,
                max_sources=self.config.analyzer.answer_sources,
                content_ttl=self.config.redis.content_ttl
            )

            self.logger.info("Nexus service initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize Nexus service: {e}")
            await self.close()
            raise

    async def close(self):
        """Close all connections."""
        if self.site_fetcher:
            await self.site_fetcher.close()

        if self.bus:
            await self.bus.close()

        if self.graph:
            await self.graph.close()

        if self.redis_client:
            await self.redis_client.aclose()

        self.logger.info("Nexus service closed")
