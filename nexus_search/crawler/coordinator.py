"""
Task coordinator: turns one crawl request into a converging sequence of
fetch batches and graph writes, driven by topic messages.

    init_crawl -> crawl_links -> crawl_links_batch -> insert_nodes
                       ^                |
                       +----------------+  newly discovered links

The loop converges because the visited set only grows and dedup plus
robots filtering only shrink each round's candidates.
"""

import asyncio
import logging
import secrets
from typing import Any, List, Optional

from .messages import (
    CrawlLinks, CrawlLinksBatch, InitCrawl, InsertNodes,
    MESSAGE_TYPES, TOPICS, MessageValidationError, decode_message,
)
from .pool import WorkerPool
from .urls import dedupe_urls, normalize_url
from .worker import same_host_redirects
from ..messaging.bus import InMemoryMessageBus, MessageBus
from ..storage.graph import GraphStore
from ..storage.visited import VisitedLinkStore
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


def new_task_id() -> str:
    """Random 8 hex character task identifier."""
    return secrets.token_hex(4)


class TaskCoordinator:
    """
    Handles one pipeline message at a time. Collaborators:

    * bus: publishes follow-up messages
    * site: discovery fetcher answering can_fetch(url) and fetch_sitemap(base_url)
    * visited: dedup and lock store
    * pool: worker pool executor
    * graph: graph store adapter
    """

    def __init__(self, config: Config, bus: MessageBus, site, visited: VisitedLinkStore,
                 pool: WorkerPool, graph: GraphStore,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.bus = bus
        self.site = site
        self.visited = visited
        self.pool = pool
        self.graph = graph
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self._handlers = {
            InitCrawl: self.handle_init_crawl,
            CrawlLinks: self.handle_crawl_links,
            CrawlLinksBatch: self.handle_crawl_links_batch,
            InsertNodes: self.handle_insert_nodes,
        }
        missing = set(MESSAGE_TYPES.values()) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for message types: {sorted(t.topic for t in missing)}")

    @property
    def batch_size(self) -> int:
        return self.config.crawler.batch_size

    async def _publish(self, message):
        await self.bus.publish(message.topic, message.to_payload())

    async def submit_crawl(self, url: str, sitemap: bool = False,
                           max_pages: Optional[int] = None):
        """Publish one init_crawl message. Fire-and-forget."""
        normalize_url(url)
        await self._publish(InitCrawl(url=url, sitemap=sitemap, max_pages=max_pages))
        self.logger.info(f"Crawl requested for {url}")

    async def handle(self, topic: str, payload: Any):
        """
        Validate and dispatch one delivery.

        Malformed messages are logged and dropped. Handler errors (store
        failures) are counted and re-raised.
        """
        try:
            message = decode_message(topic, payload)
            await self._handlers[type(message)](message)
        except MessageValidationError as e:
            self.logger.error(f"Dropping malformed {topic} message: {e}")
            if self.monitor:
                self.monitor.record_dropped_message(topic)
            return
        except Exception:
            if self.monitor:
                self.monitor.record_message_failure(topic)
            raise

        if self.monitor:
            self.monitor.record_message(topic)

    async def _consume(self, topic: str, payload: Any):
        try:
            await self.handle(topic, payload)
        except Exception as e:
            self.logger.error(f"Failed to handle {topic} message: {e}", exc_info=True)

    async def run(self, stop_event: asyncio.Event):
        """Consume pipeline topics until stop_event is set."""
        self.logger.info(f"Coordinator listening on topics: {', '.join(TOPICS)}")
        await self.bus.listen(TOPICS, self._consume, stop_event)

    async def run_until_idle(self) -> int:
        """Drain an in-memory bus in-process. Returns the number of messages handled."""
        if not isinstance(self.bus, InMemoryMessageBus):
            raise TypeError("run_until_idle requires an in-memory message bus")

        handled = 0
        while self.bus.pending():
            handled += await self.bus.drain(self._consume)
        return handled

    async def handle_init_crawl(self, message: InitCrawl):
        base_url = normalize_url(message.url)

        urls = [base_url]
        if message.sitemap:
            sitemap = await self.site.fetch_sitemap(base_url)
            urls.extend(sitemap)
            self.logger.info(f"The sitemap contains {len(sitemap)} URLs")

        task_id = new_task_id()
        log = get_crawler_logger(__name__, task_id=task_id)
        async with self.visited.lock(task_id):
            await self.visited.register_task(task_id, base_url, self.config.redis.visited_ttl)

        await self._publish(CrawlLinks(
            task_id=task_id,
            base_url=base_url,
            links=urls,
            max_pages=message.max_pages or self.config.crawler.max_pages,
        ))
        log.info(f"Task created for {base_url}")

    async def handle_crawl_links(self, message: CrawlLinks):
        log = get_crawler_logger(__name__, task_id=message.task_id)

        candidates = dedupe_urls(message.links)
        allowed = []
        for link in candidates:
            if await self.site.can_fetch(link):
                allowed.append(normalize_url(link))
        log.info(f"{len(allowed)}/{len(candidates)} links allowed for crawling")

        batches = [allowed[i:i + self.batch_size] for i in range(0, len(allowed), self.batch_size)]
        for i, links_to_visit in enumerate(batches):
            if i > 0:
                await asyncio.sleep(self.config.crawler.batch_delay)
            await self._publish(CrawlLinksBatch(
                task_id=message.task_id,
                base_url=message.base_url,
                links_to_visit=links_to_visit,
                max_pages=message.max_pages,
            ))

    async def handle_crawl_links_batch(self, message: CrawlLinksBatch):
        task_id = message.task_id
        log = get_crawler_logger(__name__, task_id=task_id)

        async with self.visited.lock(task_id):
            links_to_visit = await self.visited.filter_unvisited(
                task_id, dedupe_urls(message.links_to_visit)
            )

            if message.max_pages is not None:
                remaining = message.max_pages - await self.visited.count(task_id)
                if remaining < len(links_to_visit):
                    log.info(f"Page limit {message.max_pages} reached, "
                             f"dispatching {max(remaining, 0)} of {len(links_to_visit)} links")
                    links_to_visit = links_to_visit[:max(remaining, 0)]

            if not links_to_visit:
                log.info("Nothing left to visit in this batch")
                return

            log.info(f"Filtered links to visit: {links_to_visit}")
            pages = await self.pool.run(links_to_visit)

            discovered: List[str] = []
            for page in pages:
                await self.visited.add(task_id, page.url)
                discovered.extend(page.links)
                discovered.extend(same_host_redirects(page))

            new_links = await self.visited.filter_unvisited(task_id, dedupe_urls(discovered))
            if new_links:
                await self._publish(CrawlLinks(
                    task_id=task_id,
                    base_url=message.base_url,
                    links=new_links,
                    max_pages=message.max_pages,
                ))

        await asyncio.sleep(self.config.crawler.insert_delay)

        if pages:
            await self._publish(InsertNodes(
                task_id=task_id,
                base_url=message.base_url,
                nodes=[page.to_dict() for page in pages],
            ))

    async def handle_insert_nodes(self, message: InsertNodes):
        webpages = message.webpages()
        if not webpages:
            return

        log = get_crawler_logger(__name__, task_id=message.task_id)
        log.info("Inserting Nodes...")

        inserted = await self.graph.upsert(webpages)
        async with self.visited.lock(message.task_id):
            await self.visited.expire(message.task_id, self.config.redis.visited_ttl)

        if self.monitor:
            self.monitor.record_nodes_inserted(inserted)
        log.info(f"{inserted} nodes inserted")
