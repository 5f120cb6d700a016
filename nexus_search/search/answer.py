"""
Generated answers over search results, using the cached markdown of the
top source pages as model context.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from ..crawler.analyzer import ContentAnalyzer
from ..crawler.fetcher import WebFetcher
from ..crawler.parser import ContentParser
from .retrieval import HybridRetrievalEngine


class AnswerEngine:
    """
    Answers a query in three steps:

    * run the hybrid search, or take the caller's sources
    * load each source's markdown from Redis, fetching and caching it on a miss
    * ask the analyzer for an answer over that context

    Sources whose page cannot be fetched are left out of the context.
    """

    def __init__(self, engine: HybridRetrievalEngine, analyzer: ContentAnalyzer,
                 fetcher: WebFetcher, redis_client: redis.Redis,
                 parser: Optional[ContentParser] = None,
                 max_sources: int = 3, content_ttl: int = 300):
        self.engine = engine
        self.analyzer = analyzer
        self.fetcher = fetcher
        self.redis_client = redis_client
        self.parser = parser or ContentParser()
        self.max_sources = max_sources
        self.content_ttl = content_ttl
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def content_key(url: str) -> str:
        return f"content:{url}"

    async def answer(self, query: str,
                     sources: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        t1 = time.perf_counter()
        if sources is None:
            sources = self.pick_sources(await self.engine.search(query))
        sources = sources[:self.max_sources]

        context = []
        for source in sources:
            content = await self.load_content(source['url'])
            if content:
                context.append({'url': source['url'], 'title': source.get('title'),
                                'content': content})
        t2 = time.perf_counter()

        if not context:
            self.logger.info(f"No source content available for query: {query}")
            return {'answer': "", 'sources': [], 'performance': {'context': (t2 - t1) * 1000}}

        answer = await self.analyzer.answer(query, context)
        t3 = time.perf_counter()

        return {
            'answer': answer,
            'sources': [{'url': c['url'], 'title': c['title']} for c in context],
            'performance': {
                'context': (t2 - t1) * 1000,
                'answer': (t3 - t2) * 1000,
            },
        }

    def pick_sources(self, results: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Top hits of both stages, semantic first, de-duplicated by URL."""
        picked = {}
        for hit in results.get('semantic_keyword_search', []) + results.get('keyword_search', []):
            picked.setdefault(hit['url'], hit)
            if len(picked) == self.max_sources:
                break
        return list(picked.values())

    async def load_content(self, url: str) -> str:
        """Markdown of a page, '' when it cannot be fetched."""
        key = self.content_key(url)
        cached = await self.redis_client.get(key)
        if cached is not None:
            return cached.decode('utf-8') if isinstance(cached, bytes) else cached

        result = await self.fetcher.fetch(url)
        if result.error or result.status_code >= 400:
            self.logger.warning(f"Skipping source {url}: {result.error or f'HTTP {result.status_code}'}")
            return ""

        content = self.parser.parse(result.final_url or url, result.content or "").markdown
        if content:
            await self.redis_client.set(key, content, ex=self.content_ttl)
        return content
