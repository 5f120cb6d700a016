"""
Hybrid retrieval over the link graph: vector similarity and keyword overlap,
returned side by side without merging.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from ..crawler.analyzer import unique_keywords
from ..storage.graph import GraphStore, RESULT_LIMIT
from ..utils.monitoring import CrawlerMonitor

FAVICON_URL = ("https://t2.gstatic.com/faviconV2?client=SOCIAL&type=FAVICON"
               "&fallback_opts=TYPE,SIZE,URL&url={url}&size=64")


@dataclass
class SearchHit:
    url: str
    title: Optional[str]
    summary: Optional[str]
    favicon: str
    score: float

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SearchHit':
        return cls(
            url=row['url'],
            title=row.get('title'),
            summary=row.get('summary'),
            favicon=FAVICON_URL.format(url=row['url']),
            score=row.get('score', 0),
        )


class HybridRetrievalEngine:
    """
    Answers a query with two independent stages:

    * semantic: embed the query and take the nearest Webpage embeddings
    * keyword: extract query keywords and rank Webpages by field hits

    A failing stage yields an empty list; the other stage is unaffected.
    """

    def __init__(self, graph: GraphStore, analyzer, monitor: Optional[CrawlerMonitor] = None,
                 limit: int = RESULT_LIMIT):
        self.graph = graph
        self.analyzer = analyzer
        self.monitor = monitor
        self.limit = limit
        self.logger = logging.getLogger(__name__)

    async def search(self, query: str) -> Dict[str, Any]:
        t1 = time.perf_counter()
        semantic = await self._vector_stage(query)
        t2 = time.perf_counter()

        keywords, keyword_hits = await self._keyword_stage(query)
        t3 = time.perf_counter()

        if self.monitor:
            self.monitor.record_search_stage('semantic', t2 - t1)
            self.monitor.record_search_stage('keyword', t3 - t2)

        return {
            'semantic_keyword_search': [asdict(hit) for hit in semantic],
            'keyword_search': [asdict(hit) for hit in keyword_hits],
            'keywords': keywords,
            'performance': {
                'semantic_keyword_search': (t2 - t1) * 1000,
                'keyword_search': (t3 - t2) * 1000,
            },
        }

    async def _vector_stage(self, query: str) -> List[SearchHit]:
        try:
            embedding = await self.analyzer.embed_query(query)
            rows = await self.graph.vector_search(embedding, self.limit)
        except Exception as e:
            self.logger.error(f"Vector search stage failed: {e}")
            return []

        hits = [SearchHit.from_row(row) for row in rows[:self.limit]]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    async def _keyword_stage(self, query: str):
        try:
            keywords = unique_keywords(await self.analyzer.extract_keywords(query))
        except Exception as e:
            self.logger.error(f"Keyword extraction failed: {e}")
            return [], []

        if not keywords:
            return [], []

        try:
            rows = await self.graph.keyword_search(keywords, self.limit)
        except Exception as e:
            self.logger.error(f"Keyword search stage failed: {e}")
            return keywords, []

        return keywords, [SearchHit.from_row(row) for row in rows[:self.limit]]
