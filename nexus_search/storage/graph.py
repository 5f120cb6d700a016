"""
Graph storage for crawled pages.
Supports Neo4j and an in-memory backend for local runs.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Set, Tuple

from neo4j import AsyncGraphDatabase
from neo4j.exceptions import Neo4jError, DriverError

from ..crawler.webpage import Webpage
from ..utils.config import GraphConfig, Neo4jConfig

RESULT_LIMIT = 10

UPSERT_QUERY = """
UNWIND $webpages AS webpage

MERGE (w:Webpage {url: webpage.url})
SET
    w.status = webpage.status,
    w.title = webpage.title,
    w.is_404 = webpage.is_404,
    w.keywords = webpage.keywords,
    w.embeddings = webpage.embeddings,
    w.summary = webpage.summary

FOREACH (link IN coalesce(webpage.links, []) |
    MERGE (l:Webpage {url: link})
    MERGE (w)-[:LINKS_TO]->(l)
)

FOREACH (redirect IN coalesce(webpage.redirects, []) |
    MERGE (r:Webpage {url: redirect})
    MERGE (w)-[:REDIRECTS_TO]->(r)
)

FOREACH (keyword IN coalesce(webpage.keywords, []) |
    MERGE (k:Keyword {keyword: keyword})
    MERGE (w)-[:HAS_KEYWORD]->(k)
)
"""

KEYWORD_SEARCH_QUERY = """
WITH [keyword IN $keywords | toLower(keyword)] AS keywords
MATCH (w:Webpage)
WITH w, keywords,
  REDUCE(score = 0, keyword IN keywords |
    score +
    CASE WHEN toLower(coalesce(w.title, '')) CONTAINS keyword THEN 1 ELSE 0 END +
    CASE WHEN ANY(k IN coalesce(w.keywords, []) WHERE toLower(k) CONTAINS keyword) THEN 1 ELSE 0 END +
    CASE WHEN toLower(coalesce(w.summary, '')) CONTAINS keyword THEN 1 ELSE 0 END
  ) AS score
WHERE score > 0
RETURN w.url AS url, w.title AS title, w.summary AS summary, score
ORDER BY score DESC
LIMIT $limit
"""

VECTOR_SEARCH_QUERY = """
CALL db.index.vector.queryNodes($index_name, $limit, $embedding)
YIELD node, score
RETURN node.url AS url, node.title AS title, node.summary AS summary, score
ORDER BY score DESC
"""


class GraphStoreError(Exception):
    """Raised when the graph store cannot be reached or a query fails."""
    pass


def keyword_score(keywords: List[str], title: str, page_keywords: List[str], summary: str) -> int:
    """
    Number of (keyword x field) hits. Each keyword contributes at most one
    point per field: title, keyword list and summary. Matching is a
    case-insensitive substring test.
    """
    title = (title or '').lower()
    summary = (summary or '').lower()
    page_keywords = [k.lower() for k in page_keywords or []]

    score = 0
    for keyword in keywords:
        keyword = keyword.lower()
        score += keyword in title
        score += any(keyword in k for k in page_keywords)
        score += keyword in summary
    return score


def cosine_score(a: List[float], b: List[float]) -> Optional[float]:
    """Cosine similarity mapped to [0, 1] as (1 + cos) / 2, the scale Neo4j reports."""
    if not a or not b or len(a) != len(b):
        return None
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return None
    return (1 + sum(x * y for x, y in zip(a, b)) / norm) / 2


class GraphBackend:
    """Abstract base class for graph backends."""

    async def initialize(self):
        """Initialize the backend (connections, constraints, indexes)."""
        raise NotImplementedError

    async def upsert(self, webpages: List[Webpage]):
        """Merge webpages, their link/redirect targets and keywords into the graph."""
        raise NotImplementedError

    async def vector_search(self, embedding: List[float], limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def keyword_search(self, keywords: List[str], limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_webpage(self, url: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class InMemoryGraphBackend(GraphBackend):
    """Dictionary-backed property graph for development and tests."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.webpages: Dict[str, Dict[str, Any]] = {}
        self.keywords: Set[str] = set()
        self.edges: Set[Tuple[str, str, str]] = set()
        self._lock = asyncio.Lock()

    async def initialize(self):
        self.logger.info("In-memory graph backend initialized")

    def _merge_webpage(self, url: str) -> Dict[str, Any]:
        return self.webpages.setdefault(url, {'url': url})

    async def upsert(self, webpages: List[Webpage]):
        async with self._lock:
            for webpage in webpages:
                node = self._merge_webpage(webpage.url)
                node.update({
                    'status': webpage.status,
                    'title': webpage.title,
                    'is_404': webpage.is_404,
                    'keywords': list(webpage.keywords),
                    'embeddings': list(webpage.embeddings),
                    'summary': webpage.summary,
                })

                for link in webpage.links:
                    self._merge_webpage(link)
                    self.edges.add(('LINKS_TO', webpage.url, link))

                for redirect in webpage.redirects:
                    self._merge_webpage(redirect)
                    self.edges.add(('REDIRECTS_TO', webpage.url, redirect))

                for keyword in webpage.keywords:
                    self.keywords.add(keyword)
                    self.edges.add(('HAS_KEYWORD', webpage.url, keyword))

    async def vector_search(self, embedding: List[float], limit: int) -> List[Dict[str, Any]]:
        scored = []
        for node in self.webpages.values():
            score = cosine_score(embedding, node.get('embeddings') or [])
            if score is not None:
                scored.append((score, node))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [self._hit(node, score) for score, node in scored[:limit]]

    async def keyword_search(self, keywords: List[str], limit: int) -> List[Dict[str, Any]]:
        scored = []
        for node in self.webpages.values():
            score = keyword_score(keywords, node.get('title'), node.get('keywords'),
                                  node.get('summary'))
            if score > 0:
                scored.append((score, node))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [self._hit(node, score) for score, node in scored[:limit]]

    @staticmethod
    def _hit(node: Dict[str, Any], score) -> Dict[str, Any]:
        return {'url': node['url'], 'title': node.get('title'),
                'summary': node.get('summary'), 'score': score}

    async def get_webpage(self, url: str) -> Optional[Dict[str, Any]]:
        node = self.webpages.get(url)
        return dict(node) if node else None

    def edges_of(self, relationship: str, url: str) -> List[str]:
        return sorted(dst for rel, src, dst in self.edges if rel == relationship and src == url)

    async def get_stats(self) -> Dict[str, Any]:
        return {
            'webpages': len(self.webpages),
            'keywords': len(self.keywords),
            'relationships': len(self.edges),
        }

    async def close(self):
        pass


class Neo4jGraphBackend(GraphBackend):
    """Neo4j backend with a cosine vector index over Webpage.embeddings."""

    def __init__(self, config: Neo4jConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.driver = None

    async def initialize(self):
        try:
            self.driver = AsyncGraphDatabase.driver(
                self.config.uri, auth=(self.config.username, self.config.password)
            )
            await self.driver.verify_connectivity()
            await self._create_schema()
            self.logger.info(f"Connected to Neo4j at {self.config.uri}")
        except (Neo4jError, DriverError, OSError) as e:
            raise GraphStoreError(f"Failed to initialize Neo4j: {e}") from e

    async def _create_schema(self):
        statements = [
            "CREATE CONSTRAINT webpage_url IF NOT EXISTS "
            "FOR (w:Webpage) REQUIRE w.url IS UNIQUE",
            "CREATE CONSTRAINT keyword_value IF NOT EXISTS "
            "FOR (k:Keyword) REQUIRE k.keyword IS UNIQUE",
            f"CREATE VECTOR INDEX `{self.config.index_name}` IF NOT EXISTS "
            "FOR (w:Webpage) ON (w.embeddings) "
            "OPTIONS {indexConfig: {"
            f"`vector.dimensions`: {int(self.config.dimensions)}, "
            "`vector.similarity_function`: 'cosine'}}",
        ]
        for statement in statements:
            await self.driver.execute_query(statement, database_=self.config.database)

    async def _read(self, query: str, **parameters) -> List[Dict[str, Any]]:
        try:
            records, _, _ = await self.driver.execute_query(
                query, parameters, database_=self.config.database, routing_='r'
            )
            return [record.data() for record in records]
        except (Neo4jError, DriverError, OSError) as e:
            raise GraphStoreError(f"Neo4j query failed: {e}") from e

    @staticmethod
    async def _upsert_tx(tx, records: List[Dict[str, Any]]):
        result = await tx.run(UPSERT_QUERY, webpages=records)
        return await result.consume()

    async def upsert(self, webpages: List[Webpage]):
        records = [webpage.to_dict() for webpage in webpages]
        try:
            async with self.driver.session(database=self.config.database) as session:
                summary = await session.execute_write(self._upsert_tx, records)
            self.logger.debug(f"Upsert counters: {summary.counters}")
        except (Neo4jError, DriverError, OSError) as e:
            raise GraphStoreError(f"Failed to upsert webpages: {e}") from e

    async def vector_search(self, embedding: List[float], limit: int) -> List[Dict[str, Any]]:
        return await self._read(VECTOR_SEARCH_QUERY, index_name=self.config.index_name,
                                limit=limit, embedding=embedding)

    async def keyword_search(self, keywords: List[str], limit: int) -> List[Dict[str, Any]]:
        return await self._read(KEYWORD_SEARCH_QUERY, keywords=keywords, limit=limit)

    async def get_webpage(self, url: str) -> Optional[Dict[str, Any]]:
        rows = await self._read("MATCH (w:Webpage {url: $url}) RETURN properties(w) AS w", url=url)
        return rows[0]['w'] if rows else None

    async def get_stats(self) -> Dict[str, Any]:
        rows = await self._read(
            "MATCH (w:Webpage) WITH count(w) AS webpages "
            "OPTIONAL MATCH (k:Keyword) RETURN webpages, count(k) AS keywords"
        )
        return rows[0] if rows else {'webpages': 0, 'keywords': 0}

    async def close(self):
        if self.driver:
            await self.driver.close()
            self.driver = None


class GraphStore:
    """Main graph store interface that delegates to the configured backend."""

    def __init__(self, config: GraphConfig, backend: Optional[GraphBackend] = None):
        self.config = config
        self.backend = backend
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        if self.backend is None:
            if self.config.type == 'neo4j':
                self.backend = Neo4jGraphBackend(self.config.neo4j)
            elif self.config.type == 'memory':
                self.backend = InMemoryGraphBackend()
            else:
                raise GraphStoreError(f"Unsupported graph type: {self.config.type}")

        await self.backend.initialize()

    async def upsert(self, webpages: List[Webpage]) -> int:
        """Idempotently merge webpages into the graph. Returns the number written."""
        if not webpages:
            return 0
        await self.backend.upsert(webpages)
        self.logger.info(f"Webpages inserted: {len(webpages)}")
        return len(webpages)

    async def vector_search(self, embedding: List[float], limit: int = RESULT_LIMIT) -> List[Dict[str, Any]]:
        return (await self.backend.vector_search(embedding, limit))[:limit]

    async def keyword_search(self, keywords: List[str], limit: int = RESULT_LIMIT) -> List[Dict[str, Any]]:
        if not keywords:
            return []
        return (await self.backend.keyword_search(keywords, limit))[:limit]

    async def get_webpage(self, url: str) -> Optional[Dict[str, Any]]:
        return await self.backend.get_webpage(url)

    async def get_stats(self) -> Dict[str, Any]:
        return await self.backend.get_stats()

    async def close(self):
        if self.backend:
            await self.backend.close()
