from unittest.mock import AsyncMock, MagicMock

import pytest

from nexus_search.crawler.webpage import Webpage
from nexus_search.storage.graph import (
    GraphStore, GraphStoreError, InMemoryGraphBackend, Neo4jGraphBackend,
    UPSERT_QUERY, cosine_score, keyword_score,
)
from nexus_search.utils.config import GraphConfig, Neo4jConfig


def page(url, **kwargs):
    defaults = {'title': '', 'summary': '', 'keywords': [], 'embeddings': []}
    defaults.update(kwargs)
    return Webpage(url=url, **defaults)


@pytest.fixture
def backend():
    return InMemoryGraphBackend()


@pytest.fixture
def store(backend):
    return GraphStore(GraphConfig(type='memory'), backend=backend)


class TestKeywordScore:
    def test_one_point_per_keyword_per_field(self):
        score = keyword_score(
            ["cats", "dogs"],
            title="Cats and kittens",
            page_keywords=["pets"],
            summary="Dogs are great",
        )
        assert score == 2

    def test_case_insensitive_substring(self):
        assert keyword_score(["Cloud"], "cloudflare", ["CLOUD computing"], "") == 2

    def test_repeated_occurrences_count_once(self):
        assert keyword_score(["cat"], "cat cat cat", [], "") == 1

    def test_no_hits(self):
        assert keyword_score(["cats"], None, None, None) == 0


class TestCosineScore:
    def test_identical_vectors(self):
        assert cosine_score([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_score([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize("a,b", [([], [1.0]), ([1.0], [1.0, 2.0]), ([0.0, 0.0], [1.0, 1.0])])
    def test_undefined(self, a, b):
        assert cosine_score(a, b) is None


@pytest.mark.asyncio
async def test_upsert_is_idempotent(store, backend):
    home = page("https://example.com", title="Home", keywords=["shop"],
                links=["https://example.com/a"], redirects=["https://example.com/new"])

    assert await store.upsert([home]) == 1
    first = (dict(backend.webpages), set(backend.edges), set(backend.keywords))
    await store.upsert([home])

    assert (dict(backend.webpages), set(backend.edges), set(backend.keywords)) == first
    assert await store.get_stats() == {'webpages': 3, 'keywords': 1, 'relationships': 3}
    assert backend.edges_of('LINKS_TO', "https://example.com") == ["https://example.com/a"]
    assert backend.edges_of('REDIRECTS_TO', "https://example.com") == ["https://example.com/new"]
    assert backend.edges_of('HAS_KEYWORD', "https://example.com") == ["shop"]


@pytest.mark.asyncio
async def test_upsert_overwrites_properties(store):
    await store.upsert([page("https://example.com", title="Old", summary="old")])
    await store.upsert([page("https://example.com", title="New", summary="new")])

    node = await store.get_webpage("https://example.com")
    assert node['title'] == "New"
    assert node['summary'] == "new"


@pytest.mark.asyncio
async def test_link_target_is_placeholder_until_crawled(store):
    await store.upsert([page("https://example.com", links=["https://example.com/a"])])
    assert await store.get_webpage("https://example.com/a") == {'url': "https://example.com/a"}

    await store.upsert([page("https://example.com/a", title="A")])
    assert (await store.get_webpage("https://example.com/a"))['title'] == "A"


@pytest.mark.asyncio
async def test_upsert_nothing(store, backend):
    assert await store.upsert([]) == 0
    assert backend.webpages == {}


@pytest.mark.asyncio
async def test_keyword_search_ranked_and_capped(store):
    pages = [page(f"https://example.com/{i}", title=f"cats {i}") for i in range(15)]
    pages.append(page("https://example.com/best", title="cats", summary="dogs and cats"))
    pages.append(page("https://example.com/none", title="birds"))
    await store.upsert(pages)

    results = await store.keyword_search(["cats", "dogs"])

    assert len(results) == 10
    assert results[0]['url'] == "https://example.com/best"
    assert results[0]['score'] == 3
    assert all(r['score'] > 0 for r in results)
    assert "https://example.com/none" not in [r['url'] for r in results]


@pytest.mark.asyncio
async def test_keyword_search_without_keywords(store):
    await store.upsert([page("https://example.com", title="cats")])
    assert await store.keyword_search([]) == []


@pytest.mark.asyncio
async def test_vector_search_ordering_and_cap(store):
    pages = [page(f"https://example.com/{i}", embeddings=[1.0, float(i)]) for i in range(12)]
    pages.append(page("https://example.com/no-embedding"))
    await store.upsert(pages)

    results = await store.vector_search([1.0, 0.0])

    assert len(results) == 10
    assert results[0]['url'] == "https://example.com/0"
    scores = [r['score'] for r in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_unsupported_backend_type():
    store = GraphStore(GraphConfig(type='sqlite'))
    with pytest.raises(GraphStoreError):
        await store.initialize()


@pytest.mark.asyncio
async def test_neo4j_upsert_runs_merge_in_write_transaction():
    backend = Neo4jGraphBackend(Neo4jConfig(uri="bolt://graph:7687", username="neo4j", password="pw"))
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.execute_write = AsyncMock(return_value=MagicMock(counters={}))
    backend.driver = MagicMock()
    backend.driver.session.return_value = session

    await backend.upsert([page("https://example.com", title="Home")])

    tx_function, records = session.execute_write.call_args.args
    assert records[0]['url'] == "https://example.com"
    assert records[0]['title'] == "Home"

    tx = MagicMock()
    result = MagicMock()
    result.consume = AsyncMock()
    tx.run = AsyncMock(return_value=result)
    await tx_function(tx, records)
    tx.run.assert_awaited_once_with(UPSERT_QUERY, webpages=records)


@pytest.mark.asyncio
async def test_neo4j_keyword_search_passes_limit():
    backend = Neo4jGraphBackend(Neo4jConfig(uri="bolt://graph:7687", username="neo4j", password="pw"))
    record = MagicMock()
    record.data.return_value = {'url': "https://example.com", 'title': "Cats",
                                'summary': "", 'score': 1}
    backend.driver = MagicMock()
    backend.driver.execute_query = AsyncMock(return_value=([record], None, None))

    rows = await backend.keyword_search(["cats"], 10)

    assert rows == [{'url': "https://example.com", 'title': "Cats", 'summary': "", 'score': 1}]
    args, kwargs = backend.driver.execute_query.call_args
    assert args[1] == {'keywords': ["cats"], 'limit': 10}
    assert kwargs['routing_'] == 'r'
