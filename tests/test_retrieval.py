from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from nexus_search.crawler.webpage import Webpage
from nexus_search.search.retrieval import FAVICON_URL, HybridRetrievalEngine
from nexus_search.storage.graph import GraphStore, InMemoryGraphBackend
from nexus_search.utils.config import GraphConfig

from .conftest import FakeAnalyzer


@pytest_asyncio.fixture
async def graph():
    store = GraphStore(GraphConfig(type='memory'), backend=InMemoryGraphBackend())
    await store.upsert([
        Webpage(url="https://example.com/cats", title="All about cats", summary="Cats purr",
                keywords=["cats"], embeddings=[1.0, 0.0]),
        Webpage(url="https://example.com/dogs", title="Dogs", summary="Dogs bark",
                keywords=["dogs"], embeddings=[0.0, 1.0]),
    ])
    return store


@pytest.mark.asyncio
async def test_both_stages(graph, monitor):
    engine = HybridRetrievalEngine(graph, FakeAnalyzer(keywords=["Cats"], embedding=[1.0, 0.1]),
                                   monitor=monitor)

    results = await engine.search("tell me about cats")

    assert results['keywords'] == ["cats"]
    semantic = results['semantic_keyword_search']
    assert [hit['url'] for hit in semantic] == ["https://example.com/cats", "https://example.com/dogs"]
    assert semantic[0]['favicon'] == FAVICON_URL.format(url="https://example.com/cats")

    keyword = results['keyword_search']
    assert [hit['url'] for hit in keyword] == ["https://example.com/cats"]
    assert keyword[0]['score'] == 3
    assert keyword[0]['title'] == "All about cats"

    performance = results['performance']
    assert set(performance) == {'semantic_keyword_search', 'keyword_search'}
    assert all(value >= 0 for value in performance.values())


@pytest.mark.asyncio
async def test_embedding_failure_leaves_keyword_stage(graph):
    engine = HybridRetrievalEngine(graph, FakeAnalyzer(keywords=["dogs"], fail_embedding=True))

    results = await engine.search("dogs")

    assert results['semantic_keyword_search'] == []
    assert [hit['url'] for hit in results['keyword_search']] == ["https://example.com/dogs"]


@pytest.mark.asyncio
async def test_keyword_failure_leaves_semantic_stage(graph):
    engine = HybridRetrievalEngine(graph, FakeAnalyzer(embedding=[0.0, 1.0], fail_keywords=True))

    results = await engine.search("dogs")

    assert results['keyword_search'] == []
    assert results['keywords'] == []
    assert results['semantic_keyword_search'][0]['url'] == "https://example.com/dogs"


@pytest.mark.asyncio
async def test_graph_failure_in_keyword_stage_keeps_keywords(graph):
    graph.keyword_search = AsyncMock(side_effect=RuntimeError("connection reset"))
    engine = HybridRetrievalEngine(graph, FakeAnalyzer(keywords=["cats"]))

    results = await engine.search("cats")

    assert results['keywords'] == ["cats"]
    assert results['keyword_search'] == []
    assert len(results['semantic_keyword_search']) == 2


@pytest.mark.asyncio
async def test_results_capped_at_ten():
    store = GraphStore(GraphConfig(type='memory'), backend=InMemoryGraphBackend())
    await store.upsert([
        Webpage(url=f"https://example.com/{i}", title=f"cloud {i}", embeddings=[1.0, float(i)])
        for i in range(25)
    ])
    engine = HybridRetrievalEngine(store, FakeAnalyzer(keywords=["cloud"]))

    results = await engine.search("cloud")

    assert len(results['semantic_keyword_search']) == 10
    assert len(results['keyword_search']) == 10
