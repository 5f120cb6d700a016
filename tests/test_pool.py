import asyncio

import pytest

from nexus_search.crawler.pool import WorkerPool, partition

from .conftest import FakeWorkerFactory


class TestPartition:
    def test_disjoint_and_complete(self):
        urls = [f"https://example.com/{i}" for i in range(10)]
        chunks = partition(urls, 3)
        assert len(chunks) == 3
        assert [url for chunk in chunks for url in chunk] == urls
        assert sorted(len(chunk) for chunk in chunks) == [3, 3, 4]

    def test_never_more_parts_than_urls(self):
        assert partition(["a", "b"], 5) == [["a"], ["b"]]

    def test_empty(self):
        assert partition([], 3) == []


class TestMaxUnits:
    def test_parallelism_minus_one(self):
        assert WorkerPool(FakeWorkerFactory(), parallelism=4).max_units(10) == 3

    def test_bounded_by_batch(self):
        assert WorkerPool(FakeWorkerFactory(), parallelism=8).max_units(2) == 2

    def test_single_core_still_runs(self):
        assert WorkerPool(FakeWorkerFactory(), parallelism=1).max_units(5) == 1


@pytest.mark.asyncio
async def test_run_returns_successful_pages_only(monitor):
    urls = [f"https://example.com/{i}" for i in range(5)]
    factory = FakeWorkerFactory(failing={"https://example.com/2"})
    pool = WorkerPool(factory, parallelism=3, monitor=monitor)

    pages = await pool.run(urls)

    assert sorted(page.url for page in pages) == sorted(u for u in urls if not u.endswith("/2"))
    assert sorted(factory.log['visits']) == sorted(urls)
    assert monitor.metrics.get_value('nexus_pages_visited_total') == 4
    assert monitor.metrics.get_value('nexus_pages_failed_total') == 1


@pytest.mark.asyncio
async def test_every_unit_releases_its_worker():
    factory = FakeWorkerFactory(failing={"https://example.com/0", "https://example.com/1"})
    pool = WorkerPool(factory, parallelism=3)

    await pool.run([f"https://example.com/{i}" for i in range(4)])

    assert factory.log['opened'] == 2
    assert factory.log['closed'] == 2
    assert pool.unit_count == 0


@pytest.mark.asyncio
async def test_empty_batch():
    factory = FakeWorkerFactory()
    assert await WorkerPool(factory, parallelism=3).run([]) == []
    assert factory.log['opened'] == 0


class CrashingFactory:
    """Factory whose workers cannot even be opened."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OSError("browser failed to launch")

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.mark.asyncio
async def test_crashed_unit_contributes_nothing():
    pool = WorkerPool(CrashingFactory(), parallelism=3)
    assert await pool.run(["https://example.com/a", "https://example.com/b"]) == []
    assert pool.unit_count == 0


class SlowWorker:
    def __init__(self, started: asyncio.Event):
        self.started = started
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    async def visit(self, url):
        self.started.set()
        await asyncio.sleep(60)


@pytest.mark.asyncio
async def test_cancel_all_releases_workers():
    started = asyncio.Event()
    workers = []

    def factory():
        worker = SlowWorker(started)
        workers.append(worker)
        return worker

    pool = WorkerPool(factory, parallelism=3)
    batch = asyncio.create_task(pool.run(["https://example.com/a", "https://example.com/b"]))
    await asyncio.wait_for(started.wait(), timeout=1)

    await pool.cancel_all()
    pages = await asyncio.wait_for(batch, timeout=1)

    assert pages == []
    assert workers and all(worker.closed for worker in workers)
    assert pool.unit_count == 0
