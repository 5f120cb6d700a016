"""
Worker pool executor: runs one crawl batch across concurrent worker units.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from .webpage import Webpage, VisitResult
from ..utils.monitoring import CrawlerMonitor


def partition(urls: List[str], parts: int) -> List[List[str]]:
    """Split urls into `parts` contiguous, disjoint, near-equal sub-lists."""
    parts = max(1, min(parts, len(urls)))
    size, remainder = divmod(len(urls), parts)
    chunks = []
    start = 0
    for i in range(parts):
        end = start + size + (1 if i < remainder else 0)
        chunks.append(urls[start:end])
        start = end
    return [chunk for chunk in chunks if chunk]


class WorkerPool:
    """
    Fans a batch out to up to parallelism - 1 units, each visiting its
    sub-list serially through its own worker. The pool is one-shot per call
    to run(): units are created for the batch and dropped afterwards.
    """

    def __init__(self, worker_factory: Callable, parallelism: int,
                 monitor: Optional[CrawlerMonitor] = None):
        self.worker_factory = worker_factory
        self.parallelism = parallelism
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self._units: List[asyncio.Task] = []

    @property
    def unit_count(self) -> int:
        return len(self._units)

    def max_units(self, batch_size: int) -> int:
        return max(1, min(self.parallelism - 1, batch_size))

    async def run(self, urls: List[str]) -> List[Webpage]:
        """Visit every URL and return the successful pages, in batch order."""
        if not urls:
            return []

        if self._units:
            raise RuntimeError("WorkerPool is already running a batch")

        start_time = time.time()
        for unit_id, chunk in enumerate(partition(urls, self.max_units(len(urls)))):
            self._units.append(asyncio.create_task(
                self._run_unit(unit_id, chunk), name=f"crawl-unit-{unit_id}"
            ))
        self.logger.info(f"Spawned {len(self._units)} worker units for {len(urls)} URLs")

        try:
            unit_results = await self.await_all()
        finally:
            self._units.clear()

        pages = []
        for results in unit_results:
            pages.extend(r.page for r in results if r.success)

        if self.monitor:
            self.monitor.record_batch(time.time() - start_time)
        self.logger.info(f"Batch finished: {len(pages)}/{len(urls)} pages visited "
                         f"in {time.time() - start_time:.2f}s")
        return pages

    async def await_all(self) -> List[List[VisitResult]]:
        """Wait for every unit; a crashed unit contributes no results."""
        outcomes = await asyncio.gather(*self._units, return_exceptions=True)

        unit_results = []
        for unit, outcome in zip(self._units, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(f"Worker unit {unit.get_name()} crashed: {outcome!r}")
                continue
            unit_results.append(outcome)
        return unit_results

    async def cancel_all(self):
        """Cancel every running unit and wait for them to unwind."""
        for unit in self._units:
            if not unit.done():
                unit.cancel()
        await asyncio.gather(*self._units, return_exceptions=True)
        self._units.clear()

    async def _run_unit(self, unit_id: int, urls: List[str]) -> List[VisitResult]:
        results = []

        async with self.worker_factory() as worker:
            for url in urls:
                try:
                    page = await worker.visit(url)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    results.append(VisitResult(url=url, success=False, error=str(e)))
                    self.logger.error(f"Unit {unit_id} failed to visit {url}: {e}")
                    if self.monitor:
                        self.monitor.record_page_failed()
                    continue

                results.append(VisitResult(url=url, success=True, page=page))
                self.logger.info(f"Visited: {page.url}")
                if self.monitor:
                    self.monitor.record_page_visited()

        return results
