"""
Per-task visited-link sets and crawl locks held in Redis.
"""

import asyncio
import logging
import os
import socket
import time
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional

import redis.asyncio as redis


class VisitedLinkStore:
    """
    Dedup and lock store for crawl tasks.

    Keys:
        tasks:{taskId}:visitedLinks  set of normalized URLs dispatched for the task
        tasks:{taskId}:info          hash with baseUrl and createdAt

    Locking is process-local by default: the lock key identifies this
    host and process, so two coordinator processes never exclude each other.
    With lock_scope='distributed' a Redis lease lock keyed by task id is used.
    """

    def __init__(self, redis_client: redis.Redis, lock_scope: str = 'local',
                 lock_timeout: float = 600.0):
        self.redis_client = redis_client
        self.lock_scope = lock_scope
        self.lock_timeout = lock_timeout
        self.logger = logging.getLogger(__name__)

        self.process_lock_key = f"{socket.gethostname()}#{os.getpid()}_crawl_lock"
        self._local_locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def visited_key(task_id: str) -> str:
        return f"tasks:{task_id}:visitedLinks"

    @staticmethod
    def info_key(task_id: str) -> str:
        return f"tasks:{task_id}:info"

    async def is_member(self, task_id: str, url: str) -> bool:
        return bool(await self.redis_client.sismember(self.visited_key(task_id), url))

    async def add(self, task_id: str, url: str):
        await self.redis_client.sadd(self.visited_key(task_id), url)

    async def count(self, task_id: str) -> int:
        return int(await self.redis_client.scard(self.visited_key(task_id)))

    async def filter_unvisited(self, task_id: str, urls: Iterable[str]) -> List[str]:
        """URLs not yet in the task's visited set, de-duplicated, order preserved."""
        pending = []
        for url in dict.fromkeys(urls):
            if not await self.is_member(task_id, url):
                pending.append(url)
        return pending

    async def expire(self, task_id: str, ttl_seconds: int):
        """(Re)start the expiry clock of the task's keys."""
        await self.redis_client.expire(self.visited_key(task_id), ttl_seconds)
        await self.redis_client.expire(self.info_key(task_id), ttl_seconds)

    async def register_task(self, task_id: str, base_url: str, ttl_seconds: int):
        """Record the task's base URL and creation time."""
        key = self.info_key(task_id)
        await self.redis_client.hset(key, mapping={
            'baseUrl': base_url,
            'createdAt': f"{time.time():.3f}",
        })
        await self.redis_client.expire(key, ttl_seconds)

    async def get_task(self, task_id: str) -> Optional[Dict[str, str]]:
        data = await self.redis_client.hgetall(self.info_key(task_id))
        if not data:
            return None
        return {
            (k.decode('utf-8') if isinstance(k, bytes) else k):
            (v.decode('utf-8') if isinstance(v, bytes) else v)
            for k, v in data.items()
        }

    @asynccontextmanager
    async def lock(self, task_id: str):
        """Mutual exclusion around a task's dedup check and visited-set updates."""
        if self.lock_scope == 'distributed':
            lease = self.redis_client.lock(
                f"tasks:{task_id}:lock", timeout=self.lock_timeout
            )
            async with lease:
                yield
            return

        local_lock = self._local_locks.setdefault(self.process_lock_key, asyncio.Lock())
        async with local_lock:
            yield
