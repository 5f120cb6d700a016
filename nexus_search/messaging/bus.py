"""
Topic message bus for the crawl pipeline.

Two transports share one interface: Redis Streams with a consumer group for
distributed deployments, and an in-process FIFO queue for local crawls.
"""

import asyncio
import json
import logging
import os
import socket
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import ResponseError

from ..utils.config import MessagingConfig

Handler = Callable[[str, Any], Awaitable[None]]


class MessageBus:
    """Abstract base class for message transports."""

    async def start(self):
        """Prepare the transport."""
        raise NotImplementedError

    async def publish(self, topic: str, payload: Dict[str, Any]):
        """Publish one JSON-serializable payload to a topic."""
        raise NotImplementedError

    async def listen(self, topics: List[str], handler: Handler, stop_event: asyncio.Event):
        """Deliver messages to handler one at a time until stop_event is set."""
        raise NotImplementedError

    async def close(self):
        """Release transport resources."""
        raise NotImplementedError


class InMemoryMessageBus(MessageBus):
    """Single-process FIFO bus; messages are handled in global publish order."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.published: List[Tuple[str, Dict[str, Any]]] = []
        self.logger = logging.getLogger(__name__)

    async def start(self):
        pass

    async def publish(self, topic: str, payload: Dict[str, Any]):
        # Round-trip through JSON so payloads look exactly like broker deliveries
        data = json.loads(json.dumps(payload))
        self.published.append((topic, data))
        await self.queue.put((topic, data))

    def pending(self) -> int:
        return self.queue.qsize()

    async def drain(self, handler: Handler, topics: Optional[List[str]] = None) -> int:
        """Handle queued messages until the queue is empty. Returns the count handled."""
        handled = 0
        while not self.queue.empty():
            topic, data = self.queue.get_nowait()
            if topics is None or topic in topics:
                await handler(topic, data)
                handled += 1
            self.queue.task_done()
        return handled

    async def listen(self, topics: List[str], handler: Handler, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                topic, data = await asyncio.wait_for(self.queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            if topic in topics:
                await handler(topic, data)
            self.queue.task_done()

    async def close(self):
        pass


class RedisStreamMessageBus(MessageBus):
    """
    Redis Streams transport. One stream per topic, one consumer group shared
    by all coordinator processes. Entries are acknowledged after handling
    whether or not the handler succeeded; there is no redelivery.
    """

    def __init__(self, redis_client: redis.Redis, config: MessagingConfig,
                 consumer_name: Optional[str] = None):
        self.redis_client = redis_client
        self.config = config
        self.consumer_name = consumer_name or f"{socket.gethostname()}#{os.getpid()}"
        self.logger = logging.getLogger(__name__)
        self._groups_ready: set = set()

    def stream_key(self, topic: str) -> str:
        return f"{self.config.stream_prefix}{topic}"

    async def start(self):
        await self.redis_client.ping()
        self.logger.info(f"Message bus ready (consumer {self.consumer_name})")

    async def _ensure_group(self, stream: str):
        if stream in self._groups_ready:
            return
        try:
            await self.redis_client.xgroup_create(
                stream, self.config.consumer_group, id='0', mkstream=True
            )
            self.logger.info(f"Created consumer group on {stream}")
        except ResponseError as e:
            if 'BUSYGROUP' not in str(e):
                raise
        self._groups_ready.add(stream)

    async def publish(self, topic: str, payload: Dict[str, Any]):
        await self.redis_client.xadd(self.stream_key(topic), {'data': json.dumps(payload)})
        self.logger.debug(f"Published message to {topic}")

    async def listen(self, topics: List[str], handler: Handler, stop_event: asyncio.Event):
        streams = {self.stream_key(topic): topic for topic in topics}
        for stream in streams:
            await self._ensure_group(stream)

        while not stop_event.is_set():
            entries = await self.redis_client.xreadgroup(
                self.config.consumer_group,
                self.consumer_name,
                {stream: '>' for stream in streams},
                count=1,
                block=self.config.block_ms
            )
            for stream, messages in entries or []:
                stream = stream.decode('utf-8') if isinstance(stream, bytes) else stream
                for entry_id, fields in messages:
                    await self._deliver(stream, streams[stream], entry_id, fields, handler)

    async def _deliver(self, stream: str, topic: str, entry_id, fields: Dict, handler: Handler):
        try:
            raw = fields.get(b'data', fields.get('data'))
            if isinstance(raw, bytes):
                raw = raw.decode('utf-8')
            try:
                data = json.loads(raw) if raw is not None else None
            except json.JSONDecodeError as e:
                self.logger.error(f"Dropping undecodable message {entry_id} on {topic}: {e}")
                return
            await handler(topic, data)
        finally:
            await self.redis_client.xack(stream, self.config.consumer_group, entry_id)

    async def close(self):
        pass


def create_message_bus(config: MessagingConfig,
                       redis_client: Optional[redis.Redis] = None) -> MessageBus:
    """Build the transport named by config.type."""
    if config.type == 'memory':
        return InMemoryMessageBus()
    if redis_client is None:
        raise ValueError("Redis message bus requires a redis client")
    return RedisStreamMessageBus(redis_client, config)
