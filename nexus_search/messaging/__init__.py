"""
Message transports for the crawl pipeline.
"""

from .bus import MessageBus, InMemoryMessageBus, RedisStreamMessageBus, create_message_bus

__all__ = ['MessageBus', 'InMemoryMessageBus', 'RedisStreamMessageBus', 'create_message_bus']
