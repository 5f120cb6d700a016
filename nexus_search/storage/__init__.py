"""
Storage layer: dedup/lock store and link graph.
"""

from .graph import GraphStore, GraphStoreError, InMemoryGraphBackend, Neo4jGraphBackend
from .visited import VisitedLinkStore

__all__ = ['GraphStore', 'GraphStoreError', 'InMemoryGraphBackend', 'Neo4jGraphBackend',
           'VisitedLinkStore']
