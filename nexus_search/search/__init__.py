"""
Query answering over the crawled graph.
"""

from .answer import AnswerEngine
from .retrieval import HybridRetrievalEngine, SearchHit

__all__ = ['AnswerEngine', 'HybridRetrievalEngine', 'SearchHit']
