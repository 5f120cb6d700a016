"""
Crawl pipeline components.
"""

from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedContent
from .urls import normalize_url
from .webpage import Webpage, VisitResult

__all__ = [
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedContent',
    'normalize_url', 'Webpage', 'VisitResult'
]
