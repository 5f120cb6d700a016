"""
Nexus Search

Distributed website crawler that builds a link graph and answers queries
with hybrid vector and keyword retrieval.
"""

__version__ = "1.0.0"
__description__ = "Distributed crawl pipeline and hybrid graph search"
