"""
Webpage record shared by the worker pool, the pipeline messages and the graph store.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .urls import normalize_url


@dataclass
class Webpage:
    """A crawled page. Identity is the normalized URL."""
    url: str
    status: int = 200
    title: str = ""
    summary: str = ""
    keywords: List[str] = field(default_factory=list)
    embeddings: List[float] = field(default_factory=list)
    is_404: bool = False
    links: List[str] = field(default_factory=list)
    redirects: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'url': self.url,
            'status': self.status,
            'title': self.title,
            'summary': self.summary,
            'keywords': list(self.keywords),
            'embeddings': list(self.embeddings),
            'is_404': self.is_404,
            'links': list(self.links),
            'redirects': list(self.redirects),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Webpage':
        """
        Create a Webpage from a dictionary. The URL is normalized.

        Raises:
            ValueError: if the record has no URL or a field has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Webpage record must be an object")

        url = data.get('url')
        if not isinstance(url, str) or not url:
            raise ValueError("Webpage record has no url")

        for name in ('title', 'summary'):
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"Webpage field '{name}' must be a string")

        for name in ('keywords', 'links', 'redirects'):
            value = data.get(name)
            if value is None:
                continue
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"Webpage field '{name}' must be a list of strings")

        embeddings = data.get('embeddings')
        if embeddings is not None and (
            not isinstance(embeddings, list)
            or not all(_is_number(v) for v in embeddings)
        ):
            raise ValueError("Webpage field 'embeddings' must be a list of numbers")

        status = data.get('status')
        if status is not None and (isinstance(status, bool) or not isinstance(status, int)):
            raise ValueError("Webpage field 'status' must be an integer")

        return cls(
            url=normalize_url(url),
            status=status or 0,
            title=data.get('title') or "",
            summary=data.get('summary') or "",
            keywords=list(data.get('keywords') or []),
            embeddings=[float(v) for v in embeddings or []],
            is_404=bool(data.get('is_404', False)),
            links=list(data.get('links') or []),
            redirects=list(data.get('redirects') or []),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class VisitResult:
    """Outcome of visiting one URL inside a worker unit."""
    url: str
    success: bool
    page: Optional[Webpage] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success and self.page is not None:
            return {'success': True, **self.page.to_dict()}
        return {'success': False, 'url': self.url, 'error': self.error}
