"""
Pipeline messages. The four topics form a closed set; every payload is
validated before it reaches a handler.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type

from .urls import normalize_url
from .webpage import Webpage


class MessageValidationError(ValueError):
    """Raised for unknown topics and malformed payloads."""
    pass


def _require(payload: Dict[str, Any], name: str, kind: type) -> Any:
    value = payload.get(name)
    if not isinstance(value, kind):
        raise MessageValidationError(f"field '{name}' must be {kind.__name__}")
    return value


def _require_str(payload: Dict[str, Any], name: str) -> str:
    value = _require(payload, name, str)
    if not value:
        raise MessageValidationError(f"field '{name}' must not be empty")
    return value


def _require_str_list(payload: Dict[str, Any], name: str) -> List[str]:
    values = _require(payload, name, list)
    if not all(isinstance(v, str) for v in values):
        raise MessageValidationError(f"field '{name}' must be a list of strings")
    return list(values)


def _optional_positive_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise MessageValidationError(f"field '{name}' must be an integer")
    if value < 1:
        raise MessageValidationError(f"field '{name}' must be positive")
    return value


def _flag(value: Any) -> bool:
    """Accept real booleans and the 'true'/'false' strings of query parameters."""
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return bool(value)


@dataclass
class InitCrawl:
    topic: ClassVar[str] = 'init_crawl'
    url: str
    sitemap: bool = False
    max_pages: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {'sitemap': self.sitemap}
        if self.max_pages is not None:
            options['max_pages'] = self.max_pages
        return {'url': self.url, 'options': options}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'InitCrawl':
        options = payload.get('options') or {}
        if not isinstance(options, dict):
            raise MessageValidationError("field 'options' must be an object")
        url = _require_str(payload, 'url')
        try:
            normalize_url(url)
        except ValueError as e:
            raise MessageValidationError(str(e)) from e
        return cls(
            url=url,
            sitemap=_flag(options.get('sitemap', False)),
            max_pages=_optional_positive_int(options.get('max_pages'), 'max_pages'),
        )


@dataclass
class CrawlLinks:
    topic: ClassVar[str] = 'crawl_links'
    task_id: str
    base_url: str
    links: List[str]
    max_pages: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {'taskId': self.task_id, 'baseUrl': self.base_url, 'links': self.links}
        if self.max_pages is not None:
            payload['maxPages'] = self.max_pages
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'CrawlLinks':
        return cls(
            task_id=_require_str(payload, 'taskId'),
            base_url=_require_str(payload, 'baseUrl'),
            links=_require_str_list(payload, 'links'),
            max_pages=_optional_positive_int(payload.get('maxPages'), 'maxPages'),
        )


@dataclass
class CrawlLinksBatch:
    topic: ClassVar[str] = 'crawl_links_batch'
    task_id: str
    base_url: str
    links_to_visit: List[str]
    max_pages: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {'taskId': self.task_id, 'baseUrl': self.base_url,
                   'linksToVisit': self.links_to_visit}
        if self.max_pages is not None:
            payload['maxPages'] = self.max_pages
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'CrawlLinksBatch':
        return cls(
            task_id=_require_str(payload, 'taskId'),
            base_url=_require_str(payload, 'baseUrl'),
            links_to_visit=_require_str_list(payload, 'linksToVisit'),
            max_pages=_optional_positive_int(payload.get('maxPages'), 'maxPages'),
        )


@dataclass
class InsertNodes:
    topic: ClassVar[str] = 'insert_nodes'
    task_id: str
    base_url: str
    nodes: List[Dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {'taskId': self.task_id, 'baseUrl': self.base_url, 'nodes': self.nodes}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'InsertNodes':
        nodes = _require(payload, 'nodes', list)
        if not all(isinstance(node, dict) for node in nodes):
            raise MessageValidationError("field 'nodes' must be a list of objects")
        return cls(
            task_id=_require_str(payload, 'taskId'),
            base_url=_require_str(payload, 'baseUrl'),
            nodes=list(nodes),
        )

    def webpages(self) -> List[Webpage]:
        """Non-empty node records as Webpages."""
        try:
            return [Webpage.from_dict(node) for node in self.nodes if node]
        except (TypeError, ValueError) as e:
            raise MessageValidationError(f"invalid node record: {e}") from e


MESSAGE_TYPES: Dict[str, Type] = {
    message_type.topic: message_type
    for message_type in (InitCrawl, CrawlLinks, CrawlLinksBatch, InsertNodes)
}

TOPICS = list(MESSAGE_TYPES)


def decode_message(topic: str, payload: Any):
    """
    Build the typed message for a topic.

    Raises:
        MessageValidationError: for unknown topics and malformed payloads
    """
    message_type = MESSAGE_TYPES.get(topic)
    if message_type is None:
        raise MessageValidationError(f"unknown topic '{topic}'")
    if not isinstance(payload, dict):
        raise MessageValidationError("payload must be an object")
    return message_type.from_payload(payload)
