"""
Logging setup for coordinator processes and the search CLI.

Records can carry crawl context (task id, topic, url). The text format
shows the task id as a "Task #<id> - " prefix; the JSON format emits the
fields as keys so log shippers can group a task's lines.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .config import LoggingConfig

CONTEXT_FIELDS = ('task_id', 'topic', 'url')

# Libraries that log every request or pool checkout at INFO
NOISY_LOGGERS = {
    'aiohttp': logging.WARNING,
    'redis': logging.WARNING,
    'neo4j': logging.WARNING,
    'asyncio': logging.WARNING,
    'urllib3': logging.WARNING,
    'google': logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Binds crawl context to every record logged through it."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}

        task_id = self.extra.get('task_id')
        if task_id:
            msg = f"Task #{task_id} - {msg}"
        return msg, kwargs


class NoiseFilter(logging.Filter):
    """Drops chatty library records below WARNING."""

    def __init__(self, prefixes: Iterable[str] = ('aiohttp.access', 'neo4j.io', 'neo4j.pool')):
        super().__init__()
        self.prefixes = tuple(prefixes)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not record.name.startswith(self.prefixes)


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    return handler


def setup_logging(config: LoggingConfig, console: bool = True) -> logging.Logger:
    """
    Configure the root logger from a LoggingConfig.

    Handlers: stdout at INFO, a rotating file at DEBUG, and an errors.log
    next to it at ERROR. An empty config.file disables both files.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)
    handlers = []

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        handlers.append(console_handler)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_handler(log_file, logging.DEBUG, max_mb=50, backups=5))
        handlers.append(_rotating_handler(log_file.parent / 'errors.log', logging.ERROR,
                                          max_mb=10, backups=3))

    noise_filter = NoiseFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(noise_filter)
        root_logger.addHandler(handler)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    root_logger.info(f"Logging initialized (level={config.level}, file={config.file or 'none'}, "
                     f"json={config.json})")
    return root_logger


def get_crawler_logger(name: str, **context) -> CrawlerLogAdapter:
    """Logger for `name` carrying task_id/topic/url context on every record."""
    return CrawlerLogAdapter(logging.getLogger(name), context)
