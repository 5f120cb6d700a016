"""
Configuration management for the crawl pipeline and search engine.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field


def _default_parallelism() -> int:
    return os.cpu_count() or 1


@dataclass
class CrawlerConfig:
    """Configuration for crawl orchestration and page fetching."""
    parallelism: int = field(default_factory=_default_parallelism)
    batch_size: Optional[int] = None
    max_pages: Optional[int] = None
    local_max_pages: int = 25
    batch_delay: float = 2.5
    insert_delay: float = 1.0
    user_agent: str = "NexusSearchBot/1.0"
    robots_user_agent: str = "Googlebot"
    request_timeout: int = 30
    sitemap_timeout: int = 60
    respect_robots_txt: bool = True

    def __post_init__(self):
        # Batch size follows parallelism unless set explicitly
        if self.batch_size is None:
            self.batch_size = self.parallelism


@dataclass
class RedisConfig:
    """Configuration for Redis (dedup store, locks and message streams)."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    username: Optional[str] = None
    password: Optional[str] = None
    visited_ttl: int = 3600
    lock_scope: str = "local"
    lock_timeout: float = 600.0
    content_ttl: int = 300


@dataclass
class MessagingConfig:
    """Configuration for the pipeline message bus."""
    type: str = "redis"
    stream_prefix: str = "nexus:topics:"
    consumer_group: str = "nexus-consumer-group-0"
    block_ms: int = 5000


@dataclass
class Neo4jConfig:
    """Connection settings for the Neo4j graph backend."""
    uri: str = ""
    username: str = ""
    password: str = ""
    database: Optional[str] = None
    index_name: str = "webpage-embeddings"
    dimensions: int = 768

    def __post_init__(self):
        self.uri = self.uri or os.environ.get("NEO4J_URI", "bolt://localhost:7687")
        self.username = self.username or os.environ.get("NEO4J_USERNAME", "neo4j")
        self.password = self.password or os.environ.get("NEO4J_PASSWORD", "")


@dataclass
class GraphConfig:
    """Configuration for the graph store."""
    type: str = "neo4j"
    neo4j: Neo4jConfig = field(default_factory=Neo4jConfig)


@dataclass
class AnalyzerConfig:
    """Configuration for the Gemini content analyzer."""
    api_key: str = ""
    model: str = "gemini-pro"
    embedding_model: str = "models/embedding-001"
    temperature: float = 0.7
    chunk_size: int = 10000
    answer_sources: int = 3

    def __post_init__(self):
        self.api_key = self.api_key or os.environ.get("GEMINI_API_KEY", "")


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/nexus.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        self._config = self.build_config(config_data)
        self._validate_config()
        return self._config

    @staticmethod
    def build_config(config_data: dict) -> Config:
        """Build a Config from a parsed mapping; missing sections use defaults."""
        graph_data = dict(config_data.get('graph') or {})
        neo4j_config = Neo4jConfig(**(graph_data.pop('neo4j', None) or {}))

        return Config(
            crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
            redis=RedisConfig(**(config_data.get('redis') or {})),
            messaging=MessagingConfig(**(config_data.get('messaging') or {})),
            graph=GraphConfig(neo4j=neo4j_config, **graph_data),
            analyzer=AnalyzerConfig(**(config_data.get('analyzer') or {})),
            logging=LoggingConfig(**(config_data.get('logging') or {})),
            monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
        )

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        validate_config(self._config)
        logging.info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def validate_config(config: Config):
    """Raise ValueError when a configuration value is out of range."""
    crawler = config.crawler

    if crawler.parallelism < 1:
        raise ValueError("parallelism must be at least 1")

    if crawler.batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    if crawler.max_pages is not None and crawler.max_pages < 1:
        raise ValueError("max_pages must be at least 1")

    if crawler.local_max_pages < 1:
        raise ValueError("local_max_pages must be at least 1")

    if crawler.batch_delay < 0 or crawler.insert_delay < 0:
        raise ValueError("pacing delays must be non-negative")

    if config.redis.visited_ttl < 1:
        raise ValueError("visited_ttl must be at least 1 second")

    if config.redis.content_ttl < 1:
        raise ValueError("content_ttl must be at least 1 second")

    if config.redis.lock_scope not in ['local', 'distributed']:
        raise ValueError("lock_scope must be 'local' or 'distributed'")

    if config.messaging.type not in ['redis', 'memory']:
        raise ValueError("Messaging type must be 'redis' or 'memory'")

    if config.graph.type not in ['neo4j', 'memory']:
        raise ValueError("Graph type must be 'neo4j' or 'memory'")

    if config.graph.neo4j.dimensions < 1:
        raise ValueError("vector index dimensions must be at least 1")

    if config.analyzer.answer_sources < 1:
        raise ValueError("answer_sources must be at least 1")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
