"""
Utility modules for the crawl pipeline.
"""

from .config import Config, ConfigManager, load_config, get_config
from .monitoring import CrawlerMonitor, MetricsCollector, initialize_monitoring

__all__ = [
    'Config', 'ConfigManager', 'load_config', 'get_config',
    'CrawlerMonitor', 'MetricsCollector', 'initialize_monitoring'
]
