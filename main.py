#!/usr/bin/env python3
"""
Main entry point for the Nexus crawl pipeline and search engine.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from nexus_search import __version__
from nexus_search.service import NexusService
from nexus_search.utils.config import load_config, Config
from nexus_search.utils.logger import setup_logging


class NexusApp:
    """Main application class."""

    def __init__(self):
        self.service: Optional[NexusService] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_logging(self, config: Config, console: bool = True):
        setup_logging(config.logging, console=console)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self, args: argparse.Namespace) -> int:
        try:
            config = load_config(args.config)
            if args.command == 'crawl' and args.local:
                config.messaging.type = 'memory'
            # search and ask print their JSON result on stdout
            self.setup_logging(config, console=args.command not in ('search', 'ask'))
            self.setup_signal_handlers()

            self.logger.info("=== NEXUS STARTING ===")
            self.logger.info(f"Configuration loaded from: {args.config}")
            self.logger.info(f"Parallelism: {config.crawler.parallelism}, "
                             f"batch size: {config.crawler.batch_size}")

            if args.dry_run:
                await self._dry_run(config)
                return 0

            self.service = NexusService(config)
            await self.service.initialize()

            if args.command == 'worker':
                await self.service.coordinator.run(self._shutdown_event)
            elif args.command == 'crawl':
                await self.service.coordinator.submit_crawl(
                    args.url, sitemap=args.sitemap, max_pages=resolve_max_pages(args, config)
                )
                if args.local:
                    handled = await self.service.coordinator.run_until_idle()
                    self.logger.info(f"Local crawl finished after {handled} messages")
            elif args.command == 'search':
                results = await self.service.engine.search(args.query)
                print(json.dumps(results, indent=2, ensure_ascii=False))
            elif args.command == 'ask':
                answer = await self.service.answers.answer(args.query)
                print(json.dumps(answer, indent=2, ensure_ascii=False))

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.service:
                await self.service.close()
            self.logger.info("=== NEXUS FINISHED ===")

        return 0

    async def _dry_run(self, config: Config):
        """Test configuration and connections."""
        self.logger.info("Testing Redis connection...")
        try:
            import redis.asyncio as redis
            redis_client = redis.Redis(
                host=config.redis.host,
                port=config.redis.port,
                db=config.redis.db,
                username=config.redis.username,
                password=config.redis.password
            )
            await redis_client.ping()
            await redis_client.aclose()
            self.logger.info("Redis connection successful")
        except Exception as e:
            self.logger.error(f"Redis connection failed: {e}")

        self.logger.info("Testing graph store...")
        try:
            from nexus_search.storage.graph import GraphStore
            graph = GraphStore(config.graph)
            await graph.initialize()
            self.logger.info(f"Graph store reachable: {await graph.get_stats()}")
            await graph.close()
        except Exception as e:
            self.logger.error(f"Graph store initialization failed: {e}")

        self.logger.info("Dry run completed")


def resolve_max_pages(args: argparse.Namespace, config: Config) -> Optional[int]:
    """Page ceiling for a crawl request: flag, then config, then the local default."""
    if args.max_pages is not None:
        return args.max_pages
    if config.crawler.max_pages is not None:
        return config.crawler.max_pages
    if args.local:
        return config.crawler.local_max_pages
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Nexus Search crawl pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py worker                              # Consume pipeline topics
  python main.py crawl https://example.com --sitemap # Submit a crawl
  python main.py crawl https://example.com --local --max-pages 25
  python main.py search "cloud computing"            # Hybrid search
  python main.py ask "what is cloud computing?"      # Answer from top sources
  python main.py --dry-run worker                    # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without crawling'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'Nexus Search {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('worker', help='Run a pipeline coordinator')

    crawl = subparsers.add_parser('crawl', help='Submit a crawl request')
    crawl.add_argument('url', help='Seed URL')
    crawl.add_argument('--sitemap', action='store_true', help='Seed from sitemap.xml')
    crawl.add_argument('--max-pages', type=int, help='Maximum number of pages to crawl')
    crawl.add_argument('--local', action='store_true',
                       help='Run the whole pipeline in this process')

    search = subparsers.add_parser('search', help='Run a hybrid search')
    search.add_argument('query', help='Free-text query')

    ask = subparsers.add_parser('ask', help='Answer a question from the top search sources')
    ask.add_argument('query', help='Question to answer')

    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = NexusApp()
    try:
        return asyncio.run(app.run(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
