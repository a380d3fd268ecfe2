"""
Main entry point for the age verifier CLI.
"""

import sys
import time
import asyncio
import logging
from pathlib import Path
from datetime import datetime
from argparse import ArgumentParser, RawDescriptionHelpFormatter
from typing import List, Optional

from age_verifier import __version__
from age_verifier.annotation import LoggingSink
from age_verifier.config import Config
from age_verifier.coordinator import ResolutionCoordinator
from age_verifier.store import CacheStore


def setup_logging(log_dir: str, log_level: str):
    """
    Setup logging configuration.

    Args:
        log_dir: Directory for log files
        log_level: Logging level
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')
    log_file = log_path / f"age_verifier_{timestamp}.log"

    file_format = '[%(asctime)s] [%(levelname)s] %(message)s'
    console_format = '%(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    # File handler - detailed logging for debugging
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(file_format, date_format))
    file_handler.setLevel(logging.DEBUG)

    # Console handler - clean output
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(console_format))
    console_handler.setLevel(getattr(logging, log_level.upper()))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Suppress verbose third-party library logs
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)

    logging.debug(f"Logging to: {log_file}")


def create_parser() -> ArgumentParser:
    """
    Create argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = ArgumentParser(
        prog='age-verifier',
        description='Reddit Age Verifier - annotate users with their account age',
        formatter_class=RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Annotate every user found in a saved page
  age-verifier --scan page.html

  # Read a snapshot from stdin
  curl -s https://old.reddit.com/r/python/ | age-verifier --scan -

  # Look up specific users, including self-reported ages
  age-verifier --lookup spez u/kn0thing --posted-ages

  # Ignore cached results and look a user up again
  age-verifier --lookup spez --refresh

  # Cache maintenance
  age-verifier --stats
  age-verifier --clear-cache
  age-verifier --vacuum

Environment variables:
  AGE_VERIFIER_API_BASE       - Account-history API base URL (default: https://www.reddit.com)
  AGE_VERIFIER_API_TOKEN      - Bearer token sent with every request (optional)
  AGE_VERIFIER_SEARCH_URL     - Submission search endpoint for posted ages
  AGE_VERIFIER_DB_PATH        - Cache database path (default: age_verifier_cache.db)
  AGE_VERIFIER_LOG_DIR        - Log directory (default: logs)
  AGE_VERIFIER_CACHE_TTL      - Cache entry lifetime in seconds (default: one week)
  AGE_VERIFIER_MAX_CACHE_ENTRIES - Cached users kept (default: 5000)
  AGE_VERIFIER_MAX_CONCURRENT - Concurrent lookups (default: 4)
  AGE_VERIFIER_RETRY_LIMIT    - Attempts per lookup (default: 3)
  AGE_VERIFIER_BACKOFF_BASE_MS - First retry delay in milliseconds (default: 1000)
  LOG_LEVEL                   - Logging level (default: INFO)
        """
    )

    mode_group = parser.add_mutually_exclusive_group(required=True)

    mode_group.add_argument(
        '--scan',
        nargs='+',
        metavar='FILE',
        help='Annotate every user found in the given page snapshots ("-" for stdin)'
    )

    mode_group.add_argument(
        '--lookup',
        nargs='+',
        metavar='HANDLE',
        help='Look up the given users'
    )

    mode_group.add_argument(
        '--stats',
        action='store_true',
        help='Show cache statistics'
    )

    mode_group.add_argument(
        '--clear-cache',
        action='store_true',
        help='Remove every cached result'
    )

    mode_group.add_argument(
        '--vacuum',
        action='store_true',
        help='Compact the cache database'
    )

    parser.add_argument('--db', type=str, help='Cache database path (default: age_verifier_cache.db)')
    parser.add_argument('--log-dir', type=str, help='Log directory (default: logs)')
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )
    parser.add_argument('--ttl', type=int, help='Cache entry lifetime in seconds (default: 604800)')
    parser.add_argument('--max-entries', type=int, help='Cached users kept (default: 5000)')
    parser.add_argument('--max-concurrent', type=int, help='Concurrent lookups (default: 4)')
    parser.add_argument('--retry-limit', type=int, help='Attempts per lookup (default: 3)')
    parser.add_argument('--backoff-base-ms', type=int, help='First retry delay in milliseconds (default: 1000)')
    parser.add_argument(
        '--posted-ages',
        action='store_true',
        help='Also search submissions for self-reported ages'
    )
    parser.add_argument(
        '--refresh',
        action='store_true',
        help='With --scan or --lookup: drop cached results and look users up again'
    )
    parser.add_argument('--env-file', type=str, help='Path to .env file (default: ./.env)')

    return parser


def read_snapshots(paths: List[str]) -> List[str]:
    snapshots = []
    for path in paths:
        if path == '-':
            snapshots.append(sys.stdin.read())
        else:
            snapshots.append(Path(path).read_text(encoding='utf-8', errors='replace'))
    return snapshots


async def run_scan(coordinator: ResolutionCoordinator, paths: List[str], refresh: bool = False) -> int:
    found = 0
    for path, snapshot in zip(paths, read_snapshots(paths)):
        results = await coordinator.rescan(snapshot, refresh)
        if not results:
            logging.info(f"No users found in {path}")
        found += len(results)

    logging.info(f"Annotated {found} users")
    return 0


async def run_lookup(coordinator: ResolutionCoordinator, handles: List[str], refresh: bool = False) -> int:
    status = 0
    records = await asyncio.gather(
        *(coordinator.request(handle, refresh) for handle in handles),
        return_exceptions=True
    )
    for record in records:
        if isinstance(record, ValueError):
            logging.error(f"{record}")
            status = 1
    return status


def show_stats(config: Config) -> int:
    if not config.db_path:
        logging.error("No cache database configured")
        return 1

    store = CacheStore(config.db_path)
    try:
        stats = store.get_stats(time.time())
    finally:
        store.close()

    logging.info("=" * 60)
    logging.info("CACHE STATISTICS")
    logging.info("=" * 60)
    logging.info(f"  Database:        {config.db_path}")
    logging.info(f"  Total entries:   {stats['total_entries']:>10,}")
    logging.info(f"  Live entries:    {stats['live_entries']:>10,}")
    logging.info(f"  Expired entries: {stats['expired_entries']:>10,}")
    if stats['newest_stored_at']:
        newest = datetime.fromtimestamp(stats['newest_stored_at']).strftime('%Y-%m-%d %H:%M:%S')
        logging.info(f"  Last stored:     {newest}")
    logging.info("=" * 60)
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.from_env(args.env_file)

        config.update_from_args(
            db_path=args.db,
            log_dir=args.log_dir,
            log_level=args.log_level,
            cache_ttl_seconds=args.ttl,
            max_cache_entries=args.max_entries,
            max_concurrent_fetches=args.max_concurrent,
            retry_limit=args.retry_limit,
            backoff_base_ms=args.backoff_base_ms,
            check_posted_ages=True if args.posted_ages else None,
        )

        config.validate()
        setup_logging(config.log_dir, config.log_level)
        logging.debug(f"Reddit Age Verifier v{__version__}\n{config}")

        if args.stats:
            return show_stats(config)

        if args.clear_cache or args.vacuum:
            if not config.db_path:
                logging.error("No cache database configured")
                return 1
            store = CacheStore(config.db_path)
            try:
                if args.clear_cache:
                    store.clear()
                else:
                    store.vacuum()
            finally:
                store.close()
            return 0

        async with ResolutionCoordinator(config, sink=LoggingSink()) as coordinator:
            if args.scan:
                status = await run_scan(coordinator, args.scan, args.refresh)
            else:
                status = await run_lookup(coordinator, args.lookup, args.refresh)

            logging.debug(f"Stats: {coordinator.get_stats()}")
            return status

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130

    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        return 1


def cli():
    """CLI entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    cli()
