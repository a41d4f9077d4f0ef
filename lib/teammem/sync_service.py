"""Background service for team memory sync.

Runs SyncScheduler.sync_all() on the configured interval so that instances
sharing a backend converge on one active memory per concept.

Usage:
    python -m teammem [--config teammem.yaml] [--once]

Environment variables:
    TEAMMEM_CONFIG: Config file path (YAML or JSON)
    TEAMMEM_REDIS_URL / REDIS_URL: Redis connection URL
    TEAMMEM_SYNC_INTERVAL: Seconds between sync passes (default: 300)
"""

import argparse
import signal
import sys
import threading
from typing import Dict, List, Optional

import yaml

from .config import TeamMemoryConfig
from .context import TeamMemoryContext
from .errors import TeamMemoryError
from .log import configure_logging, get_logger
from .redis_factory import RedisStartupError
from .scheduler import SyncResult

logger = get_logger(__name__)


class SyncService:
    """Background service that periodically reconciles every team."""

    def __init__(self, config: TeamMemoryConfig, context: Optional[TeamMemoryContext] = None):
        self.config = config
        self.context = context
        self._stopped = threading.Event()

    def _ensure_context(self) -> TeamMemoryContext:
        if self.context is None:
            self.context = TeamMemoryContext.from_config(self.config)
        return self.context

    def run_once(self) -> Dict[str, SyncResult]:
        """Run a single sync pass over all teams."""
        results = self._ensure_context().scheduler.sync_all()
        for team_id, result in sorted(results.items()):
            if result.errors:
                logger.warning("Team %s synced with %d errors", team_id, len(result.errors))
        logger.info("Sync pass finished for %d teams", len(results))
        return results

    def start(self) -> None:
        """Start the sync scheduler with signal handling and block until stopped."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        context = self._ensure_context()
        scheduler = context.scheduler

        logger.info("Sync service started (interval %ss, primary %s, fallback %s)",
                    scheduler.interval, context.storage.primary, context.storage.fallback)

        if scheduler.interval > 0:
            scheduler.start()
        else:
            logger.warning("Sync interval is 0; automatic sync disabled")

        self._stopped.wait()
        self.stop()

    def _handle_shutdown(self, signum: int, frame) -> None:
        logger.info("Shutdown requested (signal %d)", signum)
        self._stopped.set()

    def stop(self) -> None:
        """Stop the scheduler and release storage."""
        self._stopped.set()
        if self.context is not None:
            self.context.close()
            self.context = None


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="teammem", description="Team memory sync service")
    parser.add_argument("--config", help="Path to a YAML or JSON config file")
    parser.add_argument("--once", action="store_true", help="Run one sync pass and exit")
    parser.add_argument("--log-level", help="Override the configured log level")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the sync service."""
    args = parse_args(argv)

    try:
        config = TeamMemoryConfig.from_env(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(args.log_level or config.log_level, json_lines=config.log_json)
    service = SyncService(config)

    try:
        if args.once:
            results = service.run_once()
            service.stop()
            return 0 if all(r.success for r in results.values()) else 1
        service.start()
    except RedisStartupError as e:
        logger.error("Failed to connect to Redis: %s", str(e))
        return 1
    except TeamMemoryError as e:
        logger.error("Fatal error: %s", str(e))
        service.stop()
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
