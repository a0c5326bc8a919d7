#!/usr/bin/env python3
"""
Matchday Cache Sync Service - Main Entry Point

Keeps the fixture cache fresh: runs the recurring scheduler (quick/smart/full
sync jobs) until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from sync.services import build_services
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class MatchdaySyncService:
    """Main service class for the cache sync subsystem."""

    def __init__(self, config: Config):
        self.config = config
        self.services = None
        self._shutdown = asyncio.Event()

    async def start(self):
        """Start the sync service and block until shutdown."""
        logger.info("Starting Matchday Cache Sync Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment
        })

        try:
            self.services = build_services(self.config)

            # Set up signal handlers for graceful shutdown
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            if not self.services.scheduler.start():
                logger.warning("Scheduler not running; service will idle until shutdown")

            # Warm today's cache right away instead of waiting for the first quick tick
            summary = await self.services.orchestrator.smart_sync()
            logger.info("Initial smart sync done", extra=summary)

            await self._shutdown.wait()

        except Exception as e:
            logger.error("Fatal error in sync service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            if self.services is not None:
                await self.services.aclose()

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        if self.services is not None:
            self.services.scheduler.stop()
            self.services.orchestrator.stop()
        self._shutdown.set()


async def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)

    service = MatchdaySyncService(config)
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
