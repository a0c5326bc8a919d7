"""
Composition root shared by the long-running service, the admin API and the scripts.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config import Config
from database.cache import build_cache
from football_api.client import FootballAPIClient
from sync.orchestrator import SyncOrchestrator
from sync.populator import BulkPopulator
from sync.scheduler import RecurringScheduler, SchedulerConfig

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    config: Config
    cache: object
    api: FootballAPIClient
    orchestrator: SyncOrchestrator
    populator: BulkPopulator
    scheduler: RecurringScheduler

    async def aclose(self):
        """Stop background work and release the HTTP client."""
        self.scheduler.stop()
        self.populator.stop()
        self.orchestrator.stop()
        await self.scheduler.wait_idle()
        await self.api.close()
        logger.info("Sync services closed")


def build_services(config: Config, cache=None, api: Optional[FootballAPIClient] = None) -> SyncServices:
    cache = cache if cache is not None else build_cache(config)
    api = api if api is not None else FootballAPIClient(config)
    orchestrator = SyncOrchestrator(config, cache, api)
    populator = BulkPopulator(config, orchestrator)
    scheduler = RecurringScheduler(orchestrator, populator, SchedulerConfig.from_app_config(config))

    logger.info("Sync services initialized", extra={
        "cache_backend": config.cache_backend,
        "leagues": len(orchestrator.leagues),
        "daily_limit": config.daily_request_limit
    })

    return SyncServices(config, cache, api, orchestrator, populator, scheduler)
