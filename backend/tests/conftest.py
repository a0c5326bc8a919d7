"""Shared pytest fixtures for the matchday cache sync tests."""
import asyncio
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add backend/src to Python path
SRC_DIR = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(SRC_DIR))

from config import Config
from database.cache import InMemoryCache
from football_api.client import UpstreamError
from sync.models import MatchRecord

NOW = datetime(2025, 11, 19, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Controllable UTC clock shared by the cache and the sync components."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_fixture(
    match_id: int,
    league_id: int = 39,
    kickoff: Optional[datetime] = None,
    status: str = "NS",
    home: str = "Home FC",
    away: str = "Away FC",
) -> Dict[str, Any]:
    """API-Football fixture object."""
    kickoff = kickoff or NOW
    return {
        "fixture": {
            "id": match_id,
            "date": kickoff.isoformat(),
            "timestamp": int(kickoff.timestamp()),
            "status": {"short": status},
        },
        "league": {"id": league_id, "season": kickoff.year},
        "teams": {
            "home": {"id": match_id * 10 + 1, "name": home},
            "away": {"id": match_id * 10 + 2, "name": away},
        },
        "goals": {"home": 1 if status != "NS" else None, "away": 0 if status != "NS" else None},
    }


class FakeFootballAPI:
    """In-process stand-in for FootballAPIClient; counts every upstream call."""

    def __init__(self, daily_limit: int = 7500):
        self.fixtures: Dict[Tuple[int, date], List[Dict[str, Any]]] = {}
        self.fail_fixtures: Dict[Tuple[int, date], Exception] = {}
        self.fail_details: Dict[int, Exception] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.daily_limit = daily_limit
        self.usage_override: Optional[float] = None
        self.gate: Optional[asyncio.Event] = None

    def add(self, league_id: int, day: date, *fixtures: Dict[str, Any]):
        self.fixtures.setdefault((league_id, day), []).extend(fixtures)

    @property
    def calls_today(self) -> int:
        return len(self.calls)

    def budget_usage(self) -> float:
        if self.usage_override is not None:
            return self.usage_override
        return self.calls_today / self.daily_limit

    def count(self, endpoint: str) -> int:
        return sum(1 for name, _ in self.calls if name == endpoint)

    async def fetch_fixtures(self, league_id: int, date_from: date, date_to: date) -> List[MatchRecord]:
        self.calls.append(("fixtures", (league_id, date_from, date_to)))
        if self.gate is not None:
            await self.gate.wait()
        error = self.fail_fixtures.get((league_id, date_from))
        if error is not None:
            raise error
        records = [MatchRecord.from_api(f) for f in self.fixtures.get((league_id, date_from), [])]
        records.sort(key=lambda m: m.kickoff, reverse=True)
        return records

    async def _detail(self, endpoint: str, match_id: int) -> List[Dict[str, Any]]:
        self.calls.append((endpoint, match_id))
        error = self.fail_details.get(match_id)
        if error is not None:
            raise error
        return [{"fixture": match_id, "endpoint": endpoint}]

    async def fetch_match_stats(self, match_id: int):
        return await self._detail("stats", match_id)

    async def fetch_match_events(self, match_id: int):
        return await self._detail("events", match_id)

    async def fetch_match_lineups(self, match_id: int):
        return await self._detail("lineups", match_id)

    async def close(self):
        pass


def make_config(**overrides) -> Config:
    """Config for tests: memory cache, one league, no pacing delays."""
    values = dict(
        football_api_key="test-key",
        cache_backend="memory",
        supabase_url="",
        supabase_key="",
        supabase_service_key=None,
        sync_leagues=[39],
        sync_task_delay=0,
        sync_detail_delay=0,
        historical_batch_delay=0,
        population_cell_delay=0,
        population_batch_delay=0,
        scheduler_enabled=True,
        scheduler_autostart=False,
        admin_token=None,
        log_format="text",
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def cache(clock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def api() -> FakeFootballAPI:
    return FakeFootballAPI()


@pytest.fixture
def upstream_error() -> UpstreamError:
    return UpstreamError("provider unavailable")
