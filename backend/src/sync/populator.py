"""
Bulk Populator - fills the cache across many leagues and dates.

A job walks (league, date) cells in league priority order (high -> medium -> low),
grouped into batches of leagues with a pause between batches. Each cell is one
orchestrator.sync_fixtures call, so fresh cells are skipped by the TTL gate and
cells shared with a concurrent sync are deduplicated.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from config import Config
from sync.commands import ValidationError
from sync.leagues import COMPREHENSIVE_LEAGUES, LEAGUES_BY_ID, League, by_priority, essential_leagues, resolve_leagues
from sync.models import OutcomeStatus, TaskPriority

logger = logging.getLogger(__name__)

QUICK_PROFILE = "quick"
FULL_PROFILE = "full"
CUSTOM_PROFILE = "custom"

MAX_WINDOW_DAYS = 365
MAX_RECORDED_ERRORS = 20


class PopulationAlreadyRunning(RuntimeError):
    """Raised when a population job is started while another one is running."""
    pass


@dataclass(frozen=True)
class PopulationJob:
    """What to populate: leagues x (past_days + today + future_days)."""
    profile: str
    leagues: Tuple[League, ...]
    past_days: int
    future_days: int
    batch_size: int
    batch_delay: Optional[float] = None  # None -> POPULATION_BATCH_DELAY

    def dates(self, today: date) -> List[date]:
        past = [today - timedelta(days=i) for i in range(self.past_days, 0, -1)]
        future = [today + timedelta(days=i) for i in range(1, self.future_days + 1)]
        return past + [today] + future

    def batches(self) -> List[List[League]]:
        ordered = by_priority(self.leagues)
        return [ordered[i:i + self.batch_size] for i in range(0, len(ordered), self.batch_size)]

    @property
    def total_cells(self) -> int:
        return len(self.leagues) * (self.past_days + 1 + self.future_days)

    @classmethod
    def custom(
        cls,
        leagues: Optional[Iterable[Any]] = None,
        past_days: Any = 30,
        future_days: Any = 7,
        batch_size: Any = 5,
        batch_delay: Optional[float] = None,
    ) -> "PopulationJob":
        """
        Validate caller-supplied job parameters.

        Raises:
            ValidationError: unknown/invalid league ids or out-of-range windows
        """
        league_ids: List[int] = []
        for value in (leagues if leagues is not None else LEAGUES_BY_ID):
            try:
                league_id = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid league id {value!r}") from None
            if league_id <= 0 and league_id not in LEAGUES_BY_ID:
                raise ValidationError(f"Invalid league id {value!r}")
            if league_id not in league_ids:
                league_ids.append(league_id)
        if not league_ids:
            raise ValidationError("At least one league is required")

        def _days(value: Any, name: str) -> int:
            try:
                days = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be an integer") from None
            if not 0 <= days <= MAX_WINDOW_DAYS:
                raise ValidationError(f"{name} must be between 0 and {MAX_WINDOW_DAYS}")
            return days

        size = _days(batch_size, "batch_size")
        if size < 1:
            raise ValidationError("batch_size must be >= 1")
        if batch_delay is not None and batch_delay < 0:
            raise ValidationError("batch_delay must be >= 0")

        return cls(
            profile=CUSTOM_PROFILE,
            leagues=tuple(resolve_leagues(league_ids)),
            past_days=_days(past_days, "past_days"),
            future_days=_days(future_days, "future_days"),
            batch_size=size,
            batch_delay=batch_delay,
        )


def build_job(profile: Union[str, PopulationJob]) -> PopulationJob:
    """Resolve a profile name (quick/full) into a job."""
    if isinstance(profile, PopulationJob):
        return profile
    if profile == QUICK_PROFILE:
        # High-priority South American and European leagues, one week back
        return PopulationJob(QUICK_PROFILE, tuple(essential_leagues()), past_days=7, future_days=3, batch_size=3)
    if profile == FULL_PROFILE:
        return PopulationJob(FULL_PROFILE, tuple(COMPREHENSIVE_LEAGUES), past_days=60, future_days=14, batch_size=4)
    raise ValidationError(f"Unknown population profile {profile!r}. Use: quick, full or a custom job")


@dataclass
class PopulationStats:
    running: bool = False
    profile: Optional[str] = None
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    api_calls: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    estimated_remaining: Optional[float] = None
    stopped: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def visited(self) -> int:
        return self.processed + self.skipped

    @property
    def progress(self) -> float:
        if not self.total:
            return 0.0
        return round(100.0 * self.visited / self.total, 1)

    def record_error(self, league_id: int, day: date, error: Optional[str]):
        """Keep only the most recent MAX_RECORDED_ERRORS failures."""
        self.errors.append({"league_id": league_id, "date": day.isoformat(), "error": error})
        if len(self.errors) > MAX_RECORDED_ERRORS:
            del self.errors[:-MAX_RECORDED_ERRORS]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["progress"] = self.progress
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["errors"] = list(self.errors)
        return data


class BulkPopulator:
    """Runs at most one population job at a time."""

    def __init__(
        self,
        config: Config,
        orchestrator,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.cell_delay = config.population_cell_delay
        self.batch_delay = config.population_batch_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._stats = PopulationStats()
        self._cancel = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._stats.running

    def _begin(self, job: PopulationJob):
        # No await between the check and the set
        if self._stats.running:
            raise PopulationAlreadyRunning(
                f"Population already running (profile={self._stats.profile})"
            )
        self._cancel = asyncio.Event()
        self._stats = PopulationStats(
            running=True,
            profile=job.profile,
            total=job.total_cells,
            started_at=self._clock(),
        )

    def start(self, job: Union[str, PopulationJob]) -> Dict[str, Any]:
        """
        Start a job in the background and return a stats snapshot.

        Raises:
            PopulationAlreadyRunning: if a job is already running
            ValidationError: unknown profile
        """
        job = build_job(job)
        self._begin(job)
        self._task = asyncio.create_task(self._run_job(job))
        return self.get_stats()

    async def run(self, job: Union[str, PopulationJob]) -> Dict[str, Any]:
        """Run a job to completion in the caller's task."""
        job = build_job(job)
        self._begin(job)
        await self._run_job(job)
        return self.get_stats()

    def stop(self) -> bool:
        """Signal the running job to stop after its current cell."""
        if not self._stats.running:
            return False
        self._cancel.set()
        logger.info("Population stop requested", extra={"profile": self._stats.profile})
        return True

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.to_dict()

    def _update_estimate(self):
        stats = self._stats
        visited = stats.visited
        if not visited or stats.started_at is None:
            return
        elapsed = (self._clock() - stats.started_at).total_seconds()
        stats.estimated_remaining = round(elapsed / visited * max(stats.total - visited, 0), 1)

    async def _run_cell(self, league: League, day: date):
        stats = self._stats
        try:
            outcome = await self.orchestrator.sync_fixtures(league.id, day, priority=TaskPriority.LOW)
        except Exception as e:
            stats.failed += 1
            stats.processed += 1
            stats.record_error(league.id, day, str(e))
            logger.error("Population cell crashed", extra={
                "league_id": league.id,
                "league": league.name,
                "date": day.isoformat(),
                "error": str(e)
            }, exc_info=True)
            return

        stats.api_calls += outcome.api_calls
        if outcome.status == OutcomeStatus.SUCCEEDED:
            stats.succeeded += 1
            stats.processed += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            stats.skipped += 1
        else:
            stats.failed += 1
            stats.processed += 1
            stats.record_error(league.id, day, outcome.error)
            logger.warning("Population cell failed", extra={
                "league_id": league.id,
                "league": league.name,
                "date": day.isoformat(),
                "status": outcome.status.value,
                "error": outcome.error
            })

    async def _run_job(self, job: PopulationJob):
        stats = self._stats
        batch_delay = self.batch_delay if job.batch_delay is None else job.batch_delay
        dates = job.dates(self._clock().astimezone(timezone.utc).date())
        batches = job.batches()

        logger.info("Population started", extra={
            "profile": job.profile,
            "leagues": len(job.leagues),
            "dates": len(dates),
            "total_cells": stats.total,
            "batches": len(batches),
            "batch_size": job.batch_size
        })

        try:
            for index, batch in enumerate(batches):
                if self._cancel.is_set():
                    break
                logger.info("Population batch started", extra={
                    "batch": index + 1,
                    "of": len(batches),
                    "leagues": [league.name for league in batch]
                })

                for league in batch:
                    for day in dates:
                        if self._cancel.is_set():
                            break
                        await self._run_cell(league, day)
                        self._update_estimate()
                        if self.cell_delay > 0:
                            await asyncio.sleep(self.cell_delay)

                if index < len(batches) - 1 and batch_delay > 0 and not self._cancel.is_set():
                    await asyncio.sleep(batch_delay)
        finally:
            stats.running = False
            stats.stopped = self._cancel.is_set()
            stats.finished_at = self._clock()
            if not stats.stopped:
                stats.estimated_remaining = 0
            logger.info("Population finished", extra={
                "profile": job.profile,
                "stopped": stats.stopped,
                "processed": stats.processed,
                "succeeded": stats.succeeded,
                "failed": stats.failed,
                "skipped": stats.skipped,
                "api_calls": stats.api_calls
            })
