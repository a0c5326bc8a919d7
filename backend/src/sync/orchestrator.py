"""
Sync Orchestrator - keeps the fixture cache fresh without duplicating upstream work.

Every unit of work is a SyncTask identified by a TaskKey. Submitting a key that
is already queued or in flight returns the existing task's future, so concurrent
callers share one upstream fetch. A single drain worker runs queued tasks in
priority order with a pacing delay between them.
"""

import asyncio
import heapq
import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import Config
from database.cache import FIXTURES, LINEUPS, MATCH_EVENTS, MATCH_STATS, MATCHES, CacheError
from football_api.client import UpstreamError
from sync import ttl
from sync.commands import ForceScope, ValidationError, parse_force_scope
from sync.models import (
    DetailFilter,
    MatchRecord,
    OutcomeStatus,
    SyncTask,
    TaskKey,
    TaskOutcome,
    TaskPriority,
)

logger = logging.getLogger(__name__)

# Daily budget thresholds (fraction of DAILY_REQUEST_LIMIT)
DETAILS_BUDGET_THRESHOLD = 0.8
QUEUE_BUDGET_THRESHOLD = 0.9

HISTORICAL_BATCH_DATES = 3
MAX_HISTORICAL_DAYS = 365


@dataclass
class SyncCounters:
    total_tasks: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: int = 0
    deduplicated: int = 0
    api_calls: int = 0
    items_synced: int = 0
    detail_failures: int = 0
    last_run_at: Optional[datetime] = None


def _parse_cached_matches(payloads: Iterable[Dict[str, Any]]) -> List[MatchRecord]:
    matches = []
    for payload in payloads or []:
        try:
            matches.append(MatchRecord.from_api(payload))
        except (KeyError, TypeError, ValueError):
            continue
    return matches


class SyncOrchestrator:
    """Dedup queue + single-flight execution over the cache and upstream adapters."""

    def __init__(
        self,
        config: Config,
        cache,
        api,
        leagues: Optional[List[int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.cache = cache
        self.api = api
        self.leagues = list(leagues if leagues is not None else config.sync_leagues)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.task_delay = config.sync_task_delay
        self.detail_delay = config.sync_detail_delay
        self.historical_batch_delay = config.historical_batch_delay

        # Critical sections below never await while holding the lock, so the
        # synchronous stop()/clear_queue() cannot interleave with them.
        self._lock = asyncio.Lock()
        self._heap: List[Tuple[int, int, SyncTask]] = []
        self._seq = itertools.count()
        self._queued: Dict[TaskKey, SyncTask] = {}
        self._running: Set[TaskKey] = set()
        self._flights: Dict[TaskKey, asyncio.Future] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._counters = SyncCounters()
        self._active_operations = 0

    # ------------------------------------------------------------------
    # Queue / single-flight
    # ------------------------------------------------------------------

    async def submit(self, task: SyncTask) -> asyncio.Future:
        """
        Queue a task, or join the one already queued/in flight under the same key.

        Returns:
            Future resolving to the task's TaskOutcome (never raises)
        """
        async with self._lock:
            existing = self._flights.get(task.key)
            if existing is not None:
                self._counters.deduplicated += 1
                queued = self._queued.get(task.key)
                if queued is not None:
                    if task.force and not queued.force:
                        queued.force = True
                    if task.priority < queued.priority:
                        queued.priority = task.priority
                        heapq.heappush(self._heap, (queued.priority, next(self._seq), queued))
                logger.debug("Task deduplicated", extra={"task_key": task.key.canonical})
                return existing

            future = asyncio.get_running_loop().create_future()
            self._flights[task.key] = future
            self._queued[task.key] = task
            heapq.heappush(self._heap, (task.priority, next(self._seq), task))
            self._counters.total_tasks += 1

            if self._drain_task is None or self._drain_task.done():
                self._drain_task = asyncio.create_task(self._drain())

            return future

    def _pop_next(self) -> Optional[SyncTask]:
        while self._heap:
            _, _, task = heapq.heappop(self._heap)
            # Stale heap entries remain after a priority bump or a clear
            if self._queued.get(task.key) is task:
                del self._queued[task.key]
                return task
        return None

    def _resolve(self, key: TaskKey, outcome: TaskOutcome):
        future = self._flights.pop(key, None)
        if future is not None and not future.done():
            future.set_result(outcome)

    def _record(self, outcome: TaskOutcome):
        c = self._counters
        if outcome.status == OutcomeStatus.SUCCEEDED:
            c.succeeded += 1
        elif outcome.status == OutcomeStatus.FAILED:
            c.failed += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            c.skipped += 1
        else:
            c.aborted += 1
        c.api_calls += outcome.api_calls
        c.items_synced += outcome.items
        c.detail_failures += outcome.detail_failures

    def _abort_queued(self, reason: str, status: OutcomeStatus = OutcomeStatus.ABORTED) -> int:
        dropped = 0
        for key in list(self._queued):
            outcome = TaskOutcome(key, status, error=reason)
            self._record(outcome)
            self._resolve(key, outcome)
            dropped += 1
        self._queued.clear()
        self._heap.clear()
        return dropped

    def _budget_usage(self) -> float:
        usage = getattr(self.api, "budget_usage", None)
        return usage() if callable(usage) else 0.0

    async def _drain(self):
        """Single worker: run queued tasks one at a time, pacing between them."""
        processed = 0
        while True:
            if processed and self.task_delay > 0:
                await asyncio.sleep(self.task_delay)

            async with self._lock:
                if self._queued and self._budget_usage() >= QUEUE_BUDGET_THRESHOLD:
                    skipped = self._abort_queued("daily API budget exhausted", OutcomeStatus.SKIPPED)
                    logger.warning("Stopping queue: high API usage", extra={
                        "usage": round(self._budget_usage(), 3),
                        "skipped": skipped
                    })
                task = self._pop_next()
                if task is None:
                    self._drain_task = None
                    return
                self._running.add(task.key)
                generation = self._generation

            outcome = TaskOutcome(task.key, OutcomeStatus.ABORTED, error="interrupted")
            try:
                outcome = await self._execute(task, generation)
            except Exception as e:
                logger.error("Sync task crashed", extra={
                    "task_key": task.key.canonical,
                    "error": str(e)
                }, exc_info=True)
                outcome = TaskOutcome(task.key, OutcomeStatus.FAILED, error=str(e))
            finally:
                async with self._lock:
                    self._running.discard(task.key)
                    self._record(outcome)
                    self._resolve(task.key, outcome)
                    self._counters.last_run_at = self._clock()
            processed += 1

    async def _single_flight(
        self,
        key: TaskKey,
        factory: Callable[[], Awaitable[TaskOutcome]],
    ) -> TaskOutcome:
        """Run factory() unless the same key is already in flight; then share its outcome."""
        async with self._lock:
            existing = self._flights.get(key)
            if existing is None:
                future = asyncio.get_running_loop().create_future()
                self._flights[key] = future
                self._running.add(key)
            else:
                self._counters.deduplicated += 1

        if existing is not None:
            return await asyncio.shield(existing)

        outcome = TaskOutcome(key, OutcomeStatus.ABORTED, error="interrupted")
        try:
            outcome = await factory()
        except (UpstreamError, CacheError) as e:
            outcome = TaskOutcome(key, OutcomeStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error("Match detail task crashed", extra={
                "task_key": key.canonical,
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            outcome = TaskOutcome(key, OutcomeStatus.FAILED, error=f"{type(e).__name__}: {e}")
        finally:
            async with self._lock:
                self._running.discard(key)
                self._resolve(key, outcome)
        return outcome

    def _cancelled(self, generation: int) -> bool:
        return generation != self._generation

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    async def _execute(self, task: SyncTask, generation: int) -> TaskOutcome:
        key = task.key
        try:
            return await self._sync_fixture_list(task, generation)
        except (UpstreamError, CacheError) as e:
            logger.warning("Sync task failed", extra={
                "task_key": key.canonical,
                "league_id": key.league_id,
                "date_from": key.date_from.isoformat() if key.date_from else None,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return TaskOutcome(key, OutcomeStatus.FAILED, error=str(e))

    async def _sync_fixture_list(self, task: SyncTask, generation: int) -> TaskOutcome:
        key = task.key
        outcome = TaskOutcome(key, OutcomeStatus.SUCCEEDED)

        matches: Optional[List[MatchRecord]] = None
        if not task.force:
            cached = await self.cache.get(FIXTURES, key.canonical)
            if cached is not None:
                outcome.status = OutcomeStatus.SKIPPED
                matches = _parse_cached_matches(cached)

        if matches is None:
            records = await self.api.fetch_fixtures(key.league_id, key.date_from, key.date_to)
            outcome.api_calls += 1

            # Write the list and its records in one go once the fetch succeeded
            now = self._clock()
            list_ttl = ttl.list_ttl(records, now)
            await self.cache.set(
                FIXTURES, key.canonical, [m.to_payload() for m in records], list_ttl.total_seconds()
            )
            for match in records:
                await self.cache.set(
                    MATCHES, str(match.match_id), match.to_payload(),
                    ttl.fixture_ttl(match.kickoff, match.status, now).total_seconds()
                )
            outcome.items = len(records)
            matches = records

            logger.info("Fixtures synced", extra={
                "task_key": key.canonical,
                "fixtures_count": len(records),
                "ttl_seconds": int(list_ttl.total_seconds()),
                "forced": task.force
            })

        await self._enrich(matches, task, generation, outcome)
        return outcome

    def _needs_details(self, match: MatchRecord, detail_filter: DetailFilter) -> bool:
        if detail_filter == DetailFilter.NONE:
            return False
        if detail_filter == DetailFilter.LIVE_ONLY:
            return match.is_live
        return match.is_live or match.is_finished

    async def _enrich(
        self,
        matches: List[MatchRecord],
        task: SyncTask,
        generation: int,
        outcome: TaskOutcome,
    ):
        """Stats/events for live or finished matches, lineups for finished ones."""
        candidates = [m for m in matches if self._needs_details(m, task.detail_filter)]
        for match in candidates:
            if self._cancelled(generation):
                logger.info("Detail enrichment stopped", extra={
                    "task_key": task.key.canonical,
                    "match_id": match.match_id
                })
                return

            detail = await self._single_flight(
                TaskKey.match_details(match.match_id),
                lambda m=match: self._sync_match_details(m, task.force),
            )
            self._merge_detail(outcome, match, detail)

            if match.is_finished and not self._cancelled(generation):
                lineup = await self._single_flight(
                    TaskKey.lineups(match.match_id),
                    lambda m=match: self._sync_lineups(m, task.force),
                )
                self._merge_detail(outcome, match, lineup)

    def _merge_detail(self, outcome: TaskOutcome, match: MatchRecord, detail: TaskOutcome):
        outcome.api_calls += detail.api_calls
        if detail.status == OutcomeStatus.FAILED:
            outcome.detail_failures += 1
            logger.warning("Match detail sync failed", extra={
                "match_id": match.match_id,
                "detail": detail.key.kind.value,
                "error": detail.error
            })

    async def _pace(self):
        if self.detail_delay > 0:
            await asyncio.sleep(self.detail_delay)

    async def _sync_match_details(self, match: MatchRecord, force: bool) -> TaskOutcome:
        key = TaskKey.match_details(match.match_id)
        outcome = TaskOutcome(key, OutcomeStatus.SKIPPED)
        ttl_seconds = ttl.details_ttl(match.status).total_seconds()
        cache_key = str(match.match_id)

        for namespace, fetch in (
            (MATCH_STATS, self.api.fetch_match_stats),
            (MATCH_EVENTS, self.api.fetch_match_events),
        ):
            if not force and await self.cache.get(namespace, cache_key) is not None:
                continue
            payload = await fetch(match.match_id)
            outcome.api_calls += 1
            await self.cache.set(namespace, cache_key, payload, ttl_seconds)
            outcome.items += 1
            outcome.status = OutcomeStatus.SUCCEEDED
            await self._pace()

        return outcome

    async def _sync_lineups(self, match: MatchRecord, force: bool) -> TaskOutcome:
        key = TaskKey.lineups(match.match_id)
        cache_key = str(match.match_id)
        if not force and await self.cache.get(LINEUPS, cache_key) is not None:
            return TaskOutcome(key, OutcomeStatus.SKIPPED)

        payload = await self.api.fetch_match_lineups(match.match_id)
        await self.cache.set(LINEUPS, cache_key, payload, ttl.lineups_ttl().total_seconds())
        await self._pace()
        return TaskOutcome(key, OutcomeStatus.SUCCEEDED, items=1, api_calls=1)

    # ------------------------------------------------------------------
    # Public sync modes
    # ------------------------------------------------------------------

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    @contextmanager
    def _operation(self):
        """Count a public sync mode as one operation for its whole duration."""
        self._active_operations += 1
        try:
            yield
        finally:
            self._active_operations -= 1

    @property
    def active_operations(self) -> int:
        """Sync modes (today/smart/force/historical) currently running, whoever started them."""
        return self._active_operations

    def _fixture_tasks(
        self,
        dates: Iterable[date],
        force: bool = False,
        priority: TaskPriority = TaskPriority.NORMAL,
        detail_filter: DetailFilter = DetailFilter.LIVE_OR_FINISHED,
    ) -> List[SyncTask]:
        return [
            SyncTask(TaskKey.fixtures(league_id, day), priority=priority, force=force, detail_filter=detail_filter)
            for day in dates
            for league_id in self.leagues
        ]

    async def _run_tasks(self, mode: str, tasks: List[SyncTask]) -> Dict[str, Any]:
        started = self._clock()
        futures = [await self.submit(task) for task in tasks]
        # Shield: a cancelled caller must not cancel a future other callers share
        outcomes: List[TaskOutcome] = list(
            await asyncio.gather(*(asyncio.shield(f) for f in futures))
        ) if futures else []

        summary = {
            "mode": mode,
            "tasks": len(outcomes),
            "succeeded": sum(1 for o in outcomes if o.status == OutcomeStatus.SUCCEEDED),
            "failed": sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
            "skipped": sum(1 for o in outcomes if o.status == OutcomeStatus.SKIPPED),
            "aborted": sum(1 for o in outcomes if o.status == OutcomeStatus.ABORTED),
            "api_calls": sum(o.api_calls for o in outcomes),
            "items": sum(o.items for o in outcomes),
            "detail_failures": sum(o.detail_failures for o in outcomes),
            "duration_ms": int((self._clock() - started).total_seconds() * 1000),
        }
        logger.info("Sync run completed", extra=summary)
        return summary

    async def sync_fixtures(
        self,
        league_id: int,
        date_from: date,
        date_to: Optional[date] = None,
        force: bool = False,
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> TaskOutcome:
        """Sync one league/date cell (used by bulk population and read-through)."""
        future = await self.submit(SyncTask(
            TaskKey.fixtures(league_id, date_from, date_to),
            priority=priority,
            force=force,
        ))
        return await asyncio.shield(future)

    async def sync_today(self) -> Dict[str, Any]:
        """Fetch and cache today's fixtures for the configured leagues."""
        with self._operation():
            return await self._run_tasks("today", self._fixture_tasks([self._today()]))

    def _smart_dates(self, now: datetime) -> List[date]:
        """Today always; plus yesterday in the morning (late finishers) and tomorrow from the evening on."""
        today = now.date()
        dates = [today]
        if 6 <= now.hour < 10:
            dates.append(today - timedelta(days=1))
        elif now.hour >= 18 or now.hour < 6:
            dates.append(today + timedelta(days=1))
        return dates

    async def smart_sync(self) -> Dict[str, Any]:
        """
        Refresh only what is stale: fixture lists whose cache entry expired or is
        missing, and details of live/finished matches whose details expired.
        """
        now = self._clock().astimezone(timezone.utc)
        detail_filter = DetailFilter.LIVE_OR_FINISHED
        usage = self._budget_usage()
        if usage >= DETAILS_BUDGET_THRESHOLD:
            detail_filter = DetailFilter.NONE
            logger.warning("Smart sync skipping details: high API usage", extra={"usage": round(usage, 3)})

        with self._operation():
            return await self._run_tasks(
                "smart",
                self._fixture_tasks(self._smart_dates(now), detail_filter=detail_filter),
            )

    async def force_sync(self, scope) -> Dict[str, Any]:
        """Refetch and overwrite regardless of TTL."""
        scope = parse_force_scope(scope)
        today = self._today()

        if scope == ForceScope.TODAY:
            tasks = self._fixture_tasks([today], force=True)
        elif scope == ForceScope.YESTERDAY:
            tasks = self._fixture_tasks([today - timedelta(days=1)], force=True)
        elif scope == ForceScope.TOMORROW:
            tasks = self._fixture_tasks(
                [today + timedelta(days=1)], force=True, detail_filter=DetailFilter.NONE
            )
        else:
            tasks = self._fixture_tasks(
                [today], force=True, priority=TaskPriority.HIGH, detail_filter=DetailFilter.LIVE_ONLY
            )

        with self._operation():
            return await self._run_tasks(f"force_{scope.value}", tasks)

    async def sync_historical(self, window_days: int = 30) -> Dict[str, Any]:
        """Backfill the trailing window (yesterday backwards) in small date batches."""
        if not 1 <= window_days <= MAX_HISTORICAL_DAYS:
            raise ValidationError(f"window_days must be between 1 and {MAX_HISTORICAL_DAYS}")

        today = self._today()
        dates = [today - timedelta(days=i) for i in range(1, window_days + 1)]
        batches = [dates[i:i + HISTORICAL_BATCH_DATES] for i in range(0, len(dates), HISTORICAL_BATCH_DATES)]
        generation = self._generation

        totals: Dict[str, Any] = {"mode": "historical", "window_days": window_days, "batches": 0}
        with self._operation():
            for index, batch in enumerate(batches):
                if self._cancelled(generation):
                    logger.info("Historical sync stopped", extra={"batches_done": index})
                    break
                summary = await self._run_tasks(
                    "historical_batch", self._fixture_tasks(batch, priority=TaskPriority.LOW)
                )
                totals["batches"] += 1
                for field_name in ("tasks", "succeeded", "failed", "skipped", "aborted", "api_calls", "items", "detail_failures"):
                    totals[field_name] = totals.get(field_name, 0) + summary[field_name]
                if index < len(batches) - 1 and self.historical_batch_delay > 0:
                    await asyncio.sleep(self.historical_batch_delay)

        return totals

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> int:
        """
        Abort queued tasks now and signal running ones to stop at their next
        checkpoint. A cache write already started is allowed to complete.

        Returns:
            Number of queued tasks aborted
        """
        self._generation += 1
        aborted = self._abort_queued("stopped by user")
        logger.info("Sync stopped", extra={
            "aborted_queued": aborted,
            "in_flight": len(self._running)
        })
        return aborted

    def clear_queue(self) -> int:
        """Drop queued (not started) tasks. Returns number dropped."""
        cleared = self._abort_queued("queue cleared")
        logger.info("Sync queue cleared", extra={"cleared": cleared})
        return cleared

    def get_stats(self) -> Dict[str, Any]:
        c = self._counters
        calls_today = getattr(self.api, "calls_today", None)
        return {
            "queued": len(self._queued),
            "in_flight": len(self._running),
            "active_operations": self._active_operations,
            "total_tasks": c.total_tasks,
            "succeeded": c.succeeded,
            "failed": c.failed,
            "skipped": c.skipped,
            "aborted": c.aborted,
            "deduplicated": c.deduplicated,
            "api_calls": c.api_calls,
            "items_synced": c.items_synced,
            "detail_failures": c.detail_failures,
            "last_run_at": c.last_run_at.isoformat() if c.last_run_at else None,
            "api_calls_today": calls_today if isinstance(calls_today, int) else None,
            "daily_limit": self.config.daily_request_limit,
        }
