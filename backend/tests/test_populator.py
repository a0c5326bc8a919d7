"""Tests for BulkPopulator: profiles, single-job guard, stop, failure accounting."""
import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import make_config
from football_api.client import UpstreamError
from sync.commands import ValidationError
from sync.leagues import COMPREHENSIVE_LEAGUES, essential_leagues
from sync.models import OutcomeStatus, TaskKey, TaskOutcome
from sync.orchestrator import SyncOrchestrator
from sync.populator import (
    FULL_PROFILE,
    MAX_RECORDED_ERRORS,
    QUICK_PROFILE,
    BulkPopulator,
    PopulationAlreadyRunning,
    PopulationJob,
    build_job,
)

TODAY = date(2025, 11, 19)


def _outcome(league_id, day, status=OutcomeStatus.SUCCEEDED, api_calls=1, error=None):
    return TaskOutcome(TaskKey.fixtures(league_id, day), status, items=2, api_calls=api_calls, error=error)


@pytest.fixture
def orchestrator():
    orchestrator = AsyncMock()

    async def sync_fixtures(league_id, day, **kwargs):
        return _outcome(league_id, day)

    orchestrator.sync_fixtures.side_effect = sync_fixtures
    return orchestrator


@pytest.fixture
def populator(config, orchestrator, clock):
    return BulkPopulator(config, orchestrator, clock=clock)


def _cells(orchestrator):
    return [(c.args[0], c.args[1]) for c in orchestrator.sync_fixtures.call_args_list]


class TestProfiles:

    def test_quick_profile(self):
        job = build_job(QUICK_PROFILE)
        assert job.leagues == tuple(essential_leagues())
        assert (job.past_days, job.future_days, job.batch_size) == (7, 3, 3)
        assert job.total_cells == len(job.leagues) * 11

    def test_full_profile(self):
        job = build_job(FULL_PROFILE)
        assert len(job.leagues) == len(COMPREHENSIVE_LEAGUES)
        assert (job.past_days, job.future_days, job.batch_size) == (60, 14, 4)

    def test_dates_cover_past_today_future(self):
        job = PopulationJob.custom([39], past_days=2, future_days=1)
        assert job.dates(TODAY) == [
            TODAY - timedelta(days=2), TODAY - timedelta(days=1), TODAY, TODAY + timedelta(days=1)
        ]

    def test_batches_follow_priority(self):
        job = PopulationJob.custom([188, 72, 39], past_days=0, future_days=0, batch_size=2)
        assert [[league.id for league in batch] for batch in job.batches()] == [[39, 72], [188]]

    @pytest.mark.parametrize("kwargs", [
        {"leagues": ["abc"]},
        {"leagues": [-5]},
        {"leagues": []},
        {"past_days": 400},
        {"future_days": -1},
        {"batch_size": 0},
    ])
    def test_custom_validation(self, kwargs):
        with pytest.raises(ValidationError):
            PopulationJob.custom(**{"leagues": [39], **kwargs})

    def test_unknown_profile(self):
        with pytest.raises(ValidationError):
            build_job("everything")


class TestRun:

    @pytest.mark.asyncio
    async def test_runs_every_cell_in_order(self, populator, orchestrator):
        job = PopulationJob.custom([140, 39], past_days=1, future_days=1)

        stats = await populator.run(job)

        assert _cells(orchestrator) == [
            (140, TODAY - timedelta(days=1)), (140, TODAY), (140, TODAY + timedelta(days=1)),
            (39, TODAY - timedelta(days=1)), (39, TODAY), (39, TODAY + timedelta(days=1)),
        ]
        assert stats["running"] is False
        assert stats["total"] == 6
        assert stats["processed"] == 6
        assert stats["succeeded"] == 6
        assert stats["progress"] == 100.0
        assert stats["estimated_remaining"] == 0
        assert stats["stopped"] is False
        assert stats["api_calls"] == 6

    @pytest.mark.asyncio
    async def test_failure_accounting(self, populator, orchestrator):
        results = iter([
            _outcome(39, TODAY, OutcomeStatus.SUCCEEDED),
            _outcome(39, TODAY, OutcomeStatus.FAILED, error="503"),
            _outcome(39, TODAY, OutcomeStatus.SKIPPED, api_calls=0),
            UpstreamError("escaped"),
        ])

        async def sync_fixtures(league_id, day, **kwargs):
            result = next(results)
            if isinstance(result, Exception):
                raise result
            return result

        orchestrator.sync_fixtures.side_effect = sync_fixtures
        job = PopulationJob.custom([39], past_days=2, future_days=1)

        stats = await populator.run(job)

        assert stats["succeeded"] == 1
        assert stats["failed"] == 2
        assert stats["skipped"] == 1
        assert stats["processed"] == stats["succeeded"] + stats["failed"]
        assert len(stats["errors"]) == 2
        assert stats["running"] is False

    @pytest.mark.asyncio
    async def test_error_log_keeps_most_recent_failures(self, populator, orchestrator):
        async def sync_fixtures(league_id, day, **kwargs):
            return _outcome(league_id, day, OutcomeStatus.FAILED, error=f"down {day.isoformat()}")

        orchestrator.sync_fixtures.side_effect = sync_fixtures
        job = PopulationJob.custom([39], past_days=29, future_days=0)

        stats = await populator.run(job)

        assert stats["failed"] == 30
        assert len(populator._stats.errors) == MAX_RECORDED_ERRORS
        assert len(stats["errors"]) == MAX_RECORDED_ERRORS
        assert stats["errors"][-1]["date"] == TODAY.isoformat()
        assert stats["errors"][0]["date"] == (TODAY - timedelta(days=MAX_RECORDED_ERRORS - 1)).isoformat()

    @pytest.mark.asyncio
    async def test_start_is_detached_and_exclusive(self, populator):
        job = PopulationJob.custom([39], past_days=0, future_days=0)

        snapshot = populator.start(job)
        assert snapshot["running"] is True
        assert snapshot["estimated_remaining"] is None

        with pytest.raises(PopulationAlreadyRunning):
            populator.start(QUICK_PROFILE)
        with pytest.raises(PopulationAlreadyRunning):
            await populator.run(QUICK_PROFILE)

        await populator._task
        assert populator.get_stats()["running"] is False
        # A finished job frees the slot
        populator.start(job)
        await populator._task

    @pytest.mark.asyncio
    async def test_stop_mid_run(self, populator, orchestrator):
        calls = 0

        async def sync_fixtures(league_id, day, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 3:
                populator.stop()
            return _outcome(league_id, day)

        orchestrator.sync_fixtures.side_effect = sync_fixtures
        job = PopulationJob.custom([39, 140], past_days=3, future_days=3)

        stats = await populator.run(job)

        assert orchestrator.sync_fixtures.await_count == 3
        assert stats["processed"] + stats["skipped"] < stats["total"]
        assert stats["stopped"] is True
        assert stats["running"] is False
        assert stats["estimated_remaining"] is not None

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, populator):
        assert populator.stop() is False

    @pytest.mark.asyncio
    async def test_cancelled_job_clears_running(self, populator, orchestrator):
        release = asyncio.Event()

        async def sync_fixtures(league_id, day, **kwargs):
            await release.wait()
            return _outcome(league_id, day)

        orchestrator.sync_fixtures.side_effect = sync_fixtures
        populator.start(PopulationJob.custom([39], past_days=0, future_days=0))
        await asyncio.sleep(0)

        populator._task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await populator._task

        assert populator.running is False


class TestWithOrchestrator:

    @pytest.mark.asyncio
    async def test_second_run_skips_fresh_cells(self, cache, api, clock):
        config = make_config()
        orchestrator = SyncOrchestrator(config, cache, api, clock=clock)
        populator = BulkPopulator(config, orchestrator, clock=clock)
        job = PopulationJob.custom([39], past_days=1, future_days=0)

        first = await populator.run(job)
        second = await populator.run(job)

        assert first["succeeded"] == 2
        assert second["skipped"] == 2
        assert second["processed"] == 0
        assert api.count("fixtures") == 2
