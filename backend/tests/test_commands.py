"""Tests for admin command parsing and dispatch."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from sync.commands import (
    ForceScope,
    PopulateAction,
    SchedulerAction,
    SyncAction,
    ValidationError,
    execute_sync_command,
    parse_force_scope,
    parse_populate_action,
    parse_scheduler_action,
    parse_sync_action,
    parse_window_days,
)


class TestParsing:

    def test_parse_known_actions(self):
        assert parse_sync_action("smart_sync") is SyncAction.SMART_SYNC
        assert parse_sync_action(" Force_Sync ") is SyncAction.FORCE_SYNC
        assert parse_scheduler_action("update_config") is SchedulerAction.UPDATE_CONFIG
        assert parse_populate_action("start_massive") is PopulateAction.START_MASSIVE
        assert parse_force_scope("live") is ForceScope.LIVE

    def test_enum_values_pass_through(self):
        assert parse_sync_action(SyncAction.STOP) is SyncAction.STOP

    @pytest.mark.parametrize("value", [None, "", "sync_everything", 42])
    def test_unknown_or_missing_action(self, value):
        with pytest.raises(ValidationError):
            parse_sync_action(value)

    def test_error_lists_allowed_values(self):
        with pytest.raises(ValidationError, match="start, stop, restart"):
            parse_scheduler_action("pause")

    def test_missing_force_scope(self):
        with pytest.raises(ValidationError, match="Missing type parameter"):
            parse_force_scope(None)

    def test_window_days(self):
        assert parse_window_days(None) == 30
        assert parse_window_days("14") == 14
        assert parse_window_days(365) == 365
        for bad in (0, 366, "two weeks"):
            with pytest.raises(ValidationError):
                parse_window_days(bad)


class TestExecute:

    @pytest.fixture
    def orchestrator(self):
        orchestrator = MagicMock()
        for name in ("sync_today", "smart_sync", "force_sync", "sync_historical"):
            setattr(orchestrator, name, AsyncMock(return_value={"mode": name}))
        orchestrator.stop.return_value = 3
        orchestrator.clear_queue.return_value = 2
        return orchestrator

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action,method", [
        (SyncAction.START_SYNC, "sync_today"),
        (SyncAction.SMART_SYNC, "smart_sync"),
    ])
    async def test_maps_to_one_method(self, orchestrator, action, method):
        assert await execute_sync_command(orchestrator, action) == {"mode": method}
        getattr(orchestrator, method).assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_sync_requires_scope(self, orchestrator):
        with pytest.raises(ValidationError):
            await execute_sync_command(orchestrator, SyncAction.FORCE_SYNC)
        orchestrator.force_sync.assert_not_called()

        await execute_sync_command(orchestrator, SyncAction.FORCE_SYNC, ForceScope.TODAY)
        orchestrator.force_sync.assert_awaited_once_with(ForceScope.TODAY)

    @pytest.mark.asyncio
    async def test_historical_defaults_to_30_days(self, orchestrator):
        await execute_sync_command(orchestrator, SyncAction.HISTORICAL_SYNC)
        orchestrator.sync_historical.assert_awaited_once_with(30)

    @pytest.mark.asyncio
    async def test_stop_and_clear(self, orchestrator):
        assert await execute_sync_command(orchestrator, SyncAction.STOP) == {"aborted": 3}
        assert await execute_sync_command(orchestrator, SyncAction.CLEAR_QUEUE) == {"cleared": 2}
