"""
Closed command sets for the admin surface.

Each action string is parsed into an enum at the boundary; unknown actions and
missing parameters raise ValidationError before anything is enqueued.
"""

from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar


class ValidationError(ValueError):
    """Malformed caller input, rejected before any work is queued."""
    pass


class SyncAction(Enum):
    START_SYNC = "start_sync"
    SMART_SYNC = "smart_sync"
    FORCE_SYNC = "force_sync"
    HISTORICAL_SYNC = "historical_sync"
    STOP = "stop"
    CLEAR_QUEUE = "clear_queue"


class SchedulerAction(Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    UPDATE_CONFIG = "update_config"
    STATUS = "status"


class PopulateAction(Enum):
    START_MASSIVE = "start_massive"
    START_QUICK = "start_quick"
    START_FULL = "start_full"
    STOP = "stop"
    STATUS = "status"


class ForceScope(Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    TOMORROW = "tomorrow"
    LIVE = "live"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: Any, what: str) -> E:
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Missing {what}")
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {what} {value!r}. Use: {allowed}") from None


def parse_sync_action(value: Any) -> SyncAction:
    return parse_enum(SyncAction, value, "action")


def parse_scheduler_action(value: Any) -> SchedulerAction:
    return parse_enum(SchedulerAction, value, "action")


def parse_populate_action(value: Any) -> PopulateAction:
    return parse_enum(PopulateAction, value, "action")


def parse_force_scope(value: Any) -> ForceScope:
    if value is None:
        raise ValidationError("Missing type parameter for force_sync")
    return parse_enum(ForceScope, value, "force_sync type")


def parse_window_days(value: Any, default: int = 30, maximum: int = 365) -> int:
    if value is None:
        return default
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"days must be an integer (got {value!r})") from None
    if not 1 <= days <= maximum:
        raise ValidationError(f"days must be between 1 and {maximum}")
    return days


async def execute_sync_command(
    orchestrator,
    action: SyncAction,
    scope: Optional[ForceScope] = None,
    days: Optional[int] = None,
) -> Dict[str, Any]:
    """Run one SyncAction against the orchestrator. Each variant maps to exactly one method."""
    if action == SyncAction.START_SYNC:
        return await orchestrator.sync_today()
    if action == SyncAction.SMART_SYNC:
        return await orchestrator.smart_sync()
    if action == SyncAction.FORCE_SYNC:
        if scope is None:
            raise ValidationError("Missing type parameter for force_sync")
        return await orchestrator.force_sync(scope)
    if action == SyncAction.HISTORICAL_SYNC:
        return await orchestrator.sync_historical(parse_window_days(days))
    if action == SyncAction.STOP:
        return {"aborted": orchestrator.stop()}
    if action == SyncAction.CLEAR_QUEUE:
        return {"cleared": orchestrator.clear_queue()}
    raise ValidationError(f"Unhandled action {action!r}")
