"""
Recurring Scheduler - fires the three sync job classes on fixed intervals.

quick -> orchestrator.sync_today (every 30 min by default)
smart -> orchestrator.smart_sync (every 2 h)
full  -> populator.run(FULL) (daily, only inside the low-activity window)

Each job class gets its own trigger task. A tick dispatches the operation as a
detached task when a concurrency slot is free; otherwise the tick is dropped.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Tuple, Union

from config import Config, ConfigurationError, parse_hour_window
from sync.commands import ValidationError
from sync.populator import FULL_PROFILE

logger = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 2.0


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class JobClass(Enum):
    QUICK = "quick"
    SMART = "smart"
    FULL = "full"


def _parse_window(value: Any, name: str) -> Tuple[int, int]:
    """Accept (start, end), [start, end], {"start": .., "end": ..} or "start-end"."""
    try:
        if isinstance(value, str):
            start, end = parse_hour_window(value)
        elif isinstance(value, Mapping):
            start, end = int(value["start"]), int(value["end"])
        else:
            start, end = (int(v) for v in value)
    except (ConfigurationError, KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name} window {value!r}") from e
    if not (0 <= start <= 23 and 0 <= end <= 24):
        raise ValidationError(f"{name} window hours out of range: {value!r}")
    return start, end


def in_window(hour: int, window: Tuple[int, int]) -> bool:
    """Half-open [start, end) in UTC hours; start > end wraps midnight; start == end is empty."""
    start, end = window
    if start < end:
        return start <= hour < end
    if start > end:
        return hour >= start or hour < end
    return False


def seconds_until_hour(now: datetime, hour: int) -> float:
    """Seconds from now until the next HH:00 strictly in the future."""
    candidate = now.replace(hour=hour % 24, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return (candidate - now).total_seconds()


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduler settings; swapped as a whole by update_config()."""
    enabled: bool = True
    quick_sync_minutes: float = 30
    smart_sync_minutes: float = 120
    full_population_minutes: float = 1440
    low_activity: Tuple[int, int] = (2, 6)
    high_activity: Tuple[int, int] = (14, 22)
    max_concurrent_operations: int = 1
    respect_rate_limit: bool = True

    def validate(self) -> "SchedulerConfig":
        for name in ("quick_sync_minutes", "smart_sync_minutes", "full_population_minutes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValidationError(f"{name} must be a positive number (got {value!r})")
        if isinstance(self.max_concurrent_operations, bool) or not isinstance(self.max_concurrent_operations, int) \
                or self.max_concurrent_operations < 1:
            raise ValidationError("max_concurrent_operations must be an integer >= 1")
        _parse_window(self.low_activity, "low_activity")
        _parse_window(self.high_activity, "high_activity")
        return self

    def interval_seconds(self, job: JobClass) -> float:
        minutes = {
            JobClass.QUICK: self.quick_sync_minutes,
            JobClass.SMART: self.smart_sync_minutes,
            JobClass.FULL: self.full_population_minutes,
        }[job]
        return float(minutes) * 60

    @classmethod
    def from_app_config(cls, config: Config) -> "SchedulerConfig":
        return cls(
            enabled=config.scheduler_enabled,
            quick_sync_minutes=config.quick_sync_minutes,
            smart_sync_minutes=config.smart_sync_minutes,
            full_population_minutes=config.full_population_minutes,
            low_activity=config.low_activity_window,
            high_activity=config.high_activity_window,
            max_concurrent_operations=config.max_concurrent_operations,
            respect_rate_limit=config.respect_rate_limit,
        ).validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["SchedulerConfig"] = None) -> "SchedulerConfig":
        """
        Build a config from caller input, starting from base (partial updates allowed).

        Accepts the flat field names as well as the grouped admin form
        {"intervals": {...}, "timeWindows": {...}, "throttling": {...}}.

        Raises:
            ValidationError: on unknown keys or invalid values
        """
        if not isinstance(data, Mapping):
            raise ValidationError("config must be an object")

        flat: Dict[str, Any] = {}
        aliases = {
            "quickSync": "quick_sync_minutes",
            "smartSync": "smart_sync_minutes",
            "fullPopulation": "full_population_minutes",
            "lowActivity": "low_activity",
            "highActivity": "high_activity",
            "maxConcurrentOperations": "max_concurrent_operations",
            "respectRateLimit": "respect_rate_limit",
        }
        for key, value in data.items():
            if key in ("intervals", "timeWindows", "throttling") and isinstance(value, Mapping):
                for sub_key, sub_value in value.items():
                    flat[aliases.get(sub_key, sub_key)] = sub_value
            else:
                flat[aliases.get(key, key)] = value

        fields = set(cls.__dataclass_fields__)
        unknown = sorted(set(flat) - fields)
        if unknown:
            raise ValidationError(f"Unknown scheduler config keys: {', '.join(unknown)}")

        for name in ("low_activity", "high_activity"):
            if name in flat:
                flat[name] = _parse_window(flat[name], name)
        for name in ("enabled", "respect_rate_limit"):
            if name in flat and not isinstance(flat[name], bool):
                raise ValidationError(f"{name} must be a boolean")

        return replace(base or cls(), **flat).validate()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["low_activity"] = list(self.low_activity)
        data["high_activity"] = list(self.high_activity)
        return data


@dataclass
class JobCounters:
    fired: int = 0
    dropped: int = 0
    deferred: int = 0
    failed: int = 0


class RecurringScheduler:
    """Arms one trigger task per job class while RUNNING."""

    def __init__(
        self,
        orchestrator,
        populator=None,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.orchestrator = orchestrator
        self.populator = populator
        self.config = (config or SchedulerConfig()).validate()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = SchedulerState.STOPPED
        self._triggers: Dict[JobClass, asyncio.Task] = {}
        self._next_fire: Dict[JobClass, Optional[datetime]] = {job: None for job in JobClass}
        self._active: Set[asyncio.Task] = set()
        self._counters: Dict[JobClass, JobCounters] = {job: JobCounters() for job in JobClass}
        self._restart_handle: Optional[asyncio.TimerHandle] = None

    @property
    def running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def start(self) -> bool:
        """
        STOPPED -> RUNNING. Idempotent.

        Returns:
            True if the scheduler transitioned to RUNNING on this call
        """
        self._restart_handle = None
        if self.running:
            logger.info("Scheduler already running")
            return False
        if not self.config.enabled:
            logger.warning("Scheduler is disabled in config; not starting")
            return False

        self.state = SchedulerState.RUNNING
        self._arm()
        logger.info("Scheduler started", extra=self.config.to_dict())
        return True

    def stop(self):
        """Cancel trigger tasks (and a pending restart). Dispatched operations keep running."""
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if not self.running:
            return
        self._disarm()
        self.state = SchedulerState.STOPPED
        logger.info("Scheduler stopped", extra={"active_operations": len(self._active)})

    def restart(self, delay: float = RESTART_DELAY_SECONDS):
        self.stop()
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay, self.start)
        logger.info("Scheduler restart pending", extra={"delay_seconds": delay})

    def update_config(self, new: Union[SchedulerConfig, Mapping[str, Any]]) -> SchedulerConfig:
        """Validate and swap config; re-arm triggers if running."""
        if isinstance(new, SchedulerConfig):
            config = new.validate()
        else:
            config = SchedulerConfig.from_dict(new, base=self.config)

        self.config = config
        logger.info("Scheduler config updated", extra=config.to_dict())

        if not config.enabled:
            self.stop()
        elif self.running:
            self._disarm()
            self._arm()
        return config

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "config": self.config.to_dict(),
            "next_fire_times": {
                job.value: (self._next_fire[job].isoformat() if self._next_fire[job] else None)
                for job in JobClass
            },
            "active_operations": self._busy_slots(),
            "restart_pending": self._restart_handle is not None,
            "counters": {job.value: asdict(self._counters[job]) for job in JobClass},
        }

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _arm(self):
        for job in JobClass:
            self._triggers[job] = asyncio.create_task(self._trigger_loop(job))

    def _disarm(self):
        for task in self._triggers.values():
            task.cancel()
        self._triggers.clear()
        self._next_fire = {job: None for job in JobClass}

    async def _trigger_loop(self, job: JobClass):
        delay = self.config.interval_seconds(job)
        while True:
            self._next_fire[job] = self._clock() + timedelta(seconds=delay)
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break
            try:
                delay = self._tick(job)
            except Exception as e:
                logger.error("Scheduler tick error", extra={"job": job.value, "error": str(e)}, exc_info=True)
                delay = self.config.interval_seconds(job)

    def _full_allowed(self, hour: int) -> bool:
        if not in_window(hour, self.config.low_activity):
            return False
        if self.config.respect_rate_limit and in_window(hour, self.config.high_activity):
            return False
        return True

    def _busy_slots(self) -> int:
        # Operations started outside the scheduler (admin API, startup sync) hold slots too
        external = self.orchestrator.active_operations
        if self.populator is not None and self.populator.running:
            external += 1
        return max(len(self._active), external)

    def _tick(self, job: JobClass) -> float:
        """
        Handle one trigger. Returns the delay in seconds until this job's next tick.
        """
        interval = self.config.interval_seconds(job)
        counters = self._counters[job]
        now = self._clock().astimezone(timezone.utc)

        if job == JobClass.FULL and not self._full_allowed(now.hour):
            counters.deferred += 1
            delay = min(seconds_until_hour(now, self.config.low_activity[0]), interval)
            logger.info("Full population deferred until low-activity window", extra={
                "hour": now.hour,
                "next_in_seconds": int(delay)
            })
            return delay

        busy = self._busy_slots()
        if busy >= self.config.max_concurrent_operations:
            counters.dropped += 1
            logger.info("Scheduler tick dropped: no free slot", extra={
                "job": job.value,
                "active_operations": busy
            })
            return interval

        counters.fired += 1
        task = asyncio.create_task(self._run_operation(job))
        self._active.add(task)
        task.add_done_callback(self._active.discard)
        return interval

    def _operation(self, job: JobClass) -> Awaitable[Any]:
        if job == JobClass.QUICK:
            return self.orchestrator.sync_today()
        if job == JobClass.SMART:
            return self.orchestrator.smart_sync()
        if self.populator is not None:
            return self.populator.run(FULL_PROFILE)
        return self.orchestrator.sync_historical()

    async def _run_operation(self, job: JobClass):
        started = self._clock()
        logger.info("Scheduled operation started", extra={"job": job.value})
        try:
            result = await self._operation(job)
            logger.info("Scheduled operation completed", extra={
                "job": job.value,
                "duration_ms": int((self._clock() - started).total_seconds() * 1000),
                "result": result if isinstance(result, dict) else None
            })
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._counters[job].failed += 1
            logger.error("Scheduled operation failed", extra={
                "job": job.value,
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)

    async def wait_idle(self):
        """Wait for dispatched operations to finish (shutdown, tests)."""
        if self._active:
            await asyncio.gather(*list(self._active), return_exceptions=True)
