"""
Domain types shared by the sync subsystem.

TaskKey is the typed dedup key: two tasks collapse into one upstream fetch
exactly when their keys are equal. Its canonical string doubles as the cache key.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from sync import ttl


class TaskKind(Enum):
    """Unit-of-work kind."""
    FIXTURES = "fixtures"
    MATCH_DETAILS = "match_details"
    LINEUPS = "lineups"


class TaskPriority(IntEnum):
    """Lower value runs first."""
    HIGH = 0
    NORMAL = 1
    LOW = 2


class DetailFilter(Enum):
    """Which matches of a fixture list get per-match detail enrichment."""
    LIVE_OR_FINISHED = "live_or_finished"
    LIVE_ONLY = "live_only"
    NONE = "none"


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TaskKey:
    """Canonical identity of a sync task (kind + scope)."""
    kind: TaskKind
    league_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    match_id: Optional[int] = None

    @classmethod
    def fixtures(cls, league_id: int, date_from: date, date_to: Optional[date] = None) -> "TaskKey":
        return cls(TaskKind.FIXTURES, league_id=league_id, date_from=date_from, date_to=date_to or date_from)

    @classmethod
    def match_details(cls, match_id: int) -> "TaskKey":
        return cls(TaskKind.MATCH_DETAILS, match_id=match_id)

    @classmethod
    def lineups(cls, match_id: int) -> "TaskKey":
        return cls(TaskKind.LINEUPS, match_id=match_id)

    @property
    def canonical(self) -> str:
        if self.kind == TaskKind.FIXTURES:
            return f"{self.kind.value}:{self.league_id}:{self.date_from.isoformat()}:{self.date_to.isoformat()}"
        return f"{self.kind.value}:{self.match_id}"

    def __str__(self) -> str:
        return self.canonical


@dataclass
class SyncTask:
    """One queued unit of work."""
    key: TaskKey
    priority: TaskPriority = TaskPriority.NORMAL
    force: bool = False
    detail_filter: DetailFilter = DetailFilter.LIVE_OR_FINISHED


@dataclass
class TaskOutcome:
    """Eventual result of a task; shared by every caller that submitted the same key."""
    key: TaskKey
    status: OutcomeStatus
    items: int = 0
    api_calls: int = 0
    detail_failures: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.canonical,
            "status": self.status.value,
            "items": self.items,
            "api_calls": self.api_calls,
            "detail_failures": self.detail_failures,
            "error": self.error,
        }


def _parse_kickoff(value: Any) -> datetime:
    if isinstance(value, datetime):
        kickoff = value
    elif isinstance(value, (int, float)):
        kickoff = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        kickoff = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)
    return kickoff.astimezone(timezone.utc)


@dataclass
class MatchRecord:
    """A fixture as reported by the provider."""
    match_id: int
    league_id: int
    kickoff: datetime
    status: str
    home_team_id: Optional[int] = None
    home_team_name: Optional[str] = None
    away_team_id: Optional[int] = None
    away_team_name: Optional[str] = None
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MatchRecord":
        """
        Build from an API-Football fixture object.

        Raises:
            KeyError / ValueError: if the payload lacks fixture id, date or league
        """
        fixture = data["fixture"]
        teams = data.get("teams") or {}
        goals = data.get("goals") or {}
        home = teams.get("home") or {}
        away = teams.get("away") or {}
        status = (fixture.get("status") or {}).get("short") or "NS"
        return cls(
            match_id=int(fixture["id"]),
            league_id=int(data["league"]["id"]),
            kickoff=_parse_kickoff(fixture.get("timestamp") or fixture["date"]),
            status=status,
            home_team_id=home.get("id"),
            home_team_name=home.get("name"),
            away_team_id=away.get("id"),
            away_team_name=away.get("name"),
            home_goals=goals.get("home"),
            away_goals=goals.get("away"),
            raw=data,
        )

    @property
    def is_live(self) -> bool:
        return ttl.is_live(self.status)

    @property
    def is_finished(self) -> bool:
        return ttl.is_finished(self.status)

    def to_payload(self) -> Dict[str, Any]:
        """Cacheable form: the provider payload when we have it, else a minimal fixture object."""
        if self.raw:
            return self.raw
        return {
            "fixture": {
                "id": self.match_id,
                "date": self.kickoff.isoformat(),
                "status": {"short": self.status},
            },
            "league": {"id": self.league_id},
            "teams": {
                "home": {"id": self.home_team_id, "name": self.home_team_name},
                "away": {"id": self.away_team_id, "name": self.away_team_name},
            },
            "goals": {"home": self.home_goals, "away": self.away_goals},
        }
