"""
Configuration management for the Matchday Cache Sync service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class ConfigurationError(ValueError):
    """Raised when required configuration (credentials, backend) is missing or invalid."""
    pass


# Priority leagues synced by the recurring jobs (API-Football league ids)
DEFAULT_SYNC_LEAGUES = [
    128, 129, 130,  # Argentina (Liga Profesional, Primera Nacional, Copa Argentina)
    2, 3, 848,  # UEFA (Champions, Europa, Conference)
    140, 39, 135, 78, 61,  # Top 5 European leagues
    13, 11,  # CONMEBOL (Libertadores, Sudamericana)
    71, 73,  # Brazil (Serie A, Copa do Brasil)
    15,  # Club World Cup
]


def _parse_int_list(raw: Optional[str]) -> List[int]:
    """Parse a comma-separated id list, ignoring blanks and non-numeric entries."""
    ids: List[int] = []
    if not raw:
        return ids
    for s in raw.split(","):
        s = s.strip()
        if not s:
            continue
        try:
            value = int(s)
        except ValueError:
            continue
        if value not in ids:
            ids.append(value)
    return ids


def parse_hour_window(raw: str) -> Tuple[int, int]:
    """Parse an 'H-H' hour window such as '2-6' into (start, end)."""
    try:
        start_s, end_s = raw.split("-", 1)
        start, end = int(start_s), int(end_s)
    except ValueError as e:
        raise ConfigurationError(f"Invalid hour window {raw!r}, expected 'start-end'") from e
    if not (0 <= start <= 23 and 0 <= end <= 24):
        raise ConfigurationError(f"Hour window {raw!r} out of range")
    return start, end


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Cache backend: "supabase" (api_cache table) or "memory" (dry runs)
    cache_backend: str = os.getenv("CACHE_BACKEND", "supabase")
    cache_table: str = os.getenv("CACHE_TABLE", "api_cache")

    # Supabase Configuration
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)

    # Football API Configuration
    football_api_key: str = os.getenv("FOOTBALL_API_KEY", "")
    football_api_base_url: str = os.getenv("FOOTBALL_API_BASE_URL", "https://v3.football.api-sports.io")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30"))

    # Rate Limiting (provider plan: 10 req/min, 7500 req/day)
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "10"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.5"))
    daily_request_limit: int = int(os.getenv("DAILY_REQUEST_LIMIT", "7500"))

    # Retry Configuration
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: int = int(os.getenv("MAX_RETRY_DELAY", "60"))

    # Sync pacing (seconds)
    sync_task_delay: float = float(os.getenv("SYNC_TASK_DELAY", "0.6"))
    sync_detail_delay: float = float(os.getenv("SYNC_DETAIL_DELAY", "0.1"))
    historical_batch_delay: float = float(os.getenv("HISTORICAL_BATCH_DELAY", "0.6"))
    population_cell_delay: float = float(os.getenv("POPULATION_CELL_DELAY", "0.6"))
    population_batch_delay: float = float(os.getenv("POPULATION_BATCH_DELAY", "30"))

    # Leagues synced by today/smart/force runs
    sync_leagues: List[int] = field(default_factory=list)

    # Scheduler (minutes / UTC hours)
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    scheduler_autostart: bool = os.getenv("SCHEDULER_AUTOSTART", "false").lower() == "true"
    quick_sync_minutes: float = float(os.getenv("QUICK_SYNC_MINUTES", "30"))
    smart_sync_minutes: float = float(os.getenv("SMART_SYNC_MINUTES", "120"))
    full_population_minutes: float = float(os.getenv("FULL_POPULATION_MINUTES", "1440"))
    low_activity_hours: str = os.getenv("LOW_ACTIVITY_HOURS", "2-6")
    high_activity_hours: str = os.getenv("HIGH_ACTIVITY_HOURS", "14-22")
    max_concurrent_operations: int = int(os.getenv("MAX_CONCURRENT_OPERATIONS", "1"))
    respect_rate_limit: bool = os.getenv("RESPECT_RATE_LIMIT", "true").lower() == "true"

    # Admin API
    admin_token: Optional[str] = os.getenv("ADMIN_TOKEN", None)
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if self.cache_backend not in ("supabase", "memory"):
            errors.append(f"CACHE_BACKEND must be 'supabase' or 'memory' (got {self.cache_backend!r})")
        if self.cache_backend == "supabase":
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required")
            if not self.supabase_key and not self.supabase_service_key:
                errors.append("SUPABASE_KEY is required")
        if not self.football_api_key:
            errors.append("FOOTBALL_API_KEY is required")
        if self.max_concurrent_operations < 1:
            errors.append("MAX_CONCURRENT_OPERATIONS must be >= 1")

        if errors:
            raise ConfigurationError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Resolve list settings and validate after initialization."""
        if not self.sync_leagues:
            self.sync_leagues = _parse_int_list(os.getenv("SYNC_LEAGUES")) or list(DEFAULT_SYNC_LEAGUES)
        self.validate()

    @property
    def low_activity_window(self) -> Tuple[int, int]:
        return parse_hour_window(self.low_activity_hours)

    @property
    def high_activity_window(self) -> Tuple[int, int]:
        return parse_hour_window(self.high_activity_hours)
