"""
API-Football client with rate limiting, retry logic, and error handling.

Handles all communication with the upstream fixtures provider. Every outgoing
request counts against a daily budget that resets at 00:00 UTC.
"""

import asyncio
import logging
import random
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from sync.models import MatchRecord

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Base exception for upstream provider errors."""
    pass


class UpstreamRateLimitError(UpstreamError):
    """Raised when rate limit is exceeded."""
    pass


class UpstreamNonRetryableError(UpstreamError):
    """Raised for non-retryable errors (4xx except 429)."""
    pass


class FootballAPIClient:
    """Client for the API-Football v3 provider."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.football_api_base_url
        self.max_retries = config.max_retries
        self.retry_backoff_base = config.retry_backoff_base
        self.max_retry_delay = config.max_retry_delay
        self.daily_limit = config.daily_request_limit

        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        # Daily budget counter (UTC day)
        self._calls_today = 0
        self._calls_day: date = datetime.now(timezone.utc).date()
        self.total_calls = 0

        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "x-apisports-key": config.football_api_key,
                "Accept": "application/json",
            }
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            # Add jitter (±25%)
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(wait_time + jitter)

        self.last_request_time = time.time()

    def _roll_daily_counter(self):
        today = datetime.now(timezone.utc).date()
        if today != self._calls_day:
            logger.info("Daily API counter reset", extra={
                "previous_day": self._calls_day.isoformat(),
                "previous_calls": self._calls_today
            })
            self._calls_day = today
            self._calls_today = 0

    def _count_call(self):
        self._roll_daily_counter()
        self._calls_today += 1
        self.total_calls += 1

    @property
    def calls_today(self) -> int:
        self._roll_daily_counter()
        return self._calls_today

    def budget_usage(self) -> float:
        """Fraction of today's request budget already spent (0.0 - 1.0+)."""
        if self.daily_limit <= 0:
            return 0.0
        return self.calls_today / self.daily_limit

    def _is_retryable_error(self, status_code: int) -> bool:
        # Retryable: 429 (rate limit), 500, 502, 503, 504
        return status_code in {429, 500, 502, 503, 504}

    def _backoff(self, attempt: int) -> float:
        backoff = min(
            self.retry_backoff_base * (2 ** attempt),
            self.max_retry_delay
        )
        jitter = backoff * 0.25 * (random.random() * 2 - 1)
        return backoff + jitter

    async def _request_with_retry(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        GET an endpoint with retry logic.

        Raises:
            UpstreamRateLimitError: If still rate limited after retries
            UpstreamNonRetryableError: If non-retryable error
            UpstreamError: For other errors after retries exhausted
        """
        url = f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        last_exception = None

        for attempt in range(self.max_retries + 1):
            try:
                await self._wait_for_rate_limit()
                self._count_call()

                response = await self.client.get(url, params=params)

                if response.is_success:
                    return response

                status_code = response.status_code

                if status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", 60))
                    logger.warning(
                        "Rate limited by football API",
                        extra={
                            "endpoint": endpoint,
                            "retry_after": retry_after,
                            "attempt": attempt + 1
                        }
                    )
                    if attempt < self.max_retries:
                        await asyncio.sleep(min(retry_after, self.max_retry_delay))
                        continue
                    raise UpstreamRateLimitError(
                        f"Rate limited after {self.max_retries} retries"
                    )

                if not self._is_retryable_error(status_code):
                    error_text = response.text[:500]
                    logger.error(
                        "Non-retryable error from football API",
                        extra={
                            "endpoint": endpoint,
                            "status_code": status_code,
                            "error": error_text
                        }
                    )
                    raise UpstreamNonRetryableError(
                        f"Non-retryable error {status_code}: {error_text}"
                    )

                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        "Retryable error from football API, retrying",
                        extra={
                            "endpoint": endpoint,
                            "status_code": status_code,
                            "attempt": attempt + 1,
                            "wait_time": wait_time
                        }
                    )
                    await asyncio.sleep(wait_time)
                    continue

                error_text = response.text[:500]
                raise UpstreamError(
                    f"Request failed after {self.max_retries} retries: "
                    f"{status_code} - {error_text}"
                )

            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        "Timeout from football API, retrying",
                        extra={
                            "endpoint": endpoint,
                            "attempt": attempt + 1,
                            "wait_time": wait_time
                        }
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise UpstreamError(f"Request timeout after {self.max_retries} retries") from e

            except httpx.TransportError as e:
                last_exception = e
                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        "Transport error from football API, retrying",
                        extra={
                            "endpoint": endpoint,
                            "attempt": attempt + 1,
                            "wait_time": wait_time,
                            "error": str(e)
                        }
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise UpstreamError(f"Network error after {self.max_retries} retries: {e}") from e

        raise UpstreamError("Request failed") from last_exception

    async def _get_response_list(self, endpoint: str, params: Dict[str, Any]) -> List[Any]:
        """GET and unwrap the provider envelope ({"errors": ..., "response": [...]})."""
        response = await self._request_with_retry(endpoint, params)
        try:
            body = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "response_preview": response.text[:500] if response.text else "No text content"
            })
            raise UpstreamError(f"Failed to parse JSON: {e}") from e

        if not isinstance(body, dict):
            logger.error("Unexpected response shape", extra={
                "endpoint": endpoint,
                "body_type": type(body).__name__
            })
            raise UpstreamError(f"Unexpected response body: expected object, got {type(body).__name__}")

        # The provider reports quota/auth problems with HTTP 200 and a non-empty "errors"
        errors = body.get("errors")
        if errors:
            logger.error("Football API returned errors", extra={
                "endpoint": endpoint,
                "params": params,
                "errors": errors
            })
            raise UpstreamNonRetryableError(f"Provider errors: {errors}")

        payload = body.get("response") or []
        if not isinstance(payload, list):
            raise UpstreamError(f"Unexpected 'response' field: expected list, got {type(payload).__name__}")
        return payload

    async def fetch_fixtures(
        self,
        league_id: int,
        date_from: date,
        date_to: date
    ) -> List[MatchRecord]:
        """
        Get fixtures for a league in a date range.

        Args:
            league_id: API-Football league id
            date_from: First date (inclusive)
            date_to: Last date (inclusive)

        Returns:
            List of MatchRecord, most recent kickoff first
        """
        params = {
            "league": league_id,
            "season": date_from.year,
            "from": date_from.isoformat(),
            "to": date_to.isoformat(),
        }
        payload = await self._get_response_list("/fixtures", params)

        records: List[MatchRecord] = []
        for item in payload:
            try:
                records.append(MatchRecord.from_api(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed fixture", extra={
                    "league_id": league_id,
                    "error": str(e)
                })
        records.sort(key=lambda m: m.kickoff, reverse=True)

        logger.debug("Fetched fixtures", extra={
            "league_id": league_id,
            "date_from": params["from"],
            "date_to": params["to"],
            "fixtures_count": len(records)
        })

        return records

    async def fetch_match_stats(self, match_id: int) -> List[Dict[str, Any]]:
        """Get per-team statistics for a fixture."""
        return await self._get_response_list("/fixtures/statistics", {"fixture": match_id})

    async def fetch_match_events(self, match_id: int) -> List[Dict[str, Any]]:
        """Get goals, cards and substitutions for a fixture."""
        return await self._get_response_list("/fixtures/events", {"fixture": match_id})

    async def fetch_match_lineups(self, match_id: int) -> List[Dict[str, Any]]:
        """Get both teams' lineups for a fixture."""
        return await self._get_response_list("/fixtures/lineups", {"fixture": match_id})

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
