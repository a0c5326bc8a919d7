"""Tests for the cache TTL policy."""
from datetime import datetime, timedelta, timezone

import pytest

from sync import ttl
from sync.models import MatchRecord

NOW = datetime(2025, 11, 19, 12, 0, tzinfo=timezone.utc)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestStatusClassification:

    @pytest.mark.parametrize("status", ["1H", "2H", "LIVE", "ET", "P", "HT", "ht", "live"])
    def test_live_statuses(self, status):
        assert ttl.is_live(status)
        assert not ttl.is_finished(status)

    @pytest.mark.parametrize("status", ["FT", "AET", "PEN", "AWD", "WO", "ft"])
    def test_finished_statuses(self, status):
        assert ttl.is_finished(status)
        assert not ttl.is_live(status)

    @pytest.mark.parametrize("status", [None, "", "NS", "PST", "TBD"])
    def test_other_statuses(self, status):
        assert not ttl.is_live(status)
        assert not ttl.is_finished(status)


class TestFixtureTTL:

    def test_finished_earlier_today_is_24_hours(self):
        assert ttl.fixture_ttl_ms(_utc(2025, 11, 19, 3), "FT", NOW) == 86_400_000

    def test_finished_nine_days_ago_is_30_days(self):
        assert ttl.fixture_ttl_ms(_utc(2025, 11, 10, 15), "FT", NOW) == 2_592_000_000

    def test_future_kickoff_is_2_hours(self):
        assert ttl.fixture_ttl_ms(_utc(2025, 11, 20, 15), "NS", NOW) == 7_200_000

    def test_live_wins_over_every_other_rule(self):
        assert ttl.fixture_ttl(_utc(2025, 11, 19, 11), "2H", NOW) == timedelta(minutes=5)
        # Even with a kickoff in the future (clock drift between us and the provider)
        assert ttl.fixture_ttl(_utc(2025, 11, 19, 13), "1H", NOW) == timedelta(minutes=5)

    def test_future_checked_before_finished(self):
        assert ttl.fixture_ttl(_utc(2025, 11, 19, 18), "FT", NOW) == timedelta(hours=2)

    def test_older_than_30_days_is_a_year(self):
        assert ttl.fixture_ttl(_utc(2025, 9, 1, 15), "FT", NOW) == timedelta(days=365)

    def test_exactly_30_days_is_still_recent(self):
        assert ttl.fixture_ttl(NOW - timedelta(days=30), "FT", NOW) == timedelta(days=30)

    def test_unfinished_on_earlier_day_uses_past_rule(self):
        # Postponed match from yesterday: day comparison is by UTC calendar date
        assert ttl.fixture_ttl(_utc(2025, 11, 18, 23, 50), "PST", NOW) == timedelta(days=30)

    def test_kicked_off_today_but_not_live_falls_back(self):
        assert ttl.fixture_ttl(_utc(2025, 11, 19, 10), "NS", NOW) == timedelta(hours=1)

    def test_naive_datetimes_are_utc(self):
        naive_now = datetime(2025, 11, 19, 12, 0)
        assert ttl.fixture_ttl(datetime(2025, 11, 19, 3), "FT", naive_now) == timedelta(hours=24)

    def test_midnight_boundary_uses_calendar_days(self):
        now = _utc(2025, 11, 20, 0, 10)
        assert ttl.fixture_ttl(_utc(2025, 11, 19, 23, 50), "FT", now) == timedelta(days=30)


class TestDetailTTLs:

    def test_details_ttl(self):
        assert ttl.details_ttl("HT") == timedelta(minutes=5)
        assert ttl.details_ttl("FT") == timedelta(hours=24)
        assert ttl.details_ttl("NS") == timedelta(hours=1)
        assert ttl.details_ttl(None) == timedelta(hours=1)

    def test_lineups_ttl_ignores_arguments(self):
        assert ttl.lineups_ttl() == timedelta(days=30)
        assert ttl.lineups_ttl("FT", NOW) == timedelta(days=30)
        assert ttl.lineups_ttl_ms() == 2_592_000_000

    def test_details_ttl_ms(self):
        assert ttl.details_ttl_ms("1H") == 300_000


class TestListTTL:

    def _match(self, match_id, kickoff, status):
        return MatchRecord(match_id=match_id, league_id=39, kickoff=kickoff, status=status)

    def test_empty_list_uses_fallback(self):
        assert ttl.list_ttl([], NOW) == timedelta(hours=1)

    def test_shortest_member_wins(self):
        matches = [
            self._match(1, _utc(2025, 11, 19, 3), "FT"),
            self._match(2, _utc(2025, 11, 19, 11), "2H"),
            self._match(3, _utc(2025, 11, 19, 20), "NS"),
        ]
        assert ttl.list_ttl(matches, NOW) == timedelta(minutes=5)

    def test_all_finished_today(self):
        matches = [self._match(1, _utc(2025, 11, 19, 3), "FT"), self._match(2, _utc(2025, 11, 19, 5), "AET")]
        assert ttl.list_ttl(matches, NOW) == timedelta(hours=24)
