"""Unit tests for QuotaLedger."""
from datetime import timedelta

import pytest

from processor.exceptions import QuotaExceeded
from processor.models import SearchLog
from sync.quota_ledger import (
    QUERY_TYPE_COMPETITOR,
    QUERY_TYPE_YOUTUBE_SEARCH,
    QuotaLedger,
    local_midnight,
)


class TestLocalMidnight:

    def test_is_start_of_local_day(self, now):
        midnight = local_midnight(now)

        assert midnight <= now
        assert now - midnight < timedelta(days=1)
        assert (midnight.hour, midnight.minute, midnight.second) == (0, 0, 0)


class TestQuotaLedger:
    """Test cases for QuotaLedger."""

    def test_empty_ledger(self, ledger, now):
        assert ledger.get_daily_query_count(QUERY_TYPE_COMPETITOR, now) == 0
        assert ledger.remaining(QUERY_TYPE_COMPETITOR, now) == 100

    def test_sums_todays_rows_per_type(self, ledger, now):
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 4, now)
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 3, now + timedelta(minutes=5))
        ledger.log_query_usage(QUERY_TYPE_YOUTUBE_SEARCH, 2, now)

        assert ledger.get_daily_query_count(QUERY_TYPE_COMPETITOR, now) == 7
        assert ledger.get_daily_query_count(QUERY_TYPE_YOUTUBE_SEARCH, now) == 2
        assert ledger.remaining(QUERY_TYPE_COMPETITOR, now) == 93

    def test_rows_before_local_midnight_are_ignored(self, ledger, now):
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 50, now - timedelta(days=2))
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 4, now)

        assert ledger.get_daily_query_count(QUERY_TYPE_COMPETITOR, now) == 4

    def test_zero_usage_is_not_logged(self, ledger, store, now):
        assert ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 0, now) is None
        assert store.search_logs.count() == 0

    def test_log_rows_are_append_only(self, ledger, store, now):
        first = ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 4, now)
        second = ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 4, now)

        assert isinstance(first, SearchLog)
        assert first.log_id != second.log_id
        assert store.search_logs.count() == 2

    def test_usage_today_newest_first(self, ledger, now):
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 1, now - timedelta(minutes=30))
        ledger.log_query_usage(QUERY_TYPE_YOUTUBE_SEARCH, 2, now)

        logs = ledger.usage_today(now=now)

        assert [log.queries_used for log in logs] == [2, 1]

    def test_ensure_available_within_budget(self, ledger, now):
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 96, now)
        assert ledger.ensure_available(QUERY_TYPE_COMPETITOR, 4, now) == 96

    def test_ensure_available_over_budget(self, ledger, now):
        ledger.log_query_usage(QUERY_TYPE_COMPETITOR, 97, now)

        with pytest.raises(QuotaExceeded) as exc_info:
            ledger.ensure_available(QUERY_TYPE_COMPETITOR, 4, now)

        error = exc_info.value
        assert (error.query_type, error.used, error.needed, error.limit) == ('competitor', 97, 4, 100)
        assert 'competitor' in str(error)

    def test_custom_limits(self, store, now):
        ledger = QuotaLedger(store, {QUERY_TYPE_YOUTUBE_SEARCH: 1})

        ledger.log_query_usage(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)

        assert ledger.daily_limit(QUERY_TYPE_COMPETITOR) == 100
        with pytest.raises(QuotaExceeded):
            ledger.ensure_available(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)
