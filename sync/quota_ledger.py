"""Daily external query budget backed by append-only search log rows."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from boto3.dynamodb.conditions import Attr

from processor.exceptions import QuotaExceeded
from processor.models import SearchLog
from storage.cache_store import CacheStore
from storage.serialization import format_timestamp

logger = logging.getLogger(__name__)

QUERY_TYPE_COMPETITOR = 'competitor'
QUERY_TYPE_YOUTUBE_SEARCH = 'youtube_search'
QUERY_TYPE_YOUTUBE_COMMENTS = 'youtube_comments'

DEFAULT_DAILY_LIMITS = {
    QUERY_TYPE_COMPETITOR: 100,
    QUERY_TYPE_YOUTUBE_SEARCH: 90,
    QUERY_TYPE_YOUTUBE_COMMENTS: 2000,
}


def local_midnight(now: Optional[datetime] = None) -> datetime:
    """Start of the current local day as an aware datetime."""
    local_now = (now or datetime.now(timezone.utc)).astimezone()
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0)


class QuotaLedger:
    """
    Tracks external queries consumed per day and query type.

    Usage is never kept as a counter: every batch of queries inserts a log
    row and the daily figure is the sum of today's rows, so it resets at
    local midnight without any explicit reset.
    """

    def __init__(self, store: CacheStore, daily_limits: Optional[Dict[str, int]] = None):
        self.store = store
        self.daily_limits = dict(DEFAULT_DAILY_LIMITS)
        if daily_limits:
            self.daily_limits.update(daily_limits)

    def daily_limit(self, query_type: str) -> int:
        return self.daily_limits[query_type]

    def usage_today(self, query_type: Optional[str] = None,
                    now: Optional[datetime] = None) -> List[SearchLog]:
        """Today's log rows, newest first, optionally for a single query type."""
        condition = Attr('date').gte(format_timestamp(local_midnight(now)))
        if query_type:
            condition = condition & Attr('query_type').eq(query_type)
        return self.store.search_logs.find_many(condition, order_by=[('date', True)])

    def get_daily_query_count(self, query_type: str, now: Optional[datetime] = None) -> int:
        """Sum of queries logged for query_type since local midnight."""
        return sum(log.queries_used for log in self.usage_today(query_type, now))

    def remaining(self, query_type: str, now: Optional[datetime] = None) -> int:
        return max(self.daily_limit(query_type) - self.get_daily_query_count(query_type, now), 0)

    def ensure_available(self, query_type: str, needed: int,
                         now: Optional[datetime] = None) -> int:
        """
        Check that needed queries still fit into today's budget.

        Args:
            query_type: Query type to check
            needed: Number of queries about to be issued

        Returns:
            Queries used today so far

        Raises:
            QuotaExceeded: If used + needed exceeds the daily limit
        """
        used = self.get_daily_query_count(query_type, now)
        limit = self.daily_limit(query_type)
        if used + needed > limit:
            logger.warning(
                f"Daily {query_type} quota would be exceeded: "
                f"{used} + {needed} > {limit}"
            )
            raise QuotaExceeded(query_type, used=used, needed=needed, limit=limit)
        return used

    def log_query_usage(self, query_type: str, count: int,
                        now: Optional[datetime] = None) -> Optional[SearchLog]:
        """Append a usage row. Zero counts are not logged."""
        if count <= 0:
            return None

        entry = SearchLog(
            log_id=str(uuid.uuid4()),
            date=now or datetime.now(timezone.utc),
            query_type=query_type,
            queries_used=count
        )
        self.store.search_logs.create(entry)
        logger.debug(f"Logged {count} {query_type} queries")
        return entry
