"""Refresh decisions for cached external data.

Each cached kind (competitor matches, videos, comments) is in one of three
states per entity:

    UNCHECKED  never fetched
    CACHED     at least one entry with expires_at > now
    STALE      fetched before, every entry expired

Whether a refresh is worth spending quota on depends only on that state, how
many days remain until the event and, for videos, whether the event appeared
today.
"""
import math
from datetime import datetime, timedelta
from enum import Enum

SECONDS_PER_DAY = 24 * 60 * 60

COMPETITOR_MAX_DAYS_AHEAD = 30
COMPETITOR_PRIORITY_DAYS = 14
VIDEO_MAX_DAYS_AHEAD = 30
VIDEO_PRIORITY_DAYS = 14
COMMENTS_MIN_DAYS = -1
COMMENTS_MAX_DAYS = 7

COMPETITOR_CACHE_TTL = timedelta(days=7)
VIDEO_CACHE_TTL = timedelta(hours=24)
COMMENTS_CACHE_TTL = timedelta(days=3)


class CacheState(Enum):
    UNCHECKED = 'unchecked'
    CACHED = 'cached'
    STALE = 'stale'


def resolve_cache_state(has_valid_entry: bool, has_any_entry: bool) -> CacheState:
    if has_valid_entry:
        return CacheState.CACHED
    if has_any_entry:
        return CacheState.STALE
    return CacheState.UNCHECKED


def days_until(event_date: datetime, now: datetime) -> int:
    """Whole days until the event, rounded up. Negative for past events."""
    return math.ceil((event_date - now).total_seconds() / SECONDS_PER_DAY)


def is_same_local_day(first: datetime, second: datetime) -> bool:
    return first.astimezone().date() == second.astimezone().date()


def competitor_refresh_due(state: CacheState, days: int) -> bool:
    """
    Decide whether to spend search quota on an event's competitor links.

    Events within two weeks are refreshed whenever the cache is cold. Events
    two to four weeks out get one search ever, later ones none.
    """
    if state is CacheState.CACHED:
        return False
    if days > COMPETITOR_MAX_DAYS_AHEAD:
        return False
    if days <= COMPETITOR_PRIORITY_DAYS:
        return True
    return state is CacheState.UNCHECKED


def video_refresh_due(state: CacheState, days: int, created_today: bool) -> bool:
    if state is CacheState.CACHED:
        return False
    if 0 <= days <= VIDEO_PRIORITY_DAYS:
        return True
    if created_today:
        return True
    return state is CacheState.UNCHECKED and days <= VIDEO_MAX_DAYS_AHEAD


def comments_refresh_due(state: CacheState, days: int) -> bool:
    """Comments only matter right before the event and the day after."""
    if state is CacheState.CACHED:
        return False
    return COMMENTS_MIN_DAYS <= days <= COMMENTS_MAX_DAYS
