"""Data models for event sync and external data caching."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Event:
    """Kids event as persisted locally, keyed by the feed's external ID."""
    external_id: str
    name: str
    slug: str
    category: str
    date: datetime
    venue: str
    city: str
    ticket_url: str
    description: Optional[str] = None
    time: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    image_url: Optional[str] = None
    performer_name: Optional[str] = None
    is_kids_event: bool = True
    last_synced: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CompetitorMatch:
    """Cached link to the same event on a competitor ticketing site."""
    event_id: str
    competitor_name: str
    competitor_url: str
    match_score: float
    checked_at: datetime
    expires_at: datetime


@dataclass
class YouTubeVideo:
    """Cached preview video for an event."""
    event_id: str
    video_id: str
    title: str
    thumbnail_url: str
    channel_title: str
    checked_at: datetime
    expires_at: datetime


@dataclass
class VideoComment:
    """Cached YouTube comment. Replies point at their thread by comment ID."""
    comment_id: str
    video_id: str
    author_name: str
    text_display: str
    like_count: int
    published_at: datetime
    checked_at: datetime
    expires_at: datetime
    author_channel_id: Optional[str] = None
    author_profile_url: Optional[str] = None
    is_reply: bool = False
    parent_comment_id: Optional[str] = None


@dataclass
class SearchLog:
    """One batch of external queries issued for a query type."""
    log_id: str
    date: datetime
    query_type: str
    queries_used: int


@dataclass
class SyncLog:
    """Outcome of one event sync run."""
    log_id: str
    status: str
    events_total: int
    events_new: int
    events_updated: int
    events_removed: int
    synced_at: datetime
    error_message: Optional[str] = None


@dataclass
class SyncLease:
    """Mutual-exclusion record held for the duration of a sync run."""
    lease_name: str
    owner: str
    acquired_at: datetime
    expires_at: datetime


@dataclass
class SearchResult:
    """Single site-restricted web search hit."""
    title: str
    snippet: str
    link: str


@dataclass
class VideoResult:
    """Single video search hit."""
    video_id: str
    title: str
    thumbnail_url: str
    channel_title: str


@dataclass
class SyncResult:
    """Result of event reconciliation."""
    total: int = 0
    new: int = 0
    updated: int = 0
    removed: int = 0
    status: str = 'success'
    error_message: Optional[str] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class CompetitorQueueResult:
    processed: int = 0
    queries_used: int = 0
    remaining: int = 0
    matches_found: int = 0


@dataclass
class VideoQueueResult:
    events_processed: int = 0
    videos_found: int = 0
    cache_hits: int = 0


@dataclass
class CommentQueueResult:
    videos_processed: int = 0
    comments_fetched: int = 0
    cache_hits: int = 0


@dataclass
class SyncStats:
    """Aggregate counts for a full daily sync."""
    event_sync: SyncResult
    competitor_search: CompetitorQueueResult
    youtube_videos: VideoQueueResult
    youtube_comments: CommentQueueResult
    duration_seconds: float = 0.0
