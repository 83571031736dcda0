"""YouTube preview video and comment refresh."""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.exceptions import QuotaExceeded
from processor.match_scorer import filter_relevant_videos
from processor.models import (
    CommentQueueResult,
    Event,
    VideoComment,
    VideoQueueResult,
    VideoResult,
    YouTubeVideo,
)
from processor.refresh_policy import (
    COMMENTS_CACHE_TTL,
    VIDEO_CACHE_TTL,
    VIDEO_MAX_DAYS_AHEAD,
    CacheState,
    comments_refresh_due,
    days_until,
    is_same_local_day,
    resolve_cache_state,
    video_refresh_due,
)
from scraper.youtube_client import YouTubeClient
from storage.cache_store import CacheStore
from storage.dynamodb_manager import DynamoDBTable
from storage.serialization import format_timestamp
from sync.quota_ledger import (
    QUERY_TYPE_YOUTUBE_COMMENTS,
    QUERY_TYPE_YOUTUBE_SEARCH,
    QuotaLedger,
)

logger = logging.getLogger(__name__)

SEARCH_QUALIFIER = 'הצגה ילדים'

# Top-level first, then most liked, then newest
COMMENT_ORDER = [('is_reply', False), ('like_count', True), ('published_at', True)]


def get_embed_url(video_id: str) -> str:
    return f"https://www.youtube.com/embed/{video_id}"


def get_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def build_search_query(event: Event) -> str:
    return ' '.join(part for part in (event.name, event.performer_name, SEARCH_QUALIFIER) if part)


def _parse_published(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Could not parse comment timestamp: {value}")
        return default


def _cache_state(table: DynamoDBTable, attribute: str, value: str, now: datetime) -> CacheState:
    has_valid = table.count(
        Attr(attribute).eq(value) & Attr('expires_at').gt(format_timestamp(now))
    ) > 0
    has_any = has_valid or table.count(Attr(attribute).eq(value)) > 0
    return resolve_cache_state(has_valid, has_any)


class YouTubeRefresher:
    """Finds preview videos for events and pulls their comments."""

    def __init__(self, store: CacheStore, ledger: QuotaLedger,
                 youtube_client: Optional[YouTubeClient],
                 primary_channel: Optional[str] = None, request_delay: float = 0.1):
        """
        Args:
            store: Cache store
            ledger: Quota ledger shared by every pass
            youtube_client: YouTube API client, None when not configured
            primary_channel: Curated channel handle searched before the open search
            request_delay: Pause between entities in seconds
        """
        self.store = store
        self.ledger = ledger
        self.youtube_client = youtube_client
        self.primary_channel = primary_channel
        self.request_delay = request_delay
        self._channel_id: Optional[str] = None
        self._channel_resolved = False

    def _require_client(self) -> YouTubeClient:
        if self.youtube_client is None:
            raise ValueError("YouTube API not configured")
        return self.youtube_client

    # Videos

    def get_cached_videos(self, event_id: str,
                          now: Optional[datetime] = None) -> List[YouTubeVideo]:
        now = now or datetime.now(timezone.utc)
        return self.store.youtube_videos.find_many(
            Attr('event_id').eq(event_id) & Attr('expires_at').gt(format_timestamp(now))
        )

    def should_search_videos(self, event: Event, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        state = _cache_state(self.store.youtube_videos, 'event_id', event.external_id, now)
        created_today = event.created_at is not None and is_same_local_day(event.created_at, now)
        return video_refresh_due(state, days_until(event.date, now), created_today)

    def find_event_videos(self, event: Event,
                          now: Optional[datetime] = None) -> List[YouTubeVideo]:
        """
        Return cached videos for an event, or search YouTube for new ones.

        The primary channel is searched first; the open search only runs when
        the channel has nothing for the query.

        Raises:
            QuotaExceeded: If the daily search budget is spent
        """
        videos, _ = self._find_videos(event, now or datetime.now(timezone.utc))
        return videos

    def _find_videos(self, event: Event, now: datetime) -> Tuple[List[YouTubeVideo], bool]:
        cached = self.get_cached_videos(event.external_id, now)
        if cached:
            logger.info(f"Using cached YouTube results for event {event.external_id}")
            return cached, True

        client = self._require_client()
        self.ledger.ensure_available(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)

        query = build_search_query(event)
        logger.info(f"Searching YouTube for: {query}")

        results = []
        channel_id = self._resolve_primary_channel(client, now)
        if channel_id:
            results = self._search(client, now, query, channel_id=channel_id)
            logger.debug(f"Primary channel returned {len(results)} videos")
        if not results:
            results = self._search(client, now, query)

        relevant = filter_relevant_videos(results, event)
        logger.info(f"Found {len(relevant)} relevant videos ({len(results)} total)")

        videos = [
            YouTubeVideo(
                event_id=event.external_id,
                video_id=result.video_id,
                title=result.title,
                thumbnail_url=result.thumbnail_url,
                channel_title=result.channel_title,
                checked_at=now,
                expires_at=now + VIDEO_CACHE_TTL
            )
            for result in relevant
        ]
        for video in videos:
            fields = {
                'title': video.title,
                'thumbnail_url': video.thumbnail_url,
                'channel_title': video.channel_title,
                'checked_at': video.checked_at,
                'expires_at': video.expires_at,
            }
            try:
                self.store.youtube_videos.upsert(
                    {'event_id': video.event_id, 'video_id': video.video_id}, fields, fields
                )
            except ClientError as e:
                logger.error(f"Error caching YouTube video: {e}")
        return videos, False

    def _resolve_primary_channel(self, client: YouTubeClient, now: datetime) -> Optional[str]:
        """Resolve the primary channel handle once per refresher, logging the lookup."""
        if not self.primary_channel or self._channel_resolved:
            return self._channel_id

        self.ledger.ensure_available(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)
        try:
            self._channel_id = client.resolve_channel_id(self.primary_channel)
            self._channel_resolved = True
        finally:
            self.ledger.log_query_usage(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)
        return self._channel_id

    def _search(self, client: YouTubeClient, now: datetime, query: str,
                channel_id: Optional[str] = None) -> List[VideoResult]:
        # One ledger check and one log row per API call
        self.ledger.ensure_available(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)
        try:
            if channel_id:
                return client.search_videos(query, channel_id=channel_id)
            return client.search_videos(query)
        finally:
            self.ledger.log_query_usage(QUERY_TYPE_YOUTUBE_SEARCH, 1, now)

    def process_youtube_video_queue(self, max_searches: int = 50,
                                    now: Optional[datetime] = None) -> VideoQueueResult:
        """
        Search videos for upcoming events, soonest first.

        Args:
            max_searches: Maximum events searched in this run

        Returns:
            VideoQueueResult with events processed, videos found and cache hits
        """
        now = now or datetime.now(timezone.utc)
        result = VideoQueueResult()
        logger.info(f"Processing YouTube video search queue (max {max_searches} searches)")

        events = self.store.events.find_many(
            Attr('is_kids_event').eq(True) & Attr('date').between(
                format_timestamp(now),
                format_timestamp(now + timedelta(days=VIDEO_MAX_DAYS_AHEAD))
            ),
            order_by='date'
        )

        for event in events:
            if result.events_processed >= max_searches:
                break

            try:
                if not self.should_search_videos(event, now):
                    result.cache_hits += 1
                    continue

                videos, from_cache = self._find_videos(event, now)
                if from_cache:
                    result.cache_hits += 1
                    continue
                result.videos_found += len(videos)
                result.events_processed += 1
                logger.info(f"Event '{event.name}': found {len(videos)} videos")
                time.sleep(self.request_delay)
            except QuotaExceeded as e:
                logger.warning(f"Stopping video queue: {e}")
                break
            except Exception as e:
                logger.error(f"Error processing event {event.external_id}: {e}", exc_info=True)

        logger.info(
            f"YouTube video search: {result.events_processed} events, "
            f"{result.videos_found} videos, {result.cache_hits} cache hits"
        )
        return result

    # Comments

    def get_cached_comments(self, video_id: str,
                            now: Optional[datetime] = None) -> List[VideoComment]:
        now = now or datetime.now(timezone.utc)
        return self.store.video_comments.find_many(
            Attr('video_id').eq(video_id) & Attr('expires_at').gt(format_timestamp(now)),
            order_by=COMMENT_ORDER
        )

    def should_pull_comments(self, video: YouTubeVideo, event_date: datetime,
                             now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        state = _cache_state(self.store.video_comments, 'video_id', video.video_id, now)
        return comments_refresh_due(state, days_until(event_date, now))

    def get_video_comments(self, video_id: str,
                           now: Optional[datetime] = None) -> List[VideoComment]:
        """
        Return cached comments for a video, or fetch them from YouTube.

        Replies are flattened into the same list with is_reply set and
        parent_comment_id pointing at their thread.

        Raises:
            QuotaExceeded: If the daily comment budget is spent
        """
        comments, _ = self._fetch_comments(video_id, now or datetime.now(timezone.utc))
        return comments

    def _fetch_comments(self, video_id: str, now: datetime) -> Tuple[List[VideoComment], bool]:
        cached = self.get_cached_comments(video_id, now)
        if cached:
            logger.info(f"Using cached comments for video {video_id}")
            return cached, True

        client = self._require_client()
        self.ledger.ensure_available(QUERY_TYPE_YOUTUBE_COMMENTS, 1, now)

        try:
            threads = client.fetch_comment_threads(video_id)
        finally:
            self.ledger.log_query_usage(QUERY_TYPE_YOUTUBE_COMMENTS, 1, now)

        comments = []
        for thread in threads:
            top_level = (thread.get('snippet') or {}).get('topLevelComment')
            if not top_level:
                continue
            comments.append(self._to_comment(top_level, video_id, now))
            for reply in (thread.get('replies') or {}).get('comments') or []:
                comments.append(
                    self._to_comment(reply, video_id, now, parent_id=top_level.get('id'))
                )

        for comment in comments:
            try:
                self.store.video_comments.upsert(
                    {'comment_id': comment.comment_id},
                    {'video_id': comment.video_id},
                    {
                        name: value for name, value in vars(comment).items()
                        if name not in ('comment_id', 'video_id')
                    }
                )
            except ClientError as e:
                logger.error(f"Error caching comment {comment.comment_id}: {e}")

        logger.info(f"Fetched {len(comments)} comments for video {video_id}")
        comments.sort(key=lambda c: c.published_at, reverse=True)
        comments.sort(key=lambda c: c.like_count, reverse=True)
        comments.sort(key=lambda c: c.is_reply)
        return comments, False

    def _to_comment(self, resource: Dict[str, Any], video_id: str, now: datetime,
                    parent_id: Optional[str] = None) -> VideoComment:
        snippet = resource.get('snippet') or {}
        return VideoComment(
            comment_id=resource['id'],
            video_id=video_id,
            author_name=snippet.get('authorDisplayName') or '',
            author_channel_id=(snippet.get('authorChannelId') or {}).get('value'),
            author_profile_url=snippet.get('authorProfileImageUrl'),
            text_display=snippet.get('textDisplay') or '',
            like_count=int(snippet.get('likeCount') or 0),
            published_at=_parse_published(snippet.get('publishedAt'), now),
            is_reply=parent_id is not None,
            parent_comment_id=parent_id,
            checked_at=now,
            expires_at=now + COMMENTS_CACHE_TTL
        )

    def process_youtube_comments_queue(self, max_videos: int = 100,
                                       now: Optional[datetime] = None) -> CommentQueueResult:
        """
        Pull comments for videos of events from yesterday to a week ahead.

        Args:
            max_videos: Maximum videos pulled in this run

        Returns:
            CommentQueueResult with videos processed, comments fetched and cache hits
        """
        now = now or datetime.now(timezone.utc)
        result = CommentQueueResult()
        logger.info(f"Processing YouTube comments queue (max {max_videos} videos)")

        events = self.store.events.find_many(
            Attr('is_kids_event').eq(True) & Attr('date').between(
                format_timestamp(now - timedelta(days=1)),
                format_timestamp(now + timedelta(days=7))
            ),
            order_by='date'
        )

        for event in events:
            if result.videos_processed >= max_videos:
                break

            for video in self.store.youtube_videos.find_many(Attr('event_id').eq(event.external_id)):
                if result.videos_processed >= max_videos:
                    break

                try:
                    if not self.should_pull_comments(video, event.date, now):
                        result.cache_hits += 1
                        continue

                    comments, from_cache = self._fetch_comments(video.video_id, now)
                    if from_cache:
                        result.cache_hits += 1
                        continue
                    result.comments_fetched += len(comments)
                    result.videos_processed += 1
                    logger.info(f"Video '{video.title}': pulled {len(comments)} comments")
                    time.sleep(self.request_delay)
                except QuotaExceeded as e:
                    logger.warning(f"Stopping comments queue: {e}")
                    return self._log_comment_result(result)
                except Exception as e:
                    logger.error(
                        f"Error pulling comments for video {video.video_id}: {e}", exc_info=True
                    )

        return self._log_comment_result(result)

    def _log_comment_result(self, result: CommentQueueResult) -> CommentQueueResult:
        logger.info(
            f"YouTube comments: {result.videos_processed} videos, "
            f"{result.comments_fetched} comments, {result.cache_hits} cache hits"
        )
        return result
