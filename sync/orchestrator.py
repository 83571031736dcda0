"""Daily sync run: event reconciliation followed by the three refresh passes."""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr

from processor.models import SyncStats
from storage.cache_store import CacheStore
from storage.serialization import format_timestamp
from sync.competitor_refresh import CompetitorRefresher
from sync.event_reconciler import EventReconciler
from sync.quota_ledger import QUERY_TYPE_COMPETITOR, QuotaLedger, local_midnight
from sync.reporter import SyncReporter
from sync.run_lease import RunLease
from sync.youtube_refresh import YouTubeRefresher, get_watch_url

logger = logging.getLogger(__name__)

DEFAULT_SITE_URL = 'https://kids.ticketsnow.co.il'
RECENT_SYNC_COUNT = 10


class SyncOrchestrator:
    """Runs the daily passes strictly in sequence under a run lease."""

    def __init__(self, store: CacheStore, ledger: QuotaLedger, reconciler: EventReconciler,
                 competitor_refresher: CompetitorRefresher, youtube_refresher: YouTubeRefresher,
                 reporter: Optional[SyncReporter] = None, lease: Optional[RunLease] = None,
                 site_url: str = DEFAULT_SITE_URL, max_video_searches: int = 50,
                 max_comment_videos: int = 100):
        """
        Initialize the orchestrator.

        Args:
            store: Cache store
            ledger: Quota ledger shared by every pass
            reconciler: Event feed reconciler
            competitor_refresher: Competitor link refresh pass
            youtube_refresher: Video and comment refresh passes
            reporter: Report sender, None to skip reports
            lease: Run lease (default: the daily sync lease)
            site_url: Public site URL used for event links in reports
            max_video_searches: Per-run cap for the video pass
            max_comment_videos: Per-run cap for the comments pass
        """
        self.store = store
        self.ledger = ledger
        self.reconciler = reconciler
        self.competitor_refresher = competitor_refresher
        self.youtube_refresher = youtube_refresher
        self.reporter = reporter
        self.lease = lease or RunLease(store)
        self.site_url = site_url.rstrip('/')
        self.max_video_searches = max_video_searches
        self.max_comment_videos = max_comment_videos

    def run_daily_sync(self, now: Optional[datetime] = None) -> SyncStats:
        """
        Run the full daily sync.

        Returns:
            SyncStats for the four passes

        Raises:
            SyncAlreadyRunning: If another run holds the lease
            Exception: Any pass failure, after an error report has been sent
        """
        now = now or datetime.now(timezone.utc)
        start_time = time.time()

        self.lease.acquire(now)
        try:
            logger.info("Starting daily sync")

            event_sync = self.reconciler.sync_events(now)
            logger.info(
                f"Event sync: {event_sync.new} new, {event_sync.updated} updated, "
                f"{event_sync.removed} removed"
            )

            competitor_search = self.competitor_refresher.process_competitor_search_queue(
                self.ledger.daily_limit(QUERY_TYPE_COMPETITOR), now
            )
            youtube_videos = self.youtube_refresher.process_youtube_video_queue(
                self.max_video_searches, now
            )
            youtube_comments = self.youtube_refresher.process_youtube_comments_queue(
                self.max_comment_videos, now
            )

            stats = SyncStats(
                event_sync=event_sync,
                competitor_search=competitor_search,
                youtube_videos=youtube_videos,
                youtube_comments=youtube_comments,
                duration_seconds=round(time.time() - start_time, 2)
            )
            logger.info(f"Daily sync completed in {stats.duration_seconds:.2f}s")

            self._send_report(stats, now=now)
            return stats

        except Exception as e:
            logger.error(f"Daily sync failed: {e}", exc_info=True)
            self._send_report(None, error=str(e), now=now)
            raise

        finally:
            self.lease.release()

    def _send_report(self, stats: Optional[SyncStats], error: Optional[str] = None,
                     now: Optional[datetime] = None) -> None:
        if self.reporter is None:
            return
        try:
            details = self.get_report_data(now) if error is None else None
            self.reporter.send_report(stats, details, error=error)
        except Exception as e:
            logger.error(f"Failed to send sync report: {e}", exc_info=True)

    def get_report_data(self, now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        """
        Collect what changed today for the sync report.

        Returns:
            Dict with new_events, top_matches, new_videos and top_comments rows
        """
        since = format_timestamp(local_midnight(now))
        event_names: Dict[str, str] = {}

        def event_name(event_id: str) -> str:
            if event_id not in event_names:
                event = self.store.events.find_unique({'external_id': event_id})
                event_names[event_id] = event.name if event else event_id
            return event_names[event_id]

        new_events = self.store.events.find_many(
            Attr('is_kids_event').eq(True) & Attr('created_at').gte(since),
            order_by='date', limit=20
        )
        top_matches = self.store.competitor_matches.find_many(
            Attr('checked_at').gte(since), order_by=[('match_score', True)], limit=10
        )
        new_videos = self.store.youtube_videos.find_many(
            Attr('checked_at').gte(since), order_by=[('checked_at', True)], limit=20
        )
        top_comments = self.store.video_comments.find_many(
            Attr('checked_at').gte(since), order_by=[('like_count', True)], limit=10
        )

        video_titles: Dict[str, str] = {}
        for comment in top_comments:
            if comment.video_id not in video_titles:
                video = self.store.youtube_videos.find_first(Attr('video_id').eq(comment.video_id))
                video_titles[comment.video_id] = video.title if video else comment.video_id

        return {
            'new_events': [
                {
                    'name': event.name,
                    'date': event.date.astimezone().strftime('%d/%m/%Y'),
                    'url': f"{self.site_url}/event/{event.slug}",
                }
                for event in new_events
            ],
            'top_matches': [
                {
                    'event': event_name(match.event_id),
                    'competitor': match.competitor_name,
                    'url': match.competitor_url,
                    'score': match.match_score,
                }
                for match in top_matches
            ],
            'new_videos': [
                {
                    'event': event_name(video.event_id),
                    'title': video.title,
                    'url': get_watch_url(video.video_id),
                    'channel': video.channel_title,
                }
                for video in new_videos
            ],
            'top_comments': [
                {
                    'video': video_titles[comment.video_id],
                    'author': comment.author_name,
                    'text': comment.text_display,
                    'likes': comment.like_count,
                }
                for comment in top_comments
            ],
        }

    def get_sync_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Monitoring snapshot: recent syncs, quota usage and cache counts."""
        now = now or datetime.now(timezone.utc)

        recent_syncs = self.store.sync_logs.find_many(
            order_by=[('synced_at', True)], limit=RECENT_SYNC_COUNT
        )
        successful = sum(1 for sync in recent_syncs if sync.status == 'success')
        success_rate = successful / len(recent_syncs) * 100 if recent_syncs else 0.0

        quota = {}
        for query_type in self.ledger.daily_limits:
            used = self.ledger.get_daily_query_count(query_type, now)
            limit = self.ledger.daily_limit(query_type)
            quota[query_type] = {
                'used': used,
                'limit': limit,
                'remaining': max(limit - used, 0),
                'quota_used': f"{used / limit * 100:.1f}%" if limit else '0.0%',
            }

        last_sync = recent_syncs[0] if recent_syncs else None
        now_ts = format_timestamp(now)

        return {
            'system_status': 'healthy',
            'timestamp': now.isoformat(),
            'last_sync': {
                'synced_at': last_sync.synced_at.isoformat(),
                'status': last_sync.status,
                'events_total': last_sync.events_total,
                'events_new': last_sync.events_new,
                'events_updated': last_sync.events_updated,
                'events_removed': last_sync.events_removed,
                'error_message': last_sync.error_message,
            } if last_sync else None,
            'database': {
                'total_events': self.store.events.count(Attr('is_kids_event').eq(True)),
                'upcoming_events': self.store.events.count(
                    Attr('is_kids_event').eq(True) & Attr('date').gte(now_ts)
                ),
                'competitor_matches_cached': self.store.competitor_matches.count(
                    Attr('expires_at').gt(now_ts)
                ),
            },
            'quota': quota,
            'metrics': {
                'success_rate': f"{success_rate:.1f}%",
                'last_10_syncs': len(recent_syncs),
                'successful_syncs': successful,
                'failed_syncs': len(recent_syncs) - successful,
            },
            'recent_activity': {
                'syncs': [
                    {
                        'synced_at': sync.synced_at.isoformat(),
                        'status': sync.status,
                        'events_new': sync.events_new,
                        'events_updated': sync.events_updated,
                        'error_message': sync.error_message,
                    }
                    for sync in recent_syncs
                ],
                'search_logs': [
                    {
                        'date': log.date.isoformat(),
                        'query_type': log.query_type,
                        'queries_used': log.queries_used,
                    }
                    for log in self.ledger.usage_today(now=now)
                ],
            },
        }
