"""AWS Lambda handler for the kids events sync and cache lookups."""
import dataclasses
import json
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from config import Settings
from processor.exceptions import FetchError, QuotaExceeded, SyncAlreadyRunning
from scraper.bravo_feed import BravoFeedClient
from scraper.competitor_search import CompetitorSearchClient, build_search_session
from scraper.youtube_client import YouTubeClient, build_youtube_resource
from storage.cache_store import CacheStore
from sync.competitor_refresh import CompetitorRefresher
from sync.event_reconciler import EventReconciler
from sync.orchestrator import SyncOrchestrator
from sync.quota_ledger import QuotaLedger
from sync.reporter import SyncReporter
from sync.run_lease import RunLease
from sync.youtube_refresh import YouTubeRefresher, get_embed_url, get_watch_url

# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

SCHEDULER_SOURCE = 'aws.events'
PROTECTED_ACTIONS = ('daily_sync', 'sync_events')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclasses.dataclass
class Services:
    """Components wired together for one invocation."""
    store: CacheStore
    reconciler: EventReconciler
    competitor_refresher: CompetitorRefresher
    youtube_refresher: YouTubeRefresher
    orchestrator: SyncOrchestrator


def build_services(settings: Settings, dynamodb=None) -> Services:
    """
    Instantiate every component from settings.

    Google clients are only built when their credentials are configured;
    the refreshers treat a missing client as "not configured".
    """
    store = CacheStore(settings.table_prefix, dynamodb)
    ledger = QuotaLedger(store, settings.daily_limits)

    search_client = None
    if settings.search_configured:
        session = build_search_session(settings.google_service_account_path)
        search_client = CompetitorSearchClient(
            settings.google_search_engine_id,
            session=session,
            api_key=None if settings.google_service_account_path else settings.google_api_key,
            timeout=settings.timeout_seconds
        )

    youtube_client = None
    if settings.youtube_configured:
        youtube_client = YouTubeClient(build_youtube_resource(
            settings.google_service_account_path, settings.google_api_key
        ))

    reconciler = EventReconciler(
        store, BravoFeedClient(url=settings.feed_url, timeout=settings.timeout_seconds)
    )
    competitor_refresher = CompetitorRefresher(store, ledger, search_client)
    youtube_refresher = YouTubeRefresher(
        store, ledger, youtube_client, primary_channel=settings.youtube_primary_channel
    )
    orchestrator = SyncOrchestrator(
        store, ledger, reconciler, competitor_refresher, youtube_refresher,
        reporter=SyncReporter(settings.report_email_from, settings.report_email_to),
        site_url=settings.site_url,
        max_video_searches=settings.max_video_searches_per_run,
        max_comment_videos=settings.max_comment_videos_per_run
    )
    return Services(store, reconciler, competitor_refresher, youtube_refresher, orchestrator)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body, default=_json_default, ensure_ascii=False)
    }


def _param(event: Dict[str, Any], name: str) -> Optional[str]:
    """Read a parameter from the payload, path parameters or query string."""
    for source in (event, event.get('pathParameters'), event.get('queryStringParameters')):
        if source and source.get(name):
            return str(source[name])
    return None


def check_authorization(event: Dict[str, Any], cron_secret: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Verify the shared secret on protected actions.

    Scheduled EventBridge invocations are trusted.

    Returns:
        An error response, or None when the caller is authorized
    """
    if event.get('source') == SCHEDULER_SOURCE:
        return None

    logger = logging.getLogger(__name__)
    if not cron_secret:
        logger.error("CRON_SECRET not configured")
        return _response(500, {'error': 'Cron secret not configured'})

    headers = {key.lower(): value for key, value in (event.get('headers') or {}).items()}
    if headers.get('authorization') != f"Bearer {cron_secret}":
        logger.warning("Unauthorized sync attempt")
        return _response(401, {'error': 'Unauthorized'})
    return None


def handle_daily_sync(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    stats = services.orchestrator.run_daily_sync()
    return 200, {'message': 'Sync completed successfully', 'statistics': stats}


def handle_sync_events(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    # Same lease as the daily sync
    with RunLease(services.store):
        result = services.reconciler.sync_events()
    return 200, {
        'message': 'Event sync completed',
        'statistics': {
            'events_total': result.total,
            'events_new': result.new,
            'events_updated': result.updated,
            'events_removed': result.removed,
        },
        'errors': result.errors
    }


def handle_status(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return 200, services.orchestrator.get_sync_status()


def handle_competitors(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    event_id = _param(event, 'event_id')
    if not event_id:
        return 400, {'error': 'Event ID is required'}

    record = services.store.events.find_unique({'external_id': event_id})
    if record is None:
        return 404, {'error': 'Event not found'}

    refresher = services.competitor_refresher
    cached = refresher.get_cached_matches(event_id)
    if cached:
        return 200, {
            'competitors': [_competitor_row(match) for match in cached],
            'from_cache': True,
            'checked_at': cached[0].checked_at
        }

    if refresher.search_client is None:
        return 200, {
            'competitors': [],
            'from_cache': False,
            'message': 'Competitor search not configured (credentials missing)'
        }

    try:
        matches = refresher.find_competitor_matches(record)
    except QuotaExceeded:
        return 200, {
            'competitors': [],
            'from_cache': False,
            'message': 'Daily search quota exceeded. Try again tomorrow.'
        }
    return 200, {
        'competitors': [_competitor_row(match) for match in matches],
        'from_cache': False,
        'checked_at': datetime.now().astimezone()
    }


def _competitor_row(match) -> Dict[str, Any]:
    return {'name': match.competitor_name, 'url': match.competitor_url, 'match_score': match.match_score}


def handle_videos(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    event_id = _param(event, 'event_id')
    if not event_id:
        return 400, {'error': 'Event ID is required'}

    record = services.store.events.find_unique({'external_id': event_id})
    if record is None:
        return 404, {'error': 'Event not found'}

    refresher = services.youtube_refresher
    message = None
    if refresher.youtube_client is None:
        videos = refresher.get_cached_videos(event_id)
        if not videos:
            message = 'YouTube API not configured'
    else:
        try:
            videos = refresher.find_event_videos(record)
        except QuotaExceeded:
            videos = []
            message = 'Daily YouTube quota exceeded. Try again tomorrow.'

    body = {
        'videos': [
            {
                'video_id': video.video_id,
                'title': video.title,
                'thumbnail_url': video.thumbnail_url,
                'channel_title': video.channel_title,
                'embed_url': get_embed_url(video.video_id),
                'watch_url': get_watch_url(video.video_id),
            }
            for video in videos
        ],
        'count': len(videos)
    }
    if message:
        body['message'] = message
    return 200, body


def handle_comments(services: Services, event: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    video_id = _param(event, 'video_id')
    if not video_id:
        return 400, {'error': 'Video ID is required'}

    refresher = services.youtube_refresher
    message = None
    if refresher.youtube_client is None:
        comments = refresher.get_cached_comments(video_id)
    else:
        try:
            comments = refresher.get_video_comments(video_id)
        except QuotaExceeded:
            comments = []
            message = 'Daily YouTube quota exceeded. Try again tomorrow.'

    threads = {}
    replies = []
    for comment in comments:
        if comment.is_reply:
            replies.append(comment)
        else:
            threads[comment.comment_id] = dict(dataclasses.asdict(comment), replies=[])
    for reply in replies:
        parent = threads.get(reply.parent_comment_id)
        if parent is not None:
            parent['replies'].append(reply)

    body = {
        'video_id': video_id,
        'total': len(comments),
        'top_level_count': len(threads),
        'reply_count': len(replies),
        'comments': list(threads.values())
    }
    if message:
        body['message'] = message
    return 200, body


ACTIONS: Dict[str, Callable[[Services, Dict[str, Any]], Tuple[int, Dict[str, Any]]]] = {
    'daily_sync': handle_daily_sync,
    'sync_events': handle_sync_events,
    'status': handle_status,
    'competitors': handle_competitors,
    'videos': handle_videos,
    'comments': handle_comments,
}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler.

    The action is taken from event['action'] and defaults to the daily sync,
    which is what the EventBridge schedule triggers.

    Args:
        event: EventBridge event or invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    event = event or {}
    settings = Settings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = _param(event, 'action') or 'daily_sync'
    logger.info(
        "Lambda execution started",
        extra={'action': action, 'table_prefix': settings.table_prefix}
    )

    handler = ACTIONS.get(action)
    if handler is None:
        return _response(400, {'error': f"Unknown action: {action}"})

    if action in PROTECTED_ACTIONS:
        denied = check_authorization(event, settings.cron_secret)
        if denied:
            return denied

    try:
        services = build_services(settings)
        status_code, body = handler(services, event)

    except SyncAlreadyRunning as e:
        logger.warning(f"Sync skipped: {e}")
        return _response(409, {'message': 'Sync already running', 'error': str(e)})

    except FetchError as e:
        duration = time.time() - start_time
        logger.error(
            f"Failed to fetch event feed after retries: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Failed to fetch event feed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': f"{action} failed",
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    body['duration_seconds'] = round(duration, 2)
    logger.info(
        "Lambda execution completed",
        extra={'action': action, 'status_code': status_code, 'duration_seconds': round(duration, 2)}
    )
    return _response(status_code, body)
