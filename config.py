"""Runtime settings read from Lambda environment variables."""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from scraper.bravo_feed import BravoFeedClient
from sync.orchestrator import DEFAULT_SITE_URL
from sync.quota_ledger import (
    DEFAULT_DAILY_LIMITS,
    QUERY_TYPE_COMPETITOR,
    QUERY_TYPE_YOUTUBE_COMMENTS,
    QUERY_TYPE_YOUTUBE_SEARCH,
)


def _int_env(environ: Dict[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{value}'")


@dataclass
class Settings:
    table_prefix: str = 'kids-events-'
    feed_url: str = BravoFeedClient.DEFAULT_URL
    timeout_seconds: int = 10
    log_level: str = 'INFO'
    cron_secret: Optional[str] = None
    google_service_account_path: Optional[str] = None
    google_api_key: Optional[str] = None
    google_search_engine_id: Optional[str] = None
    youtube_primary_channel: Optional[str] = None
    daily_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_DAILY_LIMITS))
    max_video_searches_per_run: int = 50
    max_comment_videos_per_run: int = 100
    report_email_from: Optional[str] = None
    report_email_to: List[str] = field(default_factory=list)
    site_url: str = DEFAULT_SITE_URL

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        env = os.environ if environ is None else environ
        return cls(
            table_prefix=env.get('TABLE_PREFIX', 'kids-events-'),
            feed_url=env.get('BRAVO_JSON_URL') or BravoFeedClient.DEFAULT_URL,
            timeout_seconds=_int_env(env, 'TIMEOUT_SECONDS', 10),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            cron_secret=env.get('CRON_SECRET') or None,
            google_service_account_path=env.get('GOOGLE_SERVICE_ACCOUNT_PATH') or None,
            google_api_key=env.get('GOOGLE_API_KEY') or None,
            google_search_engine_id=env.get('GOOGLE_SEARCH_ENGINE_ID') or None,
            youtube_primary_channel=env.get('YOUTUBE_PRIMARY_CHANNEL') or None,
            daily_limits={
                QUERY_TYPE_COMPETITOR: _int_env(
                    env, 'MAX_DAILY_COMPETITOR_QUERIES',
                    DEFAULT_DAILY_LIMITS[QUERY_TYPE_COMPETITOR]
                ),
                QUERY_TYPE_YOUTUBE_SEARCH: _int_env(
                    env, 'MAX_DAILY_YOUTUBE_SEARCHES',
                    DEFAULT_DAILY_LIMITS[QUERY_TYPE_YOUTUBE_SEARCH]
                ),
                QUERY_TYPE_YOUTUBE_COMMENTS: _int_env(
                    env, 'MAX_DAILY_YOUTUBE_COMMENT_PULLS',
                    DEFAULT_DAILY_LIMITS[QUERY_TYPE_YOUTUBE_COMMENTS]
                ),
            },
            max_video_searches_per_run=_int_env(env, 'MAX_VIDEO_SEARCHES_PER_RUN', 50),
            max_comment_videos_per_run=_int_env(env, 'MAX_COMMENT_VIDEOS_PER_RUN', 100),
            report_email_from=env.get('REPORT_EMAIL_FROM') or None,
            report_email_to=[
                address.strip() for address in env.get('REPORT_EMAIL_TO', '').split(',')
                if address.strip()
            ],
            site_url=env.get('SITE_URL') or DEFAULT_SITE_URL,
        )

    @property
    def youtube_configured(self) -> bool:
        return bool(self.google_service_account_path or self.google_api_key)

    @property
    def search_configured(self) -> bool:
        return bool(self.google_search_engine_id and self.youtube_configured)
