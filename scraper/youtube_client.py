"""YouTube Data API access for event preview videos and comments."""
import logging
from typing import Any, Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from google.oauth2 import service_account

from processor.exceptions import QuotaExceeded
from processor.models import VideoResult

logger = logging.getLogger(__name__)

YOUTUBE_SCOPES = ['https://www.googleapis.com/auth/youtube.readonly']
QUOTA_REASONS = ('quotaExceeded', 'dailyLimitExceeded', 'rateLimitExceeded')


def build_youtube_resource(service_account_path: Optional[str] = None,
                           api_key: Optional[str] = None):
    """
    Build an authenticated YouTube Data API v3 resource.

    Raises:
        ValueError: If neither credentials nor an API key are given
    """
    if service_account_path:
        credentials = service_account.Credentials.from_service_account_file(
            service_account_path, scopes=YOUTUBE_SCOPES
        )
        return build('youtube', 'v3', credentials=credentials, cache_discovery=False)
    if api_key:
        return build('youtube', 'v3', developerKey=api_key, cache_discovery=False)
    raise ValueError("YouTube credentials not configured")


def _error_reason(error: HttpError) -> str:
    try:
        return error.error_details[0].get('reason', '')
    except (AttributeError, IndexError, TypeError):
        return ''


class YouTubeClient:
    """Thin wrapper around the YouTube resource with quota error mapping."""

    SEARCH_RESULTS = 5
    COMMENT_THREADS = 10

    def __init__(self, youtube):
        """
        Args:
            youtube: googleapiclient resource for the youtube v3 API
        """
        self.youtube = youtube
        self._channel_ids: Dict[str, Optional[str]] = {}

    def _execute(self, request, query_type: str) -> Dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            if e.resp.status == 429 or _error_reason(e) in QUOTA_REASONS:
                raise QuotaExceeded(query_type, message=f"YouTube API quota exceeded: {e}") from e
            raise

    def resolve_channel_id(self, handle: str) -> Optional[str]:
        """
        Resolve a channel handle (with or without @) to a channel ID.

        Results are memoized for the lifetime of the client.
        """
        handle = handle.strip().lstrip('@')
        if handle in self._channel_ids:
            return self._channel_ids[handle]

        response = self._execute(
            self.youtube.channels().list(part='id', forHandle=handle),
            'youtube_search'
        )
        items = response.get('items') or []
        channel_id = items[0]['id'] if items else None

        if channel_id:
            logger.debug(f"Resolved handle '{handle}' to channel ID: {channel_id}")
        else:
            logger.warning(f"Could not resolve channel handle: {handle}")
        self._channel_ids[handle] = channel_id
        return channel_id

    def search_videos(self, query: str, channel_id: Optional[str] = None) -> List[VideoResult]:
        """
        Search embeddable, medium-length videos.

        Args:
            query: Search terms
            channel_id: Restrict the search to this channel

        Returns:
            Up to 5 videos
        """
        params = {
            'part': 'snippet',
            'q': query,
            'type': 'video',
            'maxResults': self.SEARCH_RESULTS,
            'videoEmbeddable': 'true',
            'relevanceLanguage': 'he',
            'safeSearch': 'strict',
        }
        if channel_id:
            params['channelId'] = channel_id
        else:
            params['videoDuration'] = 'medium'

        response = self._execute(self.youtube.search().list(**params), 'youtube_search')

        videos = []
        for item in response.get('items') or []:
            video_id = (item.get('id') or {}).get('videoId')
            if not video_id:
                continue
            snippet = item.get('snippet') or {}
            thumbnails = snippet.get('thumbnails') or {}
            videos.append(VideoResult(
                video_id=video_id,
                title=snippet.get('title') or '',
                thumbnail_url=(thumbnails.get('medium') or {}).get('url') or '',
                channel_title=snippet.get('channelTitle') or ''
            ))
        return videos

    def fetch_comment_threads(self, video_id: str) -> List[Dict[str, Any]]:
        """
        Fetch the most relevant top-level comment threads with their replies.

        Returns:
            Raw commentThread resources, empty when comments are disabled
        """
        request = self.youtube.commentThreads().list(
            part='snippet,replies',
            videoId=video_id,
            maxResults=self.COMMENT_THREADS,
            order='relevance',
            textFormat='html'
        )
        try:
            response = self._execute(request, 'youtube_comments')
        except HttpError as e:
            if e.resp.status == 403 and _error_reason(e) == 'commentsDisabled':
                logger.debug(f"Comments disabled for video {video_id}")
                return []
            raise

        return response.get('items') or []
