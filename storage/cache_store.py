"""Cache store: one DynamoDB table per record kind."""
import logging
from typing import List

import boto3
from boto3.dynamodb.conditions import Attr

from processor.models import (
    CompetitorMatch,
    Event,
    SearchLog,
    SyncLease,
    SyncLog,
    VideoComment,
    YouTubeVideo,
)
from storage.dynamodb_manager import DynamoDBTable

logger = logging.getLogger(__name__)

# kind -> (model, key fields)
TABLE_SCHEMAS = {
    'events': (Event, ('external_id',)),
    'competitor-matches': (CompetitorMatch, ('event_id', 'competitor_name')),
    'youtube-videos': (YouTubeVideo, ('event_id', 'video_id')),
    'video-comments': (VideoComment, ('comment_id',)),
    'search-logs': (SearchLog, ('log_id',)),
    'sync-logs': (SyncLog, ('log_id',)),
    'sync-leases': (SyncLease, ('lease_name',)),
}


class CacheStore:
    """Persisted events plus the cached external data hanging off them."""

    def __init__(self, table_prefix: str = 'kids-events-', dynamodb=None):
        """
        Initialize table references.

        Args:
            table_prefix: Prefix prepended to every table name
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_prefix = table_prefix
        self.dynamodb = dynamodb or boto3.resource('dynamodb')

        def table(kind):
            model, key_fields = TABLE_SCHEMAS[kind]
            return DynamoDBTable(
                f"{table_prefix}{kind}", model, key_fields, dynamodb=self.dynamodb
            )

        self.events = table('events')
        self.competitor_matches = table('competitor-matches')
        self.youtube_videos = table('youtube-videos')
        self.video_comments = table('video-comments')
        self.search_logs = table('search-logs')
        self.sync_logs = table('sync-logs')
        self.sync_leases = table('sync-leases')

    def delete_events(self, external_ids: List[str]) -> int:
        """
        Delete events and the cached data that belongs to them.

        Comments are removed through the deleted events' videos.

        Returns:
            Count of deleted events
        """
        if not external_ids:
            return 0

        deleted = 0
        for external_id in external_ids:
            videos = self.youtube_videos.find_many(Attr('event_id').eq(external_id))
            for video in videos:
                self.video_comments.delete_many(Attr('video_id').eq(video.video_id))
            self.youtube_videos.delete_many(Attr('event_id').eq(external_id))
            self.competitor_matches.delete_many(Attr('event_id').eq(external_id))

        # IN conditions are limited to 100 operands
        for i in range(0, len(external_ids), 100):
            chunk = external_ids[i:i + 100]
            deleted += self.events.delete_many(Attr('external_id').is_in(chunk))

        logger.info(f"Deleted {deleted} events with their cached data")
        return deleted


def create_tables(table_prefix: str = 'kids-events-', dynamodb=None) -> None:
    """Create every cache store table with on-demand billing."""
    dynamodb = dynamodb or boto3.resource('dynamodb')

    for kind, (_, key_fields) in TABLE_SCHEMAS.items():
        key_schema = [{'AttributeName': key_fields[0], 'KeyType': 'HASH'}]
        attributes = [{'AttributeName': key_fields[0], 'AttributeType': 'S'}]
        if len(key_fields) > 1:
            key_schema.append({'AttributeName': key_fields[1], 'KeyType': 'RANGE'})
            attributes.append({'AttributeName': key_fields[1], 'AttributeType': 'S'})

        table = dynamodb.create_table(
            TableName=f"{table_prefix}{kind}",
            KeySchema=key_schema,
            AttributeDefinitions=attributes,
            BillingMode='PAY_PER_REQUEST'
        )
        table.wait_until_exists()
        logger.info(f"Created table {table.name}")
