"""Plain-text daily sync report sent through Amazon SES."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from processor.models import SyncStats

logger = logging.getLogger(__name__)


class SyncReporter:
    """Renders sync statistics and mails them to the operators."""

    def __init__(self, sender: Optional[str], recipients: List[str], ses_client=None):
        """
        Args:
            sender: Verified SES sender address. Reports are disabled without one.
            recipients: Report recipients
            ses_client: Optional boto3 SES client to share
        """
        self.sender = sender
        self.recipients = [address for address in recipients if address]
        self._ses_client = ses_client

    @property
    def enabled(self) -> bool:
        return bool(self.sender and self.recipients)

    @property
    def ses_client(self):
        if self._ses_client is None:
            self._ses_client = boto3.client('ses')
        return self._ses_client

    def render(self, stats: Optional[SyncStats], details: Optional[Dict[str, Any]] = None,
               error: Optional[str] = None,
               now: Optional[datetime] = None) -> Tuple[str, str]:
        """
        Build the report subject and body.

        Returns:
            Tuple of (subject, body)
        """
        now = now or datetime.now(timezone.utc)
        details = details or {}
        day = now.astimezone().strftime('%d/%m/%Y')

        if error is not None:
            subject = f"Daily sync FAILED - {day}"
            lines = [f"Sync failed at {now.isoformat()}", '', f"Error: {error}"]
            return subject, '\n'.join(lines)

        subject = f"Daily sync report - {day}"
        lines = [f"Sync completed at {now.isoformat()}"]
        if stats is not None:
            events = stats.event_sync
            competitors = stats.competitor_search
            videos = stats.youtube_videos
            comments = stats.youtube_comments
            lines += [
                f"Duration: {stats.duration_seconds:.2f}s",
                '',
                f"Events: {events.total} total, {events.new} new, "
                f"{events.updated} updated, {events.removed} removed",
                f"Competitors: {competitors.processed} events, {competitors.queries_used} "
                f"queries, {competitors.remaining} remaining, "
                f"{competitors.matches_found} matches",
                f"Videos: {videos.events_processed} events, {videos.videos_found} found, "
                f"{videos.cache_hits} cache hits",
                f"Comments: {comments.videos_processed} videos, "
                f"{comments.comments_fetched} fetched, {comments.cache_hits} cache hits",
            ]
            if events.errors:
                lines += ['', 'Event errors:'] + [f"  - {message}" for message in events.errors]

        sections = (
            ('New events', 'new_events', '{name} ({date}) {url}'),
            ('Top competitor matches', 'top_matches', '{event} @ {competitor} ({score:.2f}) {url}'),
            ('New videos', 'new_videos', '{event}: {title} [{channel}] {url}'),
            ('Top comments', 'top_comments', '{video}: {author} ({likes} likes) {text}'),
        )
        for title, key, template in sections:
            rows = details.get(key) or []
            if rows:
                lines += ['', f"{title}:"] + [f"  - {template.format(**row)}" for row in rows]

        return subject, '\n'.join(lines)

    def send_report(self, stats: Optional[SyncStats], details: Optional[Dict[str, Any]] = None,
                    error: Optional[str] = None) -> bool:
        """
        Send the report.

        Returns:
            True if SES accepted the message, False if disabled or sending failed
        """
        if not self.enabled:
            logger.info("Sync report email not configured, skipping")
            return False

        subject, body = self.render(stats, details, error)
        try:
            response = self.ses_client.send_email(
                Source=self.sender,
                Destination={'ToAddresses': self.recipients},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {'Text': {'Data': body, 'Charset': 'UTF-8'}},
                }
            )
        except ClientError as e:
            logger.error(f"Failed to send sync report: {e}")
            return False

        logger.info(f"Sync report sent: {response.get('MessageId')}")
        return True
