"""Unit tests for SyncReporter."""
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from processor.models import (
    CommentQueueResult,
    CompetitorQueueResult,
    SyncResult,
    SyncStats,
    VideoQueueResult,
)
from sync.reporter import SyncReporter


@pytest.fixture
def stats():
    return SyncStats(
        event_sync=SyncResult(total=12, new=2, updated=10, removed=1),
        competitor_search=CompetitorQueueResult(processed=3, queries_used=12, remaining=88,
                                                matches_found=4),
        youtube_videos=VideoQueueResult(events_processed=5, videos_found=7, cache_hits=2),
        youtube_comments=CommentQueueResult(videos_processed=4, comments_fetched=30, cache_hits=1),
        duration_seconds=42.5
    )


@pytest.fixture
def ses():
    client = Mock()
    client.send_email.return_value = {'MessageId': 'msg-1'}
    return client


@pytest.fixture
def reporter(ses):
    return SyncReporter('sync@example.com', ['ops@example.com', ''], ses_client=ses)


class TestRender:
    """Test cases for SyncReporter.render."""

    def test_success_report(self, reporter, stats, now):
        details = {
            'new_events': [{'name': 'פיטר פן', 'date': '15/06/2024', 'url': 'https://site/event/פיטר-פן'}],
            'top_matches': [{'event': 'פיטר פן', 'competitor': 'Eventer', 'score': 0.9,
                             'url': 'https://www.eventer.co.il/event/1'}],
        }

        subject, body = reporter.render(stats, details, now=now)

        assert subject.startswith('Daily sync report - ')
        assert 'Duration: 42.50s' in body
        assert 'Events: 12 total, 2 new, 10 updated, 1 removed' in body
        assert 'Competitors: 3 events, 12 queries, 88 remaining, 4 matches' in body
        assert '  - פיטר פן (15/06/2024) https://site/event/פיטר-פן' in body
        assert '  - פיטר פן @ Eventer (0.90) https://www.eventer.co.il/event/1' in body
        assert 'New videos' not in body

    def test_event_errors_listed(self, reporter, stats, now):
        stats.event_sync.errors.append('Feed event 9 missing required field: name')

        _, body = reporter.render(stats, now=now)

        assert '  - Feed event 9 missing required field: name' in body

    def test_error_report(self, reporter, now):
        subject, body = reporter.render(None, error='feed down', now=now)

        assert subject.startswith('Daily sync FAILED')
        assert 'Error: feed down' in body


class TestSendReport:
    """Test cases for SyncReporter.send_report."""

    def test_sends_through_ses(self, reporter, ses, stats):
        assert reporter.send_report(stats) is True

        kwargs = ses.send_email.call_args.kwargs
        assert kwargs['Source'] == 'sync@example.com'
        assert kwargs['Destination'] == {'ToAddresses': ['ops@example.com']}
        assert kwargs['Message']['Body']['Text']['Charset'] == 'UTF-8'

    def test_disabled_without_sender(self, ses, stats):
        reporter = SyncReporter(None, ['ops@example.com'], ses_client=ses)

        assert not reporter.enabled
        assert reporter.send_report(stats) is False
        ses.send_email.assert_not_called()

    def test_ses_failure_returns_false(self, reporter, ses, stats):
        ses.send_email.side_effect = ClientError(
            {'Error': {'Code': 'MessageRejected', 'Message': 'Email address is not verified'}},
            'SendEmail'
        )

        assert reporter.send_report(stats) is False
