"""Unit tests for DynamoDBTable and the cache store."""
from datetime import timedelta
from decimal import Decimal

import pytest
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import CompetitorMatch, VideoComment, YouTubeVideo
from storage.serialization import format_timestamp, item_to_record, parse_timestamp, record_to_item


def match(event_id, competitor, score, checked_at, expires_in=timedelta(days=7)):
    return CompetitorMatch(
        event_id=event_id,
        competitor_name=competitor,
        competitor_url=f"https://{competitor.lower()}.co.il/event/{event_id}",
        match_score=score,
        checked_at=checked_at,
        expires_at=checked_at + expires_in
    )


class TestSerialization:
    """Test cases for record <-> item conversion."""

    def test_timestamps_are_fixed_width_utc(self, now):
        assert format_timestamp(now) == '2024-06-10T12:00:00.000000Z'
        assert parse_timestamp('2024-06-10T12:00:00.000000Z') == now

    def test_round_trip_keeps_types(self, make_event):
        event = make_event(min_price=59.5, description=None)

        item = record_to_item(event)

        assert item['min_price'] == Decimal('59.5')
        assert item['is_kids_event'] is True
        assert 'description' not in item
        assert item_to_record(type(event), item) == event

    def test_missing_required_attribute_raises(self):
        with pytest.raises(KeyError):
            item_to_record(CompetitorMatch, {'event_id': '1'})


class TestDynamoDBTable:
    """Test cases for DynamoDBTable operations."""

    def test_create_and_find_unique(self, store, make_event):
        event = make_event()
        store.events.create(event)

        found = store.events.find_unique({'external_id': event.external_id})

        assert found == event

    def test_find_unique_missing(self, store):
        assert store.events.find_unique({'external_id': 'nope'}) is None

    def test_create_rejects_duplicate_key(self, store, make_event):
        store.events.create(make_event())

        with pytest.raises(ClientError) as exc_info:
            store.events.create(make_event(name='שם אחר'))

        assert exc_info.value.response['Error']['Code'] == 'ConditionalCheckFailedException'

    def test_find_many_with_filter_and_order(self, store, saved_event):
        saved_event(external_id='1', days_ahead=9)
        saved_event(external_id='2', days_ahead=2)
        saved_event(external_id='3', days_ahead=40)
        saved_event(external_id='4', days_ahead=5, is_kids_event=False)

        events = store.events.find_many(Attr('is_kids_event').eq(True), order_by='date')

        assert [event.external_id for event in events] == ['2', '1', '3']

    def test_find_many_range_filter_on_timestamps(self, store, saved_event, now):
        saved_event(external_id='1', days_ahead=-1)
        saved_event(external_id='2', days_ahead=3)
        saved_event(external_id='3', days_ahead=31)

        events = store.events.find_many(Attr('date').between(
            format_timestamp(now), format_timestamp(now + timedelta(days=30))
        ))

        assert [event.external_id for event in events] == ['2']

    def test_find_many_multi_key_order_limit_offset(self, store, now):
        for competitor, score in [('Ticketsi', 0.5), ('Eventer', 0.9), ('Leaan', 0.7), ('Eventim', 0.7)]:
            store.competitor_matches.create(match('1', competitor, score, now))

        ordered = store.competitor_matches.find_many(
            order_by=[('match_score', True), ('competitor_name', False)]
        )
        page = store.competitor_matches.find_many(
            order_by=[('match_score', True), ('competitor_name', False)], limit=2, offset=1
        )

        assert [m.competitor_name for m in ordered] == ['Eventer', 'Eventim', 'Leaan', 'Ticketsi']
        assert [m.competitor_name for m in page] == ['Eventim', 'Leaan']

    def test_find_first(self, store, saved_event):
        saved_event(external_id='1', days_ahead=9)
        saved_event(external_id='2', days_ahead=2)

        first = store.events.find_first(order_by='date')

        assert first.external_id == '2'
        assert store.events.find_first(Attr('external_id').eq('x')) is None

    def test_update_sets_and_removes_fields(self, store, saved_event):
        saved_event(external_id='1', description='ישן')

        updated = store.events.update(
            {'external_id': '1'}, {'name': 'שם חדש', 'description': None}
        )

        assert updated.name == 'שם חדש'
        assert updated.description is None
        assert store.events.find_unique({'external_id': '1'}).name == 'שם חדש'

    def test_update_missing_record_raises(self, store):
        with pytest.raises(ClientError):
            store.events.update({'external_id': 'missing'}, {'name': 'x'})

    def test_upsert_creates_then_updates(self, store, now):
        key = {'event_id': '1', 'video_id': 'abc'}
        fields = {
            'title': 'טריילר',
            'thumbnail_url': 'https://i.ytimg.com/vi/abc/mqdefault.jpg',
            'channel_title': 'ערוץ',
            'checked_at': now,
            'expires_at': now + timedelta(hours=24),
        }

        created = store.youtube_videos.upsert(key, fields, fields)
        later = now + timedelta(days=2)
        updated = store.youtube_videos.upsert(
            key, fields, dict(fields, checked_at=later, expires_at=later + timedelta(hours=24))
        )

        assert isinstance(created, YouTubeVideo)
        assert created.checked_at == now
        assert updated.checked_at == later
        assert store.youtube_videos.count() == 1

    def test_upsert_create_only_fields_are_kept(self, store, now):
        key = {'comment_id': 'c1'}
        base = {
            'author_name': 'אמא', 'text_display': 'מעולה', 'like_count': 3,
            'published_at': now, 'checked_at': now, 'expires_at': now + timedelta(days=3),
        }

        store.video_comments.upsert(key, {'video_id': 'v1'}, base)
        comment = store.video_comments.upsert(key, {'video_id': 'v2'}, dict(base, like_count=5))

        assert isinstance(comment, VideoComment)
        assert comment.video_id == 'v1'
        assert comment.like_count == 5
        assert comment.is_reply is False

    def test_delete_many_and_count(self, store, now):
        for i in range(30):
            store.competitor_matches.create(match(str(i % 3), f"Site{i}", 0.5, now))

        assert store.competitor_matches.count() == 30
        assert store.competitor_matches.count(Attr('event_id').eq('0')) == 10

        deleted = store.competitor_matches.delete_many(Attr('event_id').is_in(['0', '1']))

        assert deleted == 20
        assert store.competitor_matches.count() == 10

    def test_delete_many_no_matches(self, store):
        assert store.events.delete_many(Attr('external_id').eq('x')) == 0

    def test_conditional_delete(self, store, saved_event):
        saved_event(external_id='1')

        with pytest.raises(ClientError):
            store.events.delete({'external_id': '1'}, condition=Attr('name').eq('אחר'))
        store.events.delete({'external_id': '1'})

        assert store.events.find_unique({'external_id': '1'}) is None

    def test_malformed_items_are_skipped(self, store, saved_event):
        saved_event(external_id='1')
        store.events.table.put_item(Item={'external_id': 'broken'})

        assert [event.external_id for event in store.events.find_many()] == ['1']


class TestCacheStore:
    """Test cases for CacheStore.delete_events."""

    def test_delete_events_cascades(self, store, saved_event, now):
        saved_event(external_id='1')
        saved_event(external_id='2')
        store.competitor_matches.create(match('1', 'Ticketsi', 0.8, now))
        store.competitor_matches.create(match('2', 'Ticketsi', 0.8, now))
        for event_id, video_id in [('1', 'v1'), ('2', 'v2')]:
            store.youtube_videos.create(YouTubeVideo(
                event_id=event_id, video_id=video_id, title='t', thumbnail_url='',
                channel_title='c', checked_at=now, expires_at=now + timedelta(hours=24)
            ))
            store.video_comments.create(VideoComment(
                comment_id=f"c-{video_id}", video_id=video_id, author_name='a',
                text_display='x', like_count=0, published_at=now, checked_at=now,
                expires_at=now + timedelta(days=3)
            ))

        deleted = store.delete_events(['1'])

        assert deleted == 1
        assert [e.external_id for e in store.events.find_many()] == ['2']
        assert [m.event_id for m in store.competitor_matches.find_many()] == ['2']
        assert [v.video_id for v in store.youtube_videos.find_many()] == ['v2']
        assert [c.comment_id for c in store.video_comments.find_many()] == ['c-v2']

    def test_delete_events_empty(self, store):
        assert store.delete_events([]) == 0
