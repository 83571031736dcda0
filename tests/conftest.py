"""Shared fixtures: mocked DynamoDB cache store and event factories."""
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from processor.models import Event
from storage.cache_store import CacheStore, create_tables
from sync.quota_ledger import QuotaLedger

TABLE_PREFIX = 'test-kids-events-'

# Midday UTC keeps "today" on the same local date for any common timezone
NOW = datetime(2024, 6, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb():
    """Mocked DynamoDB resource with every cache store table created."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(TABLE_PREFIX, resource)
        yield resource


@pytest.fixture
def store(dynamodb):
    return CacheStore(TABLE_PREFIX, dynamodb)


@pytest.fixture
def ledger(store):
    return QuotaLedger(store)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_event():
    """Factory for Event records dated relative to NOW."""
    def factory(external_id='1001', name='מופע הקסמים של דני', days_ahead=5, **overrides):
        fields = dict(
            external_id=external_id,
            name=name,
            slug=f"event-{external_id}",
            category='ילדים',
            date=NOW + timedelta(days=days_ahead),
            venue='היכל התרבות',
            city='תל אביב',
            ticket_url=f"https://bravo.ticketsnow.co.il/announce/{external_id}",
            performer_name='דני הקוסם',
            created_at=NOW - timedelta(days=10),
            updated_at=NOW - timedelta(days=10),
        )
        fields.update(overrides)
        return Event(**fields)
    return factory


@pytest.fixture
def saved_event(store, make_event):
    """Factory that persists the event it builds."""
    def factory(**kwargs):
        return store.events.create(make_event(**kwargs))
    return factory
