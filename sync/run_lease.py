"""Mutual exclusion between overlapping sync runs."""
import logging
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.exceptions import SyncAlreadyRunning
from processor.models import SyncLease
from storage.cache_store import CacheStore
from storage.serialization import format_timestamp

logger = logging.getLogger(__name__)

DAILY_SYNC_LEASE = 'daily-sync'
DEFAULT_LEASE_TTL = timedelta(minutes=15)


class RunLease:
    """
    A lease row that at most one run can hold at a time.

    Acquisition is a conditional put that only succeeds when no lease row
    exists or the existing one has expired, so a crashed run blocks others
    for at most the lease TTL.

    Usage:
        with RunLease(store):
            ...
    """

    def __init__(self, store: CacheStore, name: str = DAILY_SYNC_LEASE,
                 ttl: timedelta = DEFAULT_LEASE_TTL, owner: Optional[str] = None):
        self.store = store
        self.name = name
        self.ttl = ttl
        self.owner = owner or f"{socket.gethostname()}-{uuid.uuid4()}"
        self.lease: Optional[SyncLease] = None

    def acquire(self, now: Optional[datetime] = None) -> SyncLease:
        """
        Take the lease.

        Raises:
            SyncAlreadyRunning: If another owner holds an unexpired lease
        """
        now = now or datetime.now(timezone.utc)
        lease = SyncLease(
            lease_name=self.name,
            owner=self.owner,
            acquired_at=now,
            expires_at=now + self.ttl
        )
        condition = (
            Attr('lease_name').not_exists()
            | Attr('expires_at').lt(format_timestamp(now))
        )
        try:
            self.lease = self.store.sync_leases.create(lease, condition=condition)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise SyncAlreadyRunning(f"Sync lease '{self.name}' is held by another run") from e
            raise

        logger.info(f"Acquired sync lease '{self.name}' until {lease.expires_at.isoformat()}")
        return self.lease

    def release(self) -> None:
        """Give the lease back if this owner still holds it."""
        if self.lease is None:
            return
        try:
            self.store.sync_leases.delete(
                {'lease_name': self.name}, condition=Attr('owner').eq(self.owner)
            )
            logger.info(f"Released sync lease '{self.name}'")
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                raise
            logger.warning(f"Sync lease '{self.name}' was taken over before release")
        finally:
            self.lease = None

    def __enter__(self) -> 'RunLease':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()
