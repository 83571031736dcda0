"""Tests for RunLease."""
from datetime import timedelta

import pytest

from processor.exceptions import SyncAlreadyRunning
from sync.run_lease import RunLease


class TestRunLease:
    """Test cases for RunLease acquire and release."""

    def test_acquire_and_release(self, store, now):
        lease = RunLease(store, owner='run-a')

        held = lease.acquire(now)

        assert held.owner == 'run-a'
        assert held.expires_at == now + timedelta(minutes=15)
        lease.release()
        assert store.sync_leases.count() == 0

    def test_second_run_is_rejected(self, store, now):
        RunLease(store, owner='run-a').acquire(now)

        with pytest.raises(SyncAlreadyRunning):
            RunLease(store, owner='run-b').acquire(now + timedelta(minutes=5))

    def test_expired_lease_can_be_taken_over(self, store, now):
        RunLease(store, owner='run-a').acquire(now)

        held = RunLease(store, owner='run-b').acquire(now + timedelta(minutes=16))

        assert held.owner == 'run-b'
        assert store.sync_leases.find_unique({'lease_name': 'daily-sync'}).owner == 'run-b'

    def test_release_does_not_drop_another_owners_lease(self, store, now):
        stale = RunLease(store, owner='run-a')
        stale.acquire(now)
        RunLease(store, owner='run-b').acquire(now + timedelta(minutes=16))

        stale.release()

        assert store.sync_leases.find_unique({'lease_name': 'daily-sync'}).owner == 'run-b'

    def test_release_without_acquire_is_noop(self, store):
        RunLease(store).release()
        assert store.sync_leases.count() == 0

    def test_context_manager(self, store):
        with RunLease(store, owner='run-a'):
            assert store.sync_leases.count() == 1
            with pytest.raises(SyncAlreadyRunning):
                RunLease(store, owner='run-b').acquire()
        assert store.sync_leases.count() == 0

    def test_separate_lease_names_do_not_conflict(self, store, now):
        RunLease(store, name='daily-sync', owner='a').acquire(now)
        RunLease(store, name='event-sync', owner='b').acquire(now)

        assert store.sync_leases.count() == 2
