"""Reconciles the remote event feed with locally persisted events."""
import dataclasses
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from botocore.exceptions import ClientError

from processor.event_processor import EventProcessor
from processor.models import Event, SyncLog, SyncResult
from scraper.bravo_feed import BravoFeedClient
from storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

# Set once on insert, never overwritten by a sync
CREATE_ONLY_FIELDS = ('external_id', 'slug', 'created_at')


class EventReconciler:
    """Creates, updates and deletes Event rows to mirror the kids feed."""

    def __init__(self, store: CacheStore, feed_client: BravoFeedClient,
                 processor: Optional[EventProcessor] = None):
        self.store = store
        self.feed_client = feed_client
        self.processor = processor or EventProcessor()

    def sync_events(self, now: Optional[datetime] = None) -> SyncResult:
        """
        Synchronize events with the feed.

        Writes one SyncLog row whatever the outcome.

        Returns:
            SyncResult with total, new, updated and removed counts

        Raises:
            FetchError: If the feed cannot be fetched
            Exception: Any other failure, after it has been logged
        """
        now = now or datetime.now(timezone.utc)
        start_time = time.time()
        result = SyncResult()

        try:
            logger.info("Starting event sync")

            raw_events = self.feed_client.fetch_events()
            kids_events = self.processor.filter_kids_events(raw_events)
            logger.info(
                f"Fetched {len(raw_events)} events, {len(kids_events)} are kids events"
            )
            result.total = len(kids_events)

            existing = {event.external_id: event for event in self.store.events.find_many()}
            slugs_in_use = {event.slug: event.external_id for event in existing.values()}
            feed_ids = {str(raw_event.get('id')) for raw_event in kids_events}

            for raw_event in kids_events:
                try:
                    event = self.processor.normalize_event(raw_event, now)
                    current = existing.get(event.external_id)
                    if current:
                        existing[event.external_id] = self._update_event(
                            current, event, now, slugs_in_use
                        )
                        result.updated += 1
                    else:
                        event.slug = self._unique_slug(event, slugs_in_use)
                        existing[event.external_id] = self._create_event(event, now)
                        result.new += 1
                    slugs_in_use[existing[event.external_id].slug] = event.external_id
                except (ValueError, ClientError) as e:
                    error_msg = f"Error upserting event {raw_event.get('id')}: {e}"
                    logger.error(error_msg)
                    result.errors.append(error_msg)

            removed_ids = [external_id for external_id in existing if external_id not in feed_ids]
            if removed_ids:
                result.removed = self.store.delete_events(removed_ids)

            duration = time.time() - start_time
            logger.info(
                f"Event sync completed in {duration:.2f}s: {result.new} new, "
                f"{result.updated} updated, {result.removed} removed"
            )
            self._log_sync(result, now)
            return result

        except Exception as e:
            result.status = 'error'
            result.error_message = str(e)
            logger.error(f"Event sync failed: {e}", exc_info=True)
            try:
                self._log_sync(result, now)
            except ClientError as log_error:
                logger.error(f"Failed to record sync log: {log_error}")
            raise

    def _create_event(self, event: Event, now: datetime) -> Event:
        event.created_at = now
        event.updated_at = now
        return self.store.events.create(event)

    def _update_event(self, current: Event, event: Event, now: datetime,
                      slugs_in_use: Dict[str, str]) -> Event:
        fields = {
            name: value for name, value in dataclasses.asdict(event).items()
            if name not in CREATE_ONLY_FIELDS
        }
        fields['updated_at'] = now
        # Keep URLs stable unless the show was renamed
        if event.name != current.name:
            fields['slug'] = self._unique_slug(event, slugs_in_use)
        return self.store.events.update({'external_id': current.external_id}, fields)

    def _unique_slug(self, event: Event, slugs_in_use: Dict[str, str]) -> str:
        owner = slugs_in_use.get(event.slug)
        if owner is None or owner == event.external_id:
            return event.slug
        return f"{event.slug}-{event.external_id}"

    def _log_sync(self, result: SyncResult, now: datetime) -> None:
        self.store.sync_logs.create(SyncLog(
            log_id=str(uuid.uuid4()),
            status=result.status,
            events_total=result.total,
            events_new=result.new,
            events_updated=result.updated,
            events_removed=result.removed,
            synced_at=now,
            error_message=result.error_message
        ))
