"""Competitor price-comparison link refresh under the daily search quota."""
import logging
import time
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import requests
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.exceptions import QuotaExceeded
from processor.match_scorer import MIN_MATCH_SCORE, calculate_match_score
from processor.models import CompetitorMatch, CompetitorQueueResult, Event
from processor.refresh_policy import (
    COMPETITOR_CACHE_TTL,
    COMPETITOR_MAX_DAYS_AHEAD,
    CacheState,
    competitor_refresh_due,
    days_until,
    resolve_cache_state,
)
from scraper.competitor_search import CompetitorSearchClient
from storage.cache_store import CacheStore
from storage.serialization import format_timestamp
from sync.quota_ledger import QUERY_TYPE_COMPETITOR, QuotaLedger

logger = logging.getLogger(__name__)

Competitor = namedtuple('Competitor', ['name', 'domain'])

COMPETITORS = [
    Competitor('Ticketsi', 'ticketsi.co.il'),
    Competitor('Eventer', 'eventer.co.il'),
    Competitor('Leaan', 'leaan.co.il'),
    Competitor('Eventim', 'eventim.co.il'),
]


class CompetitorRefresher:
    """Finds and caches the same event on competitor ticketing sites."""

    def __init__(self, store: CacheStore, ledger: QuotaLedger,
                 search_client: Optional[CompetitorSearchClient],
                 competitors: List[Competitor] = None, request_delay: float = 0.2):
        """
        Args:
            store: Cache store
            ledger: Quota ledger shared by every pass
            search_client: Site search client, None when search is not configured
            competitors: Sites to search (default: COMPETITORS)
            request_delay: Pause between site queries in seconds
        """
        self.store = store
        self.ledger = ledger
        self.search_client = search_client
        self.competitors = competitors or COMPETITORS
        self.request_delay = request_delay

    @property
    def queries_per_event(self) -> int:
        return len(self.competitors)

    def get_cached_matches(self, event_id: str,
                           now: Optional[datetime] = None) -> List[CompetitorMatch]:
        """Valid cached matches for an event, best score first."""
        now = now or datetime.now(timezone.utc)
        return self.store.competitor_matches.find_many(
            Attr('event_id').eq(event_id) & Attr('expires_at').gt(format_timestamp(now)),
            order_by=[('match_score', True)]
        )

    def cache_state(self, event_id: str, now: Optional[datetime] = None) -> CacheState:
        now = now or datetime.now(timezone.utc)
        table = self.store.competitor_matches
        has_valid = table.count(
            Attr('event_id').eq(event_id) & Attr('expires_at').gt(format_timestamp(now))
        ) > 0
        has_any = has_valid or table.count(Attr('event_id').eq(event_id)) > 0
        return resolve_cache_state(has_valid, has_any)

    def should_search_today(self, event: Event, now: Optional[datetime] = None) -> bool:
        """Decide whether this event is worth competitor queries today."""
        now = now or datetime.now(timezone.utc)
        state = self.cache_state(event.external_id, now)
        return competitor_refresh_due(state, days_until(event.date, now))

    def find_competitor_matches(self, event: Event,
                                now: Optional[datetime] = None) -> List[CompetitorMatch]:
        """
        Return cached matches, or search every competitor site.

        Raises:
            QuotaExceeded: If today's budget cannot cover a full search
        """
        matches, _ = self._find_matches(event, now or datetime.now(timezone.utc))
        return matches

    def _find_matches(self, event: Event, now: datetime) -> Tuple[List[CompetitorMatch], int]:
        cached = self.get_cached_matches(event.external_id, now)
        if cached:
            logger.info(f"Using cached competitor results for event {event.external_id}")
            return cached, 0

        if self.search_client is None:
            raise ValueError("Competitor search not configured")

        self.ledger.ensure_available(QUERY_TYPE_COMPETITOR, self.queries_per_event, now)

        logger.info(f"Searching competitors for: {event.name}")
        best: Dict[str, CompetitorMatch] = {}
        queries_used = 0

        try:
            for competitor in self.competitors:
                queries_used += 1
                try:
                    # Name only: touring shows play many venues
                    results = self.search_client.search_site(event.name, competitor.domain)
                except requests.RequestException as e:
                    logger.error(f"Failed to search {competitor.name}: {e}")
                    results = []
                finally:
                    time.sleep(self.request_delay)

                for result in results:
                    score = calculate_match_score(result, event)
                    if score < MIN_MATCH_SCORE:
                        continue
                    current = best.get(competitor.name)
                    if current is None or score > current.match_score:
                        best[competitor.name] = CompetitorMatch(
                            event_id=event.external_id,
                            competitor_name=competitor.name,
                            competitor_url=result.link,
                            match_score=score,
                            checked_at=now,
                            expires_at=now + COMPETITOR_CACHE_TTL
                        )
                    logger.info(
                        f"Match found: {competitor.name} (score: {score:.2f}) - {result.link}"
                    )
        finally:
            self.ledger.log_query_usage(QUERY_TYPE_COMPETITOR, queries_used, now)

        matches = sorted(best.values(), key=lambda m: m.match_score, reverse=True)
        self._cache_matches(matches)

        logger.info(
            f"Found {len(matches)} competitor matches ({queries_used} queries used)"
        )
        return matches, queries_used

    def _cache_matches(self, matches: List[CompetitorMatch]) -> None:
        for match in matches:
            fields = {
                'competitor_url': match.competitor_url,
                'match_score': match.match_score,
                'checked_at': match.checked_at,
                'expires_at': match.expires_at,
            }
            try:
                self.store.competitor_matches.upsert(
                    {'event_id': match.event_id, 'competitor_name': match.competitor_name},
                    fields,
                    fields
                )
            except ClientError as e:
                logger.error(f"Error caching competitor match: {e}")

    def process_competitor_search_queue(self, max_queries: int = 100,
                                        now: Optional[datetime] = None) -> CompetitorQueueResult:
        """
        Search competitors for upcoming events, soonest first.

        Stops before the first event whose full query set no longer fits in
        the budget, and on the first error.

        Args:
            max_queries: Query budget for today including earlier runs

        Returns:
            CompetitorQueueResult with processed, queries_used and remaining
        """
        now = now or datetime.now(timezone.utc)
        result = CompetitorQueueResult()

        available = max_queries - self.ledger.get_daily_query_count(QUERY_TYPE_COMPETITOR, now)
        if available <= 0:
            logger.info("Daily competitor quota exhausted")
            return result

        logger.info(f"Processing competitor search queue ({available} queries available)")

        events = self.store.events.find_many(
            Attr('is_kids_event').eq(True) & Attr('date').between(
                format_timestamp(now),
                format_timestamp(now + timedelta(days=COMPETITOR_MAX_DAYS_AHEAD))
            ),
            order_by='date'
        )

        for event in events:
            if result.queries_used + self.queries_per_event > available:
                break

            if not self.should_search_today(event, now):
                continue

            try:
                matches, queries_used = self._find_matches(event, now)
            except QuotaExceeded as e:
                logger.warning(f"Stopping competitor queue: {e}")
                break
            except Exception as e:
                logger.error(f"Error processing event {event.external_id}: {e}", exc_info=True)
                break

            result.processed += 1
            result.queries_used += queries_used
            result.matches_found += len(matches)

        result.remaining = available - result.queries_used
        logger.info(
            f"Processed {result.processed} events ({result.queries_used} queries, "
            f"{result.remaining} remaining)"
        )
        return result
