"""Event processor for filtering and normalizing feed events."""
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from processor.models import Event

logger = logging.getLogger(__name__)

KIDS_KEYWORDS = ['ילדים', 'ילד', 'נוער', 'משפחה']
NOT_SPECIFIED = 'לא צוין'
DEFAULT_CATEGORY = 'אחר'
TICKET_URL_TEMPLATE = 'https://bravo.ticketsnow.co.il/announce/{id}'


def generate_slug(name: str) -> str:
    """
    Generate URL-safe slug from Hebrew text.

    Keeps Hebrew letters, Latin letters, digits and hyphens. Falls back to a
    timestamp slug when fewer than 3 characters survive.
    """
    slug = name.lower()
    slug = re.sub(r'[^\u0590-\u05FFa-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    slug = slug.strip('-')

    if len(slug) < 3:
        slug = f"event-{int(time.time() * 1000)}"

    return slug


class EventProcessor:
    """Processor for filtering and normalizing raw feed events."""

    MAX_NAME_LENGTH = 300
    MAX_DESCRIPTION_LENGTH = 5000

    def __init__(self, ticket_url_template: str = TICKET_URL_TEMPLATE):
        self.ticket_url_template = ticket_url_template

    def filter_kids_events(self, raw_events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Keep events whose section (or category) mentions kids or family.

        Args:
            raw_events: Raw feed event dictionaries

        Returns:
            Events matching at least one kids keyword
        """
        kids_events = []
        for raw_event in raw_events:
            section = str(raw_event.get('section') or raw_event.get('category') or '').lower()
            if any(keyword in section for keyword in KIDS_KEYWORDS):
                kids_events.append(raw_event)
        return kids_events

    def normalize_event(self, raw_event: Dict[str, Any],
                        now: Optional[datetime] = None) -> Event:
        """
        Normalize a raw feed event to the local Event shape.

        Args:
            raw_event: Raw feed event dictionary
            now: Sync timestamp

        Returns:
            Event object (created_at/updated_at are set by the reconciler)

        Raises:
            ValueError: If the event has no id or name
        """
        now = now or datetime.now(timezone.utc)

        if raw_event.get('id') in (None, ''):
            raise ValueError("Feed event missing required field: id")
        name = str(raw_event.get('name') or '').strip()
        if not name:
            raise ValueError(f"Feed event {raw_event.get('id')} missing required field: name")

        venue = NOT_SPECIFIED
        city = NOT_SPECIFIED
        seances = raw_event.get('Seances')
        if isinstance(seances, list) and seances:
            first_seance = seances[0] or {}
            venue = first_seance.get('Hall') or first_seance.get('hall') or venue
            city = first_seance.get('City') or first_seance.get('city') or city

        external_id = str(raw_event['id'])

        return Event(
            external_id=external_id,
            name=name[:self.MAX_NAME_LENGTH],
            slug=generate_slug(name),
            description=self._clean_description(
                raw_event.get('description') or raw_event.get('announce')
            ),
            category=raw_event.get('section') or raw_event.get('category') or DEFAULT_CATEGORY,
            date=self._parse_date(raw_event.get('dateFrom') or raw_event.get('date'), now),
            time=None,
            venue=venue,
            city=city,
            min_price=self._parse_price(raw_event.get('priceMin')),
            max_price=self._parse_price(raw_event.get('priceMax')),
            image_url=raw_event.get('image') or raw_event.get('imageUrl') or None,
            ticket_url=self.ticket_url_template.format(id=external_id),
            performer_name=raw_event.get('performerName') or None,
            is_kids_event=True,
            last_synced=now
        )

    def _clean_description(self, description: Optional[str]) -> Optional[str]:
        """
        Reduce an HTML description to plain text.

        Args:
            description: Description as delivered by the feed

        Returns:
            Plain text, or None if nothing is left
        """
        if not description:
            return None
        text = BeautifulSoup(str(description), 'html.parser').get_text(' ', strip=True)
        text = re.sub(r'\s+', ' ', text)
        return text[:self.MAX_DESCRIPTION_LENGTH] or None

    def _parse_date(self, date_value: Any, now: datetime) -> datetime:
        """
        Parse the feed's date into an aware datetime.

        Naive values are local time. Unparseable or missing dates fall back
        to the sync time.
        """
        if not date_value:
            return now

        date_str = str(date_value).strip()
        date_formats = [
            '%Y-%m-%dT%H:%M:%S%z',
            '%Y-%m-%dT%H:%M:%S.%f%z',
            '%Y-%m-%dT%H:%M:%S',
            '%Y-%m-%dT%H:%M:%S.%f',
            '%Y-%m-%d %H:%M:%S',
            '%Y-%m-%d %H:%M',
            '%Y-%m-%d',
            '%d/%m/%Y %H:%M',
            '%d/%m/%Y',
        ]

        if date_str.endswith('Z'):
            date_str = date_str[:-1] + '+0000'

        for fmt in date_formats:
            try:
                parsed = datetime.strptime(date_str, fmt)
            except ValueError:
                continue
            if parsed.tzinfo is None:
                parsed = parsed.astimezone()
            return parsed

        logger.warning(f"Invalid date format in feed: {date_value}")
        return now

    def _parse_price(self, value: Any) -> Optional[float]:
        if value is None or value == '':
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid price in feed: {value}")
            return None
