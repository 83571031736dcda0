"""Client for the Bravo partner shows JSON feed."""
import logging
import time
from typing import Any, Dict, List

import requests

from processor.exceptions import FetchError

logger = logging.getLogger(__name__)


class BravoFeedClient:
    """Fetches the full list of shows from the Bravo partner feed."""

    DEFAULT_URL = "https://bravo.ticketsnow.co.il/xml/partner/shows.json"
    USER_AGENT = "kids.ticketsnow.co.il"
    WRAPPER_KEYS = ('Shows', 'shows', 'events')

    def __init__(self, url: str = DEFAULT_URL, timeout: int = 10,
                 max_retries: int = 3, base_delay: float = 1):
        """
        Initialize the feed client.

        Args:
            url: Feed URL
            timeout: HTTP request timeout in seconds (default: 10)
            max_retries: Attempts before giving up (default: 3)
            base_delay: First backoff delay in seconds, doubled per attempt
        """
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    def fetch_events(self) -> List[Dict[str, Any]]:
        """
        Fetch every raw event from the feed.

        Returns:
            List of raw event dictionaries

        Raises:
            FetchError: If the feed is unreachable or its shape is unknown
        """
        logger.info(f"Fetching events from {self.url}")

        payload = self._fetch_json()
        events = self._unwrap(payload)

        logger.info(f"Successfully fetched {len(events)} events")
        return events

    def _fetch_json(self) -> Any:
        """
        Fetch the feed with retry logic.

        Raises:
            FetchError: If all retry attempts fail or the body is not JSON
        """
        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching feed (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(
                    self.url,
                    headers={'User-Agent': self.USER_AGENT},
                    timeout=self.timeout
                )
                response.raise_for_status()
                break

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise FetchError(f"Failed to fetch events from Bravo: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Bravo feed returned invalid JSON: {e}") from e

    def _unwrap(self, payload: Any) -> List[Dict[str, Any]]:
        """Accept a bare list or a list wrapped under a known key, of JSON objects only."""
        if isinstance(payload, list):
            return self._check_entries(payload)

        if isinstance(payload, dict):
            for key in self.WRAPPER_KEYS:
                if isinstance(payload.get(key), list):
                    return self._check_entries(payload[key])
            raise FetchError(
                f"Unexpected Bravo JSON structure: keys {sorted(payload.keys())}"
            )

        raise FetchError(f"Unexpected Bravo JSON structure: {type(payload).__name__}")

    def _check_entries(self, events: List[Any]) -> List[Dict[str, Any]]:
        for index, entry in enumerate(events):
            if not isinstance(entry, dict):
                raise FetchError(
                    f"Unexpected Bravo JSON structure: entry {index} is {type(entry).__name__}"
                )
        return events
