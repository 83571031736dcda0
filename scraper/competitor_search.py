"""Site-restricted web search through the Google Custom Search API."""
import logging
from typing import List, Optional

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from processor.exceptions import QuotaExceeded
from processor.models import SearchResult

logger = logging.getLogger(__name__)

SEARCH_SCOPES = ['https://www.googleapis.com/auth/cse']


def build_search_session(service_account_path: Optional[str] = None) -> requests.Session:
    """
    Build the HTTP session used for search calls.

    Args:
        service_account_path: Service account key file. Without one a plain
            session is returned and the client must be given an API key.
    """
    if not service_account_path:
        return requests.Session()

    credentials = service_account.Credentials.from_service_account_file(
        service_account_path, scopes=SEARCH_SCOPES
    )
    logger.info("Using service account credentials for Custom Search")
    return AuthorizedSession(credentials)


class CompetitorSearchClient:
    """Searches a single domain for an event name."""

    API_URL = "https://www.googleapis.com/customsearch/v1"

    def __init__(self, search_engine_id: str, session: Optional[requests.Session] = None,
                 api_key: Optional[str] = None, timeout: int = 10,
                 results_per_site: int = 3):
        """
        Initialize the search client.

        Args:
            search_engine_id: Programmable Search Engine ID (cx)
            session: HTTP session, authorized for service account use
            api_key: API key, when not using a service account
            timeout: HTTP request timeout in seconds (default: 10)
            results_per_site: Results requested per query (default: 3)
        """
        if not search_engine_id:
            raise ValueError("Google Search Engine ID not configured")
        self.search_engine_id = search_engine_id
        self.session = session or requests.Session()
        self.api_key = api_key
        self.timeout = timeout
        self.results_per_site = results_per_site

    def search_site(self, query: str, domain: str) -> List[SearchResult]:
        """
        Run one search restricted to a domain.

        Args:
            query: Search terms
            domain: Site to restrict the search to

        Returns:
            Up to results_per_site results

        Raises:
            QuotaExceeded: On HTTP 429
            requests.RequestException: On any other failure
        """
        params = {
            'cx': self.search_engine_id,
            'q': query,
            'siteSearch': domain,
            'num': self.results_per_site,
        }
        if self.api_key:
            params['key'] = self.api_key

        response = self.session.get(self.API_URL, params=params, timeout=self.timeout)

        if response.status_code == 429:
            raise QuotaExceeded('competitor', message='Google API quota exceeded')
        response.raise_for_status()

        items = response.json().get('items')
        if not isinstance(items, list):
            return []

        return [
            SearchResult(
                title=item.get('title') or '',
                snippet=item.get('snippet') or '',
                link=item.get('link') or ''
            )
            for item in items
        ]
