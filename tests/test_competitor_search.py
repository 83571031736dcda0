"""Unit tests for CompetitorSearchClient."""
import pytest
import requests
import responses
from responses import matchers

from processor.exceptions import QuotaExceeded
from processor.models import SearchResult
from scraper.competitor_search import CompetitorSearchClient, build_search_session

API_URL = CompetitorSearchClient.API_URL


class TestCompetitorSearchClient:
    """Test cases for CompetitorSearchClient.search_site."""

    @responses.activate
    def test_search_site_params_and_results(self):
        responses.add(
            responses.GET,
            API_URL,
            json={'items': [
                {'title': 'פיטר פן - כרטיסים', 'snippet': 'הצגה', 'link': 'https://www.eventer.co.il/event/1'},
                {'title': 'פיטר פן', 'link': 'https://www.eventer.co.il/event/2'},
            ]},
            match=[matchers.query_param_matcher({
                'cx': 'engine-1', 'q': 'פיטר פן', 'siteSearch': 'eventer.co.il',
                'num': '3', 'key': 'api-key',
            })]
        )
        client = CompetitorSearchClient('engine-1', api_key='api-key')

        results = client.search_site('פיטר פן', 'eventer.co.il')

        assert results == [
            SearchResult('פיטר פן - כרטיסים', 'הצגה', 'https://www.eventer.co.il/event/1'),
            SearchResult('פיטר פן', '', 'https://www.eventer.co.il/event/2'),
        ]

    @responses.activate
    def test_no_items(self):
        responses.add(responses.GET, API_URL, json={'searchInformation': {'totalResults': '0'}})

        assert CompetitorSearchClient('engine-1').search_site('x', 'leaan.co.il') == []

    @responses.activate
    def test_rate_limit_raises_quota_exceeded(self):
        responses.add(responses.GET, API_URL, json={'error': {'code': 429}}, status=429)

        with pytest.raises(QuotaExceeded) as exc_info:
            CompetitorSearchClient('engine-1').search_site('x', 'leaan.co.il')

        assert exc_info.value.query_type == 'competitor'

    @responses.activate
    def test_server_error_raises_request_exception(self):
        responses.add(responses.GET, API_URL, status=500)

        with pytest.raises(requests.HTTPError):
            CompetitorSearchClient('engine-1').search_site('x', 'leaan.co.il')

    def test_missing_engine_id(self):
        with pytest.raises(ValueError):
            CompetitorSearchClient('')

    def test_plain_session_without_service_account(self):
        session = build_search_session(None)
        assert type(session) is requests.Session
