"""Unit tests for BravoFeedClient."""
import pytest
import responses
from requests.exceptions import Timeout

from processor.exceptions import FetchError
from scraper.bravo_feed import BravoFeedClient

FEED_URL = BravoFeedClient.DEFAULT_URL

SHOWS = [
    {'id': 1, 'name': 'פיטר פן', 'section': 'הצגות ילדים'},
    {'id': 2, 'name': 'ערב סטנדאפ', 'section': 'סטנדאפ'},
]


@pytest.fixture
def client():
    return BravoFeedClient(base_delay=0)


class TestBravoFeedClient:
    """Test cases for BravoFeedClient class."""

    @responses.activate
    def test_fetch_bare_list(self, client):
        """Test a feed that is a plain JSON array."""
        responses.add(responses.GET, FEED_URL, json=SHOWS, status=200)

        events = client.fetch_events()

        assert events == SHOWS
        assert responses.calls[0].request.headers['User-Agent'] == 'kids.ticketsnow.co.il'

    @pytest.mark.parametrize('key', ['Shows', 'shows', 'events'])
    @responses.activate
    def test_fetch_wrapped_list(self, client, key):
        """Test a feed that wraps the array under a known key."""
        responses.add(responses.GET, FEED_URL, json={key: SHOWS, 'total': 2}, status=200)

        assert client.fetch_events() == SHOWS

    @responses.activate
    def test_fetch_with_retry_success(self, client):
        """Test retry logic succeeds after initial failures."""
        responses.add(responses.GET, FEED_URL, body="Server Error", status=500)
        responses.add(responses.GET, FEED_URL, body="Server Error", status=502)
        responses.add(responses.GET, FEED_URL, json=SHOWS, status=200)

        events = client.fetch_events()

        assert len(events) == 2
        assert len(responses.calls) == 3

    @responses.activate
    def test_all_retries_fail(self, client):
        """Test that FetchError is raised when all retries fail."""
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body="Server Error", status=500)

        with pytest.raises(FetchError):
            client.fetch_events()

        assert len(responses.calls) == 3

    @responses.activate
    def test_timeout(self, client):
        """Test timeouts are retried and then reported as FetchError."""
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body=Timeout("Request timed out"))

        with pytest.raises(FetchError, match="Request timed out"):
            client.fetch_events()

        assert len(responses.calls) == 3

    @responses.activate
    def test_invalid_json(self, client):
        responses.add(responses.GET, FEED_URL, body="<html>maintenance</html>", status=200)

        with pytest.raises(FetchError, match="invalid JSON"):
            client.fetch_events()

    @responses.activate
    def test_unexpected_object_shape(self, client):
        responses.add(responses.GET, FEED_URL, json={'data': SHOWS}, status=200)

        with pytest.raises(FetchError, match="Unexpected Bravo JSON structure"):
            client.fetch_events()

    @responses.activate
    def test_unexpected_scalar(self, client):
        responses.add(responses.GET, FEED_URL, json="oops", status=200)

        with pytest.raises(FetchError):
            client.fetch_events()

    @responses.activate
    def test_custom_url(self):
        url = 'https://feed.example.com/shows.json'
        responses.add(responses.GET, url, json=[], status=200)

        assert BravoFeedClient(url=url, base_delay=0).fetch_events() == []

    @pytest.mark.parametrize('entry', [None, 'פיטר פן', 42])
    @responses.activate
    def test_non_object_entry_rejected(self, client, entry):
        """Test a list holding something other than JSON objects is a FetchError."""
        responses.add(responses.GET, FEED_URL, json={'Shows': [SHOWS[0], entry]}, status=200)

        with pytest.raises(FetchError, match="entry 1"):
            client.fetch_events()
