"""Relevance scoring of external search results against an event."""
import logging
import re
from typing import List

from processor.models import Event, SearchResult, VideoResult

logger = logging.getLogger(__name__)

MIN_MATCH_SCORE = 0.35
NOT_SPECIFIED = 'לא צוין'

GENERIC_URL_PATTERNS = [
    re.compile(r'/this-week', re.IGNORECASE),
    re.compile(r'/this-weekend', re.IGNORECASE),
    re.compile(r'/today', re.IGNORECASE),
    re.compile(r'/tomorrow', re.IGNORECASE),
    re.compile(r'/city/', re.IGNORECASE),
    re.compile(r'/category/', re.IGNORECASE),
    re.compile(r'/categories/', re.IGNORECASE),
    re.compile(r'/all-events', re.IGNORECASE),
    re.compile(r'/search\?', re.IGNORECASE),
    re.compile(r'/search$', re.IGNORECASE),
    re.compile(r'/browse', re.IGNORECASE),
    re.compile(r'/listing', re.IGNORECASE),
    re.compile(r'/$'),  # home page
]

EVENT_URL_PATTERNS = [
    re.compile(r'/event/', re.IGNORECASE),
    re.compile(r'/show/', re.IGNORECASE),
    re.compile(r'/ticket/', re.IGNORECASE),
    re.compile(r'/tickets/', re.IGNORECASE),
    re.compile(r'/production/', re.IGNORECASE),
    re.compile(r'/artist/', re.IGNORECASE),
    re.compile(r'/performance/', re.IGNORECASE),
    re.compile(r'\d{4,}'),  # numeric event IDs
]

# Generic show words carry no identity
MATCH_STOP_WORDS = re.compile(r'הצגה|הצגת|מופע|כרטיסים|לילדים|ילדים|קרקס|תיאטרון')
VIDEO_STOP_WORDS = re.compile(r'הצגה|הצגת|מופע|כרטיסים|לילדים|ילדים')

VIDEO_EXCLUDE_KEYWORDS = [
    'reaction',
    'react',
    'review',
    'cover',
    'tutorial',
    'karaoke',
    'קריוקי',
    'מדריך',
    'איך ל',
]


def is_generic_url(url: str) -> bool:
    """Check if URL is a listing page rather than a specific event."""
    return any(pattern.search(url) for pattern in GENERIC_URL_PATTERNS)


def is_event_url(url: str) -> bool:
    """Check if URL looks like a direct event page."""
    return any(pattern.search(url) for pattern in EVENT_URL_PATTERNS)


def extract_keywords(name: str, stop_words=MATCH_STOP_WORDS) -> List[str]:
    """
    Split an event name into identifying keywords.

    Args:
        name: Event name
        stop_words: Pattern of generic words to strip first

    Returns:
        Lowercase tokens longer than 2 characters
    """
    stripped = stop_words.sub('', (name or '').lower()).strip()
    return [word for word in stripped.split() if len(word) > 2]


def calculate_match_score(result: SearchResult, event: Event) -> float:
    """
    Calculate match score between a search result and an event.

    Pure: the same result and event always give the same score.

    Args:
        result: Search result to score
        event: Event the result is supposed to be about

    Returns:
        Score between 0.0 and 1.0
    """
    url = result.link.lower()

    if is_generic_url(url):
        logger.debug(f"Rejecting generic URL: {url}")
        return 0.0

    score = 0.0
    matched_criteria = 0

    title = result.title.lower()
    snippet = result.snippet.lower()
    performer = (event.performer_name or '').lower()
    venue = (event.venue or '').lower()

    def mentioned(text):
        return text in title or text in snippet

    keywords = extract_keywords(event.name)
    matched_keywords = [keyword for keyword in keywords if mentioned(keyword)]
    if len(matched_keywords) >= 2:
        score += 0.4
        matched_criteria += 1
    elif len(matched_keywords) == 1 and len(keywords) <= 2:
        # Short names can only ever match one or two words
        score += 0.3
        matched_criteria += 1

    if len(performer) > 2 and mentioned(performer):
        score += 0.3
        matched_criteria += 1

    if venue != NOT_SPECIFIED and len(venue) > 3 and mentioned(venue):
        score += 0.2
        matched_criteria += 1

    event_url = is_event_url(url)
    if event_url:
        score += 0.1

    if matched_criteria < 2 and score < MIN_MATCH_SCORE:
        logger.debug(
            f"Low confidence match ({matched_criteria} criteria, "
            f"score {score:.2f}): {url}"
        )
        return 0.0

    if matched_criteria == 1 and not event_url and score < 0.5:
        logger.debug(
            f"Single criteria non-event URL ({matched_criteria} criteria, "
            f"score {score:.2f}): {url}"
        )
        return 0.0

    return min(round(score, 4), 1.0)


def filter_relevant_videos(videos: List[VideoResult], event: Event) -> List[VideoResult]:
    """
    Drop reaction, cover and tutorial videos and videos about other shows.

    Args:
        videos: Candidate videos
        event: Event the videos should be about

    Returns:
        Videos whose title or channel mentions the event or performer
    """
    keywords = extract_keywords(event.name, VIDEO_STOP_WORDS)
    performer = (event.performer_name or '').lower()
    relevant = []

    for video in videos:
        title = video.title.lower()
        channel = video.channel_title.lower()

        if any(keyword in title for keyword in VIDEO_EXCLUDE_KEYWORDS):
            continue

        has_event_keywords = any(
            keyword in title or keyword in channel for keyword in keywords
        )
        has_performer = bool(performer) and (performer in title or performer in channel)

        if has_event_keywords or has_performer:
            relevant.append(video)

    return relevant
