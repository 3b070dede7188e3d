"""Reader for the upstream webcast activity feed.

Uses feedparser to handle the RSS/Atom document published by the webcast
portal and turns each entry into a SourceItem, preserving feed order.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import feedparser
import requests

from ..errors import FeedUnavailable
from ..policy import activity_id_from_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceItem:
    """One candidate recording from the upstream feed."""

    title: str
    link: str
    content: Optional[str] = None
    guid: Optional[str] = None
    pub_date: Optional[str] = None

    @property
    def activity_id(self) -> str:
        """Activity id derived from the detail-page link."""
        return activity_id_from_url(self.link)


class SourceFeedReader:
    """Fetches and parses the upstream video-activity feed.

    Items are returned exactly as published (newest first), with no
    reordering and no de-duplication.

    Example:
        reader = SourceFeedReader()
        for item in reader.fetch_source_items("https://example.com/core/data/7844"):
            print(item.activity_id, item.title)
    """

    USER_AGENT = "WebcastPodcast/1.0"
    DEFAULT_TIMEOUT = 60

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """Initialize the reader.

        Args:
            session: Shared requests session; a new one is created if omitted.
            user_agent: Custom user agent string for requests.
            timeout: Request timeout in seconds.
        """
        self.user_agent = user_agent or self.USER_AGENT
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": self.user_agent})
        self._session = session

    def fetch_source_items(self, feed_url: str) -> List[SourceItem]:
        """Fetch the upstream feed and return its items in published order.

        Args:
            feed_url: URL of the activity feed.

        Returns:
            List of SourceItem, newest first as published.

        Raises:
            FeedUnavailable: If the request fails or the response is not a feed.
        """
        logger.info(f"Fetching source feed: {feed_url}")

        try:
            response = self._session.get(feed_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FeedUnavailable(f"Failed to fetch source feed {feed_url}: {e}") from e

        return self.parse_string(response.content, feed_url)

    def parse_string(self, content, feed_url: str = "") -> List[SourceItem]:
        """Parse feed content into SourceItems.

        Args:
            content: RSS/Atom document as str or bytes.
            feed_url: Original URL of the feed (for messages only).

        Returns:
            List of SourceItem in document order.

        Raises:
            FeedUnavailable: If the content cannot be parsed as a feed.
        """
        feed = feedparser.parse(content)

        if feed.bozo and feed.bozo_exception:
            logger.warning(f"Feed parsing warning: {feed.bozo_exception}")

        if not feed.version and not feed.entries:
            raise FeedUnavailable(f"Failed to parse source feed: {feed_url}")

        items = []
        for entry in feed.entries:
            item = self._parse_entry(entry)
            if item:
                items.append(item)

        logger.info(f"Source feed has {len(items)} items")
        return items

    def _parse_entry(self, entry: feedparser.FeedParserDict) -> Optional[SourceItem]:
        """Parse a feed entry into a SourceItem.

        Args:
            entry: Feed entry from feedparser

        Returns:
            SourceItem or None if the entry has no detail-page link
        """
        link = entry.get("link")
        if not link:
            logger.warning(f"Skipping entry without link: {entry.get('title')}")
            return None

        content = None
        if entry.get("content"):
            content = entry.content[0].get("value")
        if not content:
            content = entry.get("description") or entry.get("summary")

        return SourceItem(
            title=entry.get("title") or "Untitled Meeting",
            link=link,
            content=content,
            guid=entry.get("id") or entry.get("guid"),
            pub_date=entry.get("published") or entry.get("updated"),
        )
