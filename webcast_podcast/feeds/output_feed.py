"""Podcast feed document published alongside the episode audio.

The feed is read with feedparser at the start of a run and rewritten with
ElementTree every time an episode is registered. Its first item is the
novelty key: the activity id at the end of its guid marks where the
previous run stopped.
"""

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import List, Optional

import feedparser
import requests

from ..errors import FeedUnavailable, FeedWriteError, PipelineError
from ..policy import activity_id_from_url
from .source_reader import SourceItem

logger = logging.getLogger(__name__)

ITUNES_NS = "http://www.itunes.com/dtds/podcast-1.0.dtd"
ATOM_NS = "http://www.w3.org/2005/Atom"

ET.register_namespace("itunes", ITUNES_NS)
ET.register_namespace("atom", ATOM_NS)


@dataclass
class Episode:
    """An entry of the output podcast feed."""

    title: str
    link: Optional[str]
    guid: str
    content: Optional[str] = None
    pub_date: Optional[str] = None
    enclosure_url: Optional[str] = None
    enclosure_size_bytes: Optional[int] = None
    enclosure_type: str = "audio/mpeg"
    explicit: bool = False
    summary: Optional[str] = None

    @property
    def activity_id(self) -> str:
        return activity_id_from_url(self.guid)

    @classmethod
    def from_source_item(cls, item: SourceItem, activity_id: str) -> "Episode":
        """Build the episode for a source recording.

        The guid must end with the activity id; when the upstream guid
        does not, the detail-page link is used instead.
        """
        guid = item.guid
        if not guid or activity_id_from_url(guid) != activity_id:
            guid = item.link
        return cls(
            title=item.title,
            link=item.link,
            guid=guid,
            content=item.content,
            pub_date=item.pub_date,
            explicit=False,
            summary=item.content,
        )


@dataclass
class OutputFeed:
    """The podcast feed: channel metadata plus episodes, newest first.

    ``items`` holds the episodes that were already published when the feed
    was loaded; ``new_items`` holds episodes registered during this run in
    source order. Both are serialized newest first.
    """

    title: str
    link: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    author: Optional[str] = None
    image_url: Optional[str] = None
    feed_url: Optional[str] = None
    items: List[Episode] = field(default_factory=list)
    new_items: List[Episode] = field(default_factory=list)

    @property
    def episodes(self) -> List[Episode]:
        """All episodes in document order."""
        return self.new_items + self.items

    @property
    def latest(self) -> Optional[Episode]:
        """Most recently published episode as of load time."""
        return self.items[0] if self.items else None


def is_new(activity_id: str, feed: OutputFeed) -> bool:
    """Check whether an activity comes after the latest published episode.

    Returns True for an empty feed. False means the activity was already
    processed and the run should stop.
    """
    latest = feed.latest
    if latest is None:
        return True
    latest_activity_id = latest.activity_id
    logger.debug(f"Novelty check: activity_id={activity_id}, latest={latest_activity_id}")
    return activity_id != latest_activity_id


class OutputFeedStore:
    """Reads, updates and republishes the podcast feed document.

    Example:
        store = OutputFeedStore(transfer, "dcc_audio.xml", "./tmp")
        feed = store.load(config.output_feed_url)
        if store.is_new(activity_id, feed):
            store.append(feed, episode, "./tmp/1616096362038_548471.mp3")
    """

    def __init__(
        self,
        transfer,
        feed_key: str,
        work_directory: str,
        channel_defaults: Optional[dict] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 60,
    ):
        """Initialize the store.

        Args:
            transfer: MediaTransfer used to publish the feed.
            feed_key: Object key of the feed document.
            work_directory: Directory where the serialized feed is staged.
            channel_defaults: Channel metadata used when no feed exists yet.
            session: requests session used to read the published feed.
            timeout: Request timeout in seconds.
        """
        self.transfer = transfer
        self.feed_key = feed_key
        self.work_directory = work_directory
        self.channel_defaults = channel_defaults or {}
        self.timeout = timeout
        self._session = session or transfer.session

    def load(self, feed_url: str) -> OutputFeed:
        """Fetch and parse the published feed.

        A missing (404) or empty document yields a feed with no items.

        Raises:
            FeedUnavailable: If the request fails or the document is not a feed.
        """
        logger.info(f"Loading podcast feed: {feed_url}")

        try:
            response = self._session.get(feed_url, timeout=self.timeout)
            if response.status_code == 404:
                logger.info("Podcast feed does not exist yet; starting empty")
                return self._empty_feed(feed_url)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FeedUnavailable(f"Failed to fetch podcast feed {feed_url}: {e}") from e

        if not response.content or not response.content.strip():
            logger.info("Podcast feed is empty; starting empty")
            return self._empty_feed(feed_url)

        feed = self.parse_string(response.content, feed_url)
        logger.info(f"Podcast feed has {len(feed.items)} episodes")
        return feed

    def parse_string(self, content, feed_url: Optional[str] = None) -> OutputFeed:
        """Parse a feed document into an OutputFeed.

        Raises:
            FeedUnavailable: If the content is not an RSS/Atom document.
        """
        parsed = feedparser.parse(content)

        if parsed.bozo and parsed.bozo_exception:
            logger.warning(f"Feed parsing warning: {parsed.bozo_exception}")

        if not parsed.version and not parsed.entries:
            raise FeedUnavailable(f"Failed to parse podcast feed: {feed_url}")

        f = parsed.feed
        feed = self._empty_feed(feed_url)
        feed.title = f.get("title") or feed.title
        feed.link = f.get("link") or feed.link
        feed.description = f.get("subtitle") or f.get("description") or feed.description
        feed.language = f.get("language") or feed.language
        feed.author = f.get("author") or f.get("itunes_author") or feed.author
        image = f.get("image")
        if isinstance(image, dict) and (image.get("href") or image.get("url")):
            feed.image_url = image.get("href") or image.get("url")

        for entry in parsed.entries:
            feed.items.append(self._parse_entry(entry))

        return feed

    def _empty_feed(self, feed_url: Optional[str]) -> OutputFeed:
        defaults = self.channel_defaults
        return OutputFeed(
            title=defaults.get("title") or "Podcast",
            link=defaults.get("link"),
            description=defaults.get("description"),
            language=defaults.get("language"),
            author=defaults.get("author"),
            image_url=defaults.get("image_url"),
            feed_url=feed_url or defaults.get("feed_url"),
        )

    def _parse_entry(self, entry: feedparser.FeedParserDict) -> Episode:
        enclosure_url = None
        enclosure_size = None
        enclosure_type = "audio/mpeg"
        for enclosure in entry.get("enclosures", []):
            enclosure_url = enclosure.get("href") or enclosure.get("url")
            enclosure_type = enclosure.get("type") or enclosure_type
            if enclosure.get("length"):
                try:
                    enclosure_size = int(enclosure.get("length"))
                except (ValueError, TypeError):
                    pass
            break

        description = entry.get("description") or entry.get("summary")
        return Episode(
            title=entry.get("title") or "Untitled Episode",
            link=entry.get("link"),
            guid=entry.get("id") or entry.get("guid") or entry.get("link") or "",
            content=description,
            pub_date=entry.get("published"),
            enclosure_url=enclosure_url,
            enclosure_size_bytes=enclosure_size,
            enclosure_type=enclosure_type,
            explicit=self._parse_explicit(entry.get("itunes_explicit")),
            summary=entry.get("summary") or description,
        )

    def _parse_explicit(self, value) -> bool:
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        return str(value).lower().strip() in ("yes", "true", "explicit")

    def is_new(self, activity_id: str, feed: OutputFeed) -> bool:
        """See :func:`is_new`."""
        return is_new(activity_id, feed)

    def append(
        self,
        feed: OutputFeed,
        episode: Episode,
        local_audio_file: str,
        audio_key: Optional[str] = None,
    ) -> None:
        """Register an episode whose audio was uploaded and republish the feed.

        Sets the enclosure to the public URL of ``audio_key`` (default: the
        audio file's base name) and to the local file's byte size. The
        in-memory feed keeps the episode even if publishing fails.

        Raises:
            FeedWriteError: If sizing, serialization or the upload fails.
        """
        audio_key = audio_key or os.path.basename(local_audio_file)
        try:
            episode.enclosure_size_bytes = os.path.getsize(local_audio_file)
        except OSError as e:
            raise FeedWriteError(f"Cannot size audio file {local_audio_file}: {e}") from e
        episode.enclosure_url = self.transfer.public_url(audio_key)

        feed.new_items.append(episode)
        logger.info(f"Adding episode '{episode.title}' ({episode.guid}) to podcast feed")

        path = None
        try:
            path = self.write(feed)
            self.transfer.upload(path, self.feed_key)
        except (PipelineError, OSError, TypeError, ValueError) as e:
            raise FeedWriteError(f"Failed to publish podcast feed {self.feed_key}: {e}") from e
        finally:
            if path:
                self._remove_staged(path)

    def _remove_staged(self, path: str) -> None:
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to delete staged feed {path}: {e}")

    def write(self, feed: OutputFeed) -> str:
        """Serialize the feed to the work directory and return the path.

        The caller owns the file; ``append`` removes it after the upload.
        """
        os.makedirs(self.work_directory, exist_ok=True)
        path = os.path.join(self.work_directory, os.path.basename(self.feed_key))
        with open(path, "wb") as f:
            f.write(self.to_xml(feed))
        return path

    def to_xml(self, feed: OutputFeed) -> bytes:
        """Serialize the feed as an RSS 2.0 document with iTunes extensions."""
        rss = ET.Element("rss", {"version": "2.0"})
        channel = ET.SubElement(rss, "channel")

        _text(channel, "title", feed.title)
        _text(channel, "link", feed.link)
        _text(channel, "description", feed.description)
        _text(channel, "language", feed.language)
        if feed.feed_url:
            ET.SubElement(
                channel,
                f"{{{ATOM_NS}}}link",
                {"href": feed.feed_url, "rel": "self", "type": "application/rss+xml"},
            )
        _text(channel, "lastBuildDate", format_datetime(datetime.now(timezone.utc)))
        _text(channel, f"{{{ITUNES_NS}}}author", feed.author)
        if feed.image_url:
            image = ET.SubElement(channel, "image")
            _text(image, "url", feed.image_url)
            _text(image, "title", feed.title)
            _text(image, "link", feed.link)
            ET.SubElement(channel, f"{{{ITUNES_NS}}}image", {"href": feed.image_url})

        for episode in feed.episodes:
            self._episode_element(channel, episode)

        ET.indent(rss, space="\t")
        return ET.tostring(rss, encoding="utf-8", xml_declaration=True)

    def _episode_element(self, channel: ET.Element, episode: Episode) -> ET.Element:
        item = ET.SubElement(channel, "item")
        _text(item, "title", episode.title)
        _text(item, "description", episode.content)
        _text(item, "link", episode.link)
        guid = ET.SubElement(item, "guid", {"isPermaLink": "false"})
        guid.text = episode.guid
        _text(item, "pubDate", episode.pub_date)
        if episode.enclosure_url:
            ET.SubElement(
                item,
                "enclosure",
                {
                    "url": episode.enclosure_url,
                    "length": str(episode.enclosure_size_bytes or 0),
                    "type": episode.enclosure_type,
                },
            )
        _text(item, f"{{{ITUNES_NS}}}explicit", "yes" if episode.explicit else "no")
        _text(item, f"{{{ITUNES_NS}}}summary", episode.summary)
        return item


def _text(parent: ET.Element, tag: str, value: Optional[str]) -> Optional[ET.Element]:
    if value is None:
        return None
    element = ET.SubElement(parent, tag)
    element.text = value
    return element
