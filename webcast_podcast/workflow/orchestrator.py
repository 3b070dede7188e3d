"""Single-shot orchestrator turning new webcast recordings into podcast episodes.

For each source item, newest first:
resolve → availability → novelty → fetch → transcode → publish → register
→ cleanup → transcribe. Any stage failure aborts the whole run.
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, List, Optional

from webcast_podcast.config import Config
from webcast_podcast.errors import PipelineError
from webcast_podcast.feeds.output_feed import Episode, OutputFeed, OutputFeedStore
from webcast_podcast.feeds.source_reader import SourceFeedReader, SourceItem
from webcast_podcast.media.transcoder import Transcoder
from webcast_podcast.media.transcriber import Transcriber
from webcast_podcast.media.transfer import MediaTransfer
from webcast_podcast.policy import is_available

logger = logging.getLogger(__name__)


class ItemState(str, Enum):
    """Lifecycle of a source item within a run."""

    DISCOVERED = "discovered"
    RESOLVED = "resolved"
    SKIPPED = "skipped"  # recording unavailable
    STOPPED = "stopped"  # already published, ends the run
    FETCHED = "fetched"
    TRANSCODED = "transcoded"
    PUBLISHED = "published"
    REGISTERED = "registered"
    CLEANED_UP = "cleaned_up"
    TRANSCRIBED = "transcribed"


@dataclass
class ResolvedMedia:
    """Media locations for one source item. Scratch paths live for one item only."""

    activity_id: str
    video_url: str
    local_video_path: str
    local_audio_path: str
    available: bool = True
    state: ItemState = ItemState.RESOLVED

    @property
    def audio_key(self) -> str:
        """Object key of the episode audio."""
        return os.path.basename(self.local_audio_path)


@dataclass
class PipelineStats:
    """Statistics for a pipeline run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stopped_at: Optional[datetime] = None

    # Counters
    items_seen: int = 0
    episodes_published: int = 0
    skipped_unavailable: int = 0
    transcripts_created: int = 0

    published_activity_ids: List[str] = field(default_factory=list)
    stopped_on: Optional[str] = None  # activity id of the first already-published item

    @property
    def duration_seconds(self) -> float:
        """Duration of the run in seconds."""
        end = self.stopped_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()


class PipelineOrchestrator:
    """Drives the ingestion pipeline over the source feed.

    All stages run sequentially on the calling thread, one item at a time.
    The output feed is loaded once and updated once per published episode.

    Example:
        config = Config()
        transfer = MediaTransfer.from_config(config)
        orchestrator = PipelineOrchestrator(
            config=config,
            source_reader=SourceFeedReader(session=transfer.session),
            feed_store=OutputFeedStore(transfer, config.OUTPUT_FEED_KEY, config.SCRATCH_DIRECTORY),
            transfer=transfer,
            transcoder=Transcoder.from_config(config),
        )
        stats = orchestrator.run()
    """

    def __init__(
        self,
        config: Config,
        source_reader: SourceFeedReader,
        feed_store: OutputFeedStore,
        transfer: MediaTransfer,
        transcoder: Transcoder,
        transcriber: Optional[Transcriber] = None,
        availability_check: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the orchestrator.

        Args:
            config: Application configuration.
            source_reader: Reader for the upstream activity feed.
            feed_store: Store for the output podcast feed.
            transfer: Downloads, uploads and redirect resolution.
            transcoder: Video to audio conversion.
            transcriber: Optional speech-to-text stage; skipped when None.
            availability_check: Predicate on resolved video URLs; defaults to
                the marker check with the configured marker.
            clock: Source of the timestamp used in scratch file names.
        """
        self.config = config
        self.source_reader = source_reader
        self.feed_store = feed_store
        self.transfer = transfer
        self.transcoder = transcoder
        self.transcriber = transcriber
        self.availability_check = availability_check or (
            lambda url: is_available(url, config.UNAVAILABLE_MARKER)
        )
        self.clock = clock

    def run(self) -> PipelineStats:
        """Process new recordings until the first already-published one.

        Returns:
            PipelineStats with run statistics.

        Raises:
            PipelineError: The first stage failure; nothing after it runs.
        """
        logger.info("Starting webcast podcast pipeline")
        stats = PipelineStats()

        try:
            with self._stage("load source feed"):
                source_items = self.source_reader.fetch_source_items(self.config.SOURCE_FEED_URL)
            with self._stage("load podcast feed"):
                feed = self.feed_store.load(self.config.output_feed_url)

            for item in source_items:
                stats.items_seen += 1
                media = self._resolve(item)

                if not media.available:
                    media.state = ItemState.SKIPPED
                    stats.skipped_unavailable += 1
                    logger.info(f"Activity {media.activity_id} is not available, skipping")
                    continue

                if not self.feed_store.is_new(media.activity_id, feed):
                    media.state = ItemState.STOPPED
                    stats.stopped_on = media.activity_id
                    logger.info(f"Activity {media.activity_id} already published, stopping")
                    break

                self._process_item(item, media, feed, stats)
        finally:
            stats.stopped_at = datetime.now(UTC)
            logger.info(
                f"Pipeline finished: seen={stats.items_seen}, "
                f"published={stats.episodes_published}, "
                f"skipped={stats.skipped_unavailable}, "
                f"transcribed={stats.transcripts_created}, "
                f"duration={stats.duration_seconds:.1f}s"
            )

        return stats

    @contextmanager
    def _stage(self, name: str, activity_id: Optional[str] = None):
        """Log a stage failure with its context and let it propagate."""
        try:
            yield
        except PipelineError as e:
            where = f" for activity {activity_id}" if activity_id else ""
            logger.error(f"Stage '{name}' failed{where}: {type(e).__name__}: {e}")
            raise

    def _scratch_paths(self, activity_id: str) -> tuple[str, str]:
        timestamp = int(self.clock() * 1000)
        base = os.path.join(self.config.SCRATCH_DIRECTORY, f"{timestamp}_{activity_id}")
        return f"{base}.mp4", f"{base}.mp3"

    def _resolve(self, item: SourceItem) -> ResolvedMedia:
        """Resolve the concrete video URL for a source item."""
        activity_id = item.activity_id
        redirect_url = self.config.build_redirect_url(activity_id)

        with self._stage("resolve", activity_id):
            video_url = self.transfer.resolve_redirect(redirect_url)

        video_path, audio_path = self._scratch_paths(activity_id)
        return ResolvedMedia(
            activity_id=activity_id,
            video_url=video_url,
            local_video_path=video_path,
            local_audio_path=audio_path,
            available=self.availability_check(video_url),
        )

    def _process_item(
        self,
        item: SourceItem,
        media: ResolvedMedia,
        feed: OutputFeed,
        stats: PipelineStats,
    ) -> None:
        """Run fetch → transcode → publish → register → cleanup → transcribe."""
        activity_id = media.activity_id
        logger.info(f"Processing activity {activity_id}: {item.title}")
        episode = Episode.from_source_item(item, activity_id)

        try:
            with self._stage("fetch", activity_id):
                self.transfer.download(media.video_url, media.local_video_path)
            media.state = ItemState.FETCHED

            with self._stage("transcode", activity_id):
                self.transcoder.convert(media.local_video_path, media.local_audio_path)
            media.state = ItemState.TRANSCODED

            with self._stage("publish", activity_id):
                self.transfer.upload(media.local_audio_path, media.audio_key)
            media.state = ItemState.PUBLISHED

            with self._stage("register", activity_id):
                self.feed_store.append(feed, episode, media.local_audio_path, media.audio_key)
            media.state = ItemState.REGISTERED
            stats.episodes_published += 1
            stats.published_activity_ids.append(activity_id)

            logger.info(f"Removing downloaded video {media.local_video_path}")
            self._remove_file(media.local_video_path)
            media.state = ItemState.CLEANED_UP

            if self.transcriber is not None:
                with self._stage("transcribe", activity_id):
                    self.transcriber.transcribe(media.local_audio_path)
                media.state = ItemState.TRANSCRIBED
                stats.transcripts_created += 1
        finally:
            self._discard_scratch(media)

    def _discard_scratch(self, media: ResolvedMedia) -> None:
        """Release whatever scratch files the item still holds."""
        for path in (media.local_video_path, media.local_audio_path):
            self._remove_file(path)

    def _remove_file(self, path: str) -> None:
        """Best-effort delete; failures are logged, never raised."""
        if not os.path.exists(path):
            return
        try:
            os.remove(path)
            logger.debug(f"Removed {path}")
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
