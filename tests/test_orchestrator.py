"""Tests for the pipeline orchestrator.

Runs the real feed store against an in-memory object store so published
feeds can be loaded again by a later run.
"""

import itertools
import os

import pytest
from unittest.mock import Mock

from webcast_podcast.config import Config
from webcast_podcast.errors import FeedUnavailable, TranscodeError, TransferError
from webcast_podcast.feeds.output_feed import OutputFeedStore
from webcast_podcast.feeds.source_reader import SourceItem
from webcast_podcast.workflow.orchestrator import (
    ItemState,
    PipelineOrchestrator,
    PipelineStats,
    ResolvedMedia,
)

PUBLIC_BASE = "https://test-space.ams3.digitaloceanspaces.com"
PORTAL = "https://dublincity.public-i.tv/core/portal/webcast_interactive"


class FakeTransfer:
    """In-memory stand-in for MediaTransfer."""

    def __init__(self, unavailable=()):
        self.objects = {}
        self.uploads = []
        self.downloads = []
        self.unavailable = set(unavailable)
        self.session = Mock()
        self.session.get.side_effect = self._get

    def _get(self, url, **kwargs):
        key = url[len(PUBLIC_BASE) + 1:]
        if url.startswith(PUBLIC_BASE) and key in self.objects:
            return Mock(status_code=200, content=self.objects[key])
        return Mock(status_code=404)

    def public_url(self, key):
        return f"{PUBLIC_BASE}/{key}"

    def resolve_redirect(self, url):
        activity_id = url.split("/")[-2]
        if activity_id in self.unavailable:
            return "https://dublincity.public-i.tv/video/not-available"
        return f"https://cdn.example.com/{activity_id}/video.mp4"

    def download(self, remote_url, local_path):
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        with open(local_path, "wb") as f:
            f.write(b"video")
        self.downloads.append(remote_url)
        return 5

    def upload(self, local_path, remote_key):
        with open(local_path, "rb") as f:
            self.objects[remote_key] = f.read()
        self.uploads.append(remote_key)
        return self.public_url(remote_key)

    def close(self):
        pass


class FakeTranscoder:
    """Writes an audio file whose size depends on the activity."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.converted = []

    def convert(self, input_path, output_path):
        activity_id = os.path.basename(input_path).split(".")[0].split("_")[1]
        if activity_id == self.fail_on:
            raise TranscodeError(f"ffmpeg exited with status 1 for {input_path}")
        with open(output_path, "wb") as f:
            f.write(b"audio-" + activity_id.encode() * 3)
        self.converted.append(activity_id)


def source_item(activity_id, title=None):
    link = f"{PORTAL}/{activity_id}"
    return SourceItem(
        title=title or f"Meeting {activity_id}",
        link=link,
        content=f"Agenda for {activity_id}",
        guid=link,
        pub_date="Mon, 01 Mar 2021 18:30:00 +0000",
    )


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    scratch = tmp_path / "scratch"
    monkeypatch.setenv("SCRATCH_DIRECTORY", str(scratch))
    return scratch


@pytest.fixture
def config(scratch):
    return Config()


@pytest.fixture
def transfer():
    return FakeTransfer()


def make_orchestrator(config, transfer, items, transcoder=None, transcriber=None):
    source_reader = Mock()
    source_reader.fetch_source_items.return_value = list(items)
    feed_store = OutputFeedStore(
        transfer=transfer,
        feed_key=config.OUTPUT_FEED_KEY,
        work_directory=config.SCRATCH_DIRECTORY,
        channel_defaults=config.channel_defaults(),
    )
    ticks = itertools.count(1616096362)
    return PipelineOrchestrator(
        config=config,
        source_reader=source_reader,
        feed_store=feed_store,
        transfer=transfer,
        transcoder=transcoder or FakeTranscoder(),
        transcriber=transcriber,
        clock=lambda: next(ticks),
    )


def published_feed(config, transfer):
    store = OutputFeedStore(transfer, config.OUTPUT_FEED_KEY, config.SCRATCH_DIRECTORY)
    return store.parse_string(transfer.objects[config.OUTPUT_FEED_KEY])


def scratch_media(scratch):
    if not scratch.exists():
        return []
    return [p.name for p in scratch.iterdir() if p.suffix in (".mp4", ".mp3")]


class TestRun:
    """Tests for a full pipeline run."""

    def test_publishes_new_items_in_source_order(self, config, transfer, scratch):
        items = [source_item("548999"), source_item("548800"), source_item("548470")]

        stats = make_orchestrator(config, transfer, items).run()

        assert stats.items_seen == 3
        assert stats.episodes_published == 3
        assert stats.published_activity_ids == ["548999", "548800", "548470"]
        feed = published_feed(config, transfer)
        assert [e.activity_id for e in feed.items] == ["548999", "548800", "548470"]
        assert feed.title == "Dublin City Council Meetings"

    def test_audio_published_before_feed(self, config, transfer, scratch):
        stats = make_orchestrator(config, transfer, [source_item("548999")]).run()

        assert stats.episodes_published == 1
        assert len(transfer.uploads) == 2
        assert transfer.uploads[0].endswith("_548999.mp3")
        assert transfer.uploads[1] == "dcc_audio.xml"

    def test_enclosure_matches_uploaded_audio(self, config, transfer, scratch):
        make_orchestrator(config, transfer, [source_item("548999"), source_item("548800")]).run()

        for episode in published_feed(config, transfer).items:
            key = episode.enclosure_url[len(PUBLIC_BASE) + 1:]
            assert episode.enclosure_size_bytes == len(transfer.objects[key])
            assert key.endswith(f"_{episode.activity_id}.mp3")
            assert episode.enclosure_type == "audio/mpeg"

    def test_stops_at_latest_published(self, config, transfer, scratch):
        """Test that the run ends at the first already-published activity."""
        make_orchestrator(config, transfer, [source_item("548470")]).run()
        transfer.uploads.clear()
        transcoder = FakeTranscoder()
        items = [source_item("548999"), source_item("548470"), source_item("548100")]

        stats = make_orchestrator(config, transfer, items, transcoder=transcoder).run()

        assert stats.published_activity_ids == ["548999"]
        assert stats.stopped_on == "548470"
        assert stats.items_seen == 2
        assert transcoder.converted == ["548999"]
        assert not any("548100" in url for url in transfer.downloads)
        feed = published_feed(config, transfer)
        assert [e.activity_id for e in feed.items] == ["548999", "548470"]

    def test_second_run_is_a_no_op(self, config, transfer, scratch):
        items = [source_item("548999"), source_item("548800")]
        make_orchestrator(config, transfer, items).run()
        feed_before = transfer.objects["dcc_audio.xml"]
        uploads_before = list(transfer.uploads)

        stats = make_orchestrator(config, transfer, items).run()

        assert stats.episodes_published == 0
        assert stats.stopped_on == "548999"
        assert transfer.uploads == uploads_before
        assert transfer.objects["dcc_audio.xml"] == feed_before

    def test_unavailable_item_skipped(self, config, scratch):
        """Test that an unavailable recording is skipped without ending the run."""
        transfer = FakeTransfer(unavailable={"548999"})
        items = [source_item("548999"), source_item("548800")]

        stats = make_orchestrator(config, transfer, items).run()

        assert stats.skipped_unavailable == 1
        assert stats.published_activity_ids == ["548800"]
        assert [e.activity_id for e in published_feed(config, transfer).items] == ["548800"]
        assert len(transfer.downloads) == 1

    def test_unavailable_latest_does_not_stop(self, config, scratch):
        """Test that availability is checked before novelty."""
        transfer = FakeTransfer()
        make_orchestrator(config, transfer, [source_item("548470")]).run()
        transfer.unavailable.add("548470")

        stats = make_orchestrator(
            config, transfer, [source_item("548470"), source_item("548100")]
        ).run()

        assert stats.skipped_unavailable == 1
        assert stats.stopped_on is None
        assert stats.published_activity_ids == ["548100"]

    def test_empty_source_feed(self, config, transfer, scratch):
        stats = make_orchestrator(config, transfer, []).run()

        assert stats.items_seen == 0
        assert transfer.uploads == []

    def test_scratch_released(self, config, transfer, scratch):
        make_orchestrator(config, transfer, [source_item("548999"), source_item("548800")]).run()

        assert scratch_media(scratch) == []
        assert list(scratch.iterdir()) == []


class TestFailures:
    """Tests for aborting on stage failures."""

    def test_transcode_failure_aborts_run(self, config, transfer, scratch, caplog):
        transcoder = FakeTranscoder(fail_on="548800")
        items = [source_item("548999"), source_item("548800"), source_item("548470")]
        orchestrator = make_orchestrator(config, transfer, items, transcoder=transcoder)

        with pytest.raises(TranscodeError):
            orchestrator.run()

        assert transcoder.converted == ["548999"]
        assert [e.activity_id for e in published_feed(config, transfer).items] == ["548999"]
        assert not any("548470" in url for url in transfer.downloads)
        assert "Stage 'transcode' failed for activity 548800" in caplog.text
        assert scratch_media(scratch) == []

    def test_publish_failure_leaves_feed_untouched(self, config, transfer, scratch):
        def reject(local_path, remote_key):
            raise TransferError(f"Upload of {remote_key} failed: AccessDenied")

        transfer.upload = reject

        with pytest.raises(TransferError):
            make_orchestrator(config, transfer, [source_item("548999")]).run()

        assert "dcc_audio.xml" not in transfer.objects
        assert scratch_media(scratch) == []

    def test_source_feed_unavailable(self, config, transfer, scratch):
        orchestrator = make_orchestrator(config, transfer, [])
        orchestrator.source_reader.fetch_source_items.side_effect = FeedUnavailable("down")

        with pytest.raises(FeedUnavailable):
            orchestrator.run()

        transfer.session.get.assert_not_called()

    def test_resolve_failure(self, config, transfer, scratch, caplog):
        transfer.resolve_redirect = Mock(side_effect=TransferError("Failed to resolve"))

        with pytest.raises(TransferError):
            make_orchestrator(config, transfer, [source_item("548999")]).run()

        assert "Stage 'resolve' failed for activity 548999" in caplog.text


class TestTranscription:
    """Tests for the optional transcription stage."""

    def test_transcribes_current_audio(self, config, transfer, scratch):
        seen = []

        def transcribe(audio_path):
            assert os.path.exists(audio_path)
            seen.append(os.path.basename(audio_path))
            return os.path.basename(audio_path).split(".")[0]

        transcriber = Mock()
        transcriber.transcribe.side_effect = transcribe
        items = [source_item("548999"), source_item("548800")]

        stats = make_orchestrator(config, transfer, items, transcriber=transcriber).run()

        assert stats.transcripts_created == 2
        assert len(seen) == 2
        assert seen[0].endswith("_548999.mp3")
        assert seen[1].endswith("_548800.mp3")
        assert seen[0] == transfer.uploads[0]
        assert scratch_media(scratch) == []

    def test_video_removed_before_transcription(self, config, transfer, scratch):
        def transcribe(audio_path):
            assert not os.path.exists(audio_path[: -len(".mp3")] + ".mp4")

        transcriber = Mock()
        transcriber.transcribe.side_effect = transcribe

        stats = make_orchestrator(
            config, transfer, [source_item("548999")], transcriber=transcriber
        ).run()

        assert stats.transcripts_created == 1

    def test_no_transcriber(self, config, transfer, scratch):
        stats = make_orchestrator(config, transfer, [source_item("548999")]).run()

        assert stats.transcripts_created == 0


class TestModels:
    def test_scratch_paths(self, config, transfer, scratch):
        orchestrator = make_orchestrator(config, transfer, [])

        video, audio = orchestrator._scratch_paths("548471")

        assert video == os.path.join(str(scratch), "1616096362000_548471.mp4")
        assert audio == os.path.join(str(scratch), "1616096362000_548471.mp3")

    def test_resolved_media_audio_key(self):
        media = ResolvedMedia(
            activity_id="548471",
            video_url="https://cdn.example.com/548471/video.mp4",
            local_video_path="tmp/1616096362038_548471.mp4",
            local_audio_path="tmp/1616096362038_548471.mp3",
        )

        assert media.audio_key == "1616096362038_548471.mp3"
        assert media.state == ItemState.RESOLVED

    def test_stats_duration(self):
        stats = PipelineStats()
        stats.stopped_at = stats.started_at

        assert stats.duration_seconds == 0.0
