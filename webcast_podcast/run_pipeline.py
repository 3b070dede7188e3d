"""Webcast podcast pipeline entry point.

Runs one pass over the upstream feed and exits. Intended to be triggered
by an external scheduler (cron, a periodic job, ...).
"""

import logging
import sys

from webcast_podcast.argparse_shared import add_log_level_argument, get_base_parser
from webcast_podcast.config import Config
from webcast_podcast.errors import PipelineError
from webcast_podcast.feeds.output_feed import OutputFeedStore
from webcast_podcast.feeds.source_reader import SourceFeedReader
from webcast_podcast.media.transcoder import Transcoder
from webcast_podcast.media.transcriber import Transcriber
from webcast_podcast.media.transfer import MediaTransfer
from webcast_podcast.workflow.orchestrator import PipelineOrchestrator


def build_orchestrator(config: Config) -> PipelineOrchestrator:
    """Wire the pipeline components from configuration.

    Args:
        config: Application configuration.

    Returns:
        A ready-to-run PipelineOrchestrator.
    """
    transfer = MediaTransfer.from_config(config)
    source_reader = SourceFeedReader(
        session=transfer.session,
        timeout=config.HTTP_TIMEOUT,
    )
    feed_store = OutputFeedStore(
        transfer=transfer,
        feed_key=config.OUTPUT_FEED_KEY,
        work_directory=config.SCRATCH_DIRECTORY,
        channel_defaults=config.channel_defaults(),
        timeout=config.HTTP_TIMEOUT,
    )

    transcriber = None
    if config.transcription_enabled:
        transcriber = Transcriber.from_config(config, transfer)
    else:
        logging.info("Transcription disabled (speech service not configured)")

    return PipelineOrchestrator(
        config=config,
        source_reader=source_reader,
        feed_store=feed_store,
        transfer=transfer,
        transcoder=Transcoder.from_config(config),
        transcriber=transcriber,
    )


def main(argv=None) -> int:
    parser = get_base_parser()
    add_log_level_argument(parser)
    args = parser.parse_args(argv)

    # Set up logging - log to stdout for the scheduler's log capture
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )
    # boto3 and urllib3 are chatty on INFO
    if args.log_level.upper() == "INFO":
        for name in ("boto3", "botocore", "urllib3"):
            logging.getLogger(name).setLevel("WARNING")

    try:
        config = Config(env_file=args.env_file)
        config.validate()
    except ValueError as e:
        logging.error(f"Invalid configuration: {e}")
        return 2

    orchestrator = build_orchestrator(config)

    try:
        stats = orchestrator.run()
    except PipelineError as e:
        logging.error(f"Pipeline aborted: {type(e).__name__}: {e}")
        return 1
    except Exception:
        logging.exception("Pipeline error")
        return 1
    finally:
        orchestrator.transfer.close()

    logging.info(
        f"Pipeline complete: "
        f"{stats.episodes_published} published, "
        f"{stats.skipped_unavailable} unavailable, "
        f"{stats.transcripts_created} transcribed"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
