"""Error types raised by the webcast-to-podcast pipeline.

Every stage failure surfaces as one of these and aborts the run.
"""


class PipelineError(Exception):
    """Base class for all pipeline stage failures."""


class FeedUnavailable(PipelineError):
    """A feed could not be fetched or parsed."""


class TransferError(PipelineError):
    """A download, upload or redirect resolution failed."""


class TranscodeError(PipelineError):
    """The transcoder did not finish cleanly."""


class FeedWriteError(PipelineError):
    """The output feed could not be serialized or published."""


class TranscriptionError(PipelineError):
    """The speech-to-text service call failed."""
