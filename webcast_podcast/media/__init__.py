"""Media stages: transfer, transcoding and transcription."""

from .transfer import MediaTransfer
from .transcoder import Transcoder
from .transcriber import Transcriber, stitch_transcript

__all__ = [
    "MediaTransfer",
    "Transcoder",
    "Transcriber",
    "stitch_transcript",
]
