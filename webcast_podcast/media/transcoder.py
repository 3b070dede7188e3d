"""FFmpeg-based transcoder that strips the video stream from a recording.

ffmpeg runs with ``-progress pipe:1`` so progress arrives as key=value
lines on stdout; a run only counts as successful when ffmpeg reports
``progress=end`` and exits with status 0.
"""

import logging
import os
import subprocess
from typing import Callable, List, Optional

from ..errors import TranscodeError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def log_progress(percent: float) -> None:
    """Default progress observer: narrate the percentage to the log."""
    logger.info(f"Processing: {percent:.1f}% done")


class Transcoder:
    """Converts a video file to an audio-only file using ffmpeg.

    Example:
        transcoder = Transcoder(progress_callback=log_progress)
        transcoder.convert("tmp/1616096362038_548471.mp4", "tmp/1616096362038_548471.mp3")
    """

    PROBE_TIMEOUT = 60

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        audio_codec: Optional[str] = "libmp3lame",
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize the transcoder.

        Args:
            ffmpeg_path: ffmpeg executable.
            ffprobe_path: ffprobe executable, used to learn the input duration.
            audio_codec: Audio encoder; None lets ffmpeg pick from the extension.
            progress_callback: Called with a percentage as transcoding advances.
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.audio_codec = audio_codec
        self.progress_callback = progress_callback

    @classmethod
    def from_config(cls, config, progress_callback=log_progress) -> "Transcoder":
        return cls(
            ffmpeg_path=config.FFMPEG_PATH,
            ffprobe_path=config.FFPROBE_PATH,
            audio_codec=config.AUDIO_CODEC or None,
            progress_callback=progress_callback,
        )

    def probe_duration(self, input_path: str) -> Optional[float]:
        """Return the duration of a media file in seconds, or None if unknown."""
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            input_path,
        ]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.PROBE_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"ffprobe failed for {input_path}: {e}")
            return None

        if result.returncode != 0:
            logger.warning(f"ffprobe failed for {input_path}: {result.stderr.strip()}")
            return None

        try:
            duration = float(result.stdout.strip())
        except ValueError:
            return None
        return duration if duration > 0 else None

    def build_command(self, input_path: str, output_path: str) -> List[str]:
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-nostats",
            "-loglevel", "error",
            "-i", input_path,
            "-vn",  # No video
        ]
        if self.audio_codec:
            cmd += ["-c:a", self.audio_codec]
        cmd += ["-progress", "pipe:1", output_path]
        return cmd

    def convert(self, input_path: str, output_path: str) -> None:
        """Drop the video stream from ``input_path`` and write the audio to ``output_path``.

        Blocks until ffmpeg exits. Progress is reported to the callback as
        a percentage when the input duration is known.

        Raises:
            TranscodeError: If ffmpeg cannot start, exits non-zero, or ends
                without reporting a clean end of stream.
        """
        logger.info(f"Converting {input_path} -> {output_path}")
        duration = self.probe_duration(input_path)
        cmd = self.build_command(input_path, output_path)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise TranscodeError(f"Could not start ffmpeg ({self.ffmpeg_path}): {e}") from e

        ended = False
        errors = []
        for line in process.stdout:
            key, sep, value = line.strip().partition("=")
            if not sep:
                if line.strip():
                    errors.append(line.strip())
                continue
            # out_time_ms is microseconds too; older builds only emit that key
            if key in ("out_time_us", "out_time_ms"):
                self._report(value, duration)
            elif key == "progress" and value == "end":
                ended = True

        returncode = process.wait()

        if returncode != 0:
            detail = "; ".join(errors[-5:]) or "no error output"
            raise TranscodeError(f"ffmpeg exited with status {returncode}: {detail}")
        if not ended:
            raise TranscodeError(f"ffmpeg did not report end of stream for {input_path}")
        if not os.path.exists(output_path):
            raise TranscodeError(f"ffmpeg produced no output at {output_path}")

        if self.progress_callback:
            self.progress_callback(100.0)
        logger.info(f"Conversion ended: {output_path}")

    def _report(self, out_time_us: str, duration: Optional[float]) -> None:
        if not self.progress_callback or not duration:
            return
        try:
            elapsed = int(out_time_us) / 1_000_000
        except ValueError:
            return
        percent = max(0.0, min(100.0, elapsed / duration * 100))
        self.progress_callback(percent)
