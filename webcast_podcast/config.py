import os
from typing import Optional

from dotenv import load_dotenv


def _get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
) -> int:
    """Parse an integer from an environment variable with validation.

    Args:
        name: Environment variable name.
        default: Default value if env var is not set.
        min_val: Minimum allowed value (inclusive), or None for no minimum.

    Returns:
        The parsed and validated integer value.

    Raises:
        ValueError: If the value cannot be parsed as an integer or is out of range.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for {name}: '{raw}' is not a valid integer"
        )

    if min_val is not None and value < min_val:
        raise ValueError(
            f"Invalid value for {name}: {value} must be >= {min_val}"
        )

    return value


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    def __init__(self, env_file=None):
        """
        Initialize configuration by loading environment variables and setting default attributes.

        Loads environment variables from the provided .env file path when `env_file` is given;
        otherwise loads from the default environment. After loading, sets the feed locations,
        object store credentials, speech service settings, scratch paths, transcoder binaries
        and podcast channel defaults.

        Parameters:
            env_file (str | None): Optional path to a .env file to load environment variables from.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Upstream webcast feed
        self.SOURCE_FEED_URL = os.getenv(
            "SOURCE_FEED_URL", "https://dublincity.public-i.tv/core/data/7844"
        )
        self.WEBCAST_REDIRECT_URL = os.getenv(
            "WEBCAST_REDIRECT_URL",
            "https://dublincity.public-i.tv/core/redirect/download_webcast/{activity_id}/video.mp4",
        )
        # Substring of the resolved video URL when a recording was withdrawn
        self.UNAVAILABLE_MARKER = os.getenv("UNAVAILABLE_MARKER", "not-available")

        # Output podcast feed
        self.OUTPUT_FEED_KEY = os.getenv("OUTPUT_FEED_KEY", "dcc_audio.xml")

        # Local working directories
        self.SCRATCH_DIRECTORY = os.getenv("SCRATCH_DIRECTORY", "./tmp")
        self.TRANSCRIPT_DIRECTORY = os.getenv("TRANSCRIPT_DIRECTORY", "./transcripts")

        # Object store (DigitalOcean Spaces or any S3-compatible endpoint)
        self.SPACES_ENDPOINT = os.getenv("SPACES_ENDPOINT", "")
        self.SPACES_BUCKET = os.getenv("SPACES_BUCKET", "")
        self.SPACES_KEY = os.getenv("SPACES_KEY", "")
        self.SPACES_SECRET = os.getenv("SPACES_SECRET", "")
        self.SPACES_REGION = os.getenv("SPACES_REGION", "us-east-1")

        # Speech-to-text service
        self.SPEECH_API_KEY = os.getenv("SPEECH_API_KEY", "")
        self.SPEECH_SERVICE_URL = os.getenv("SPEECH_SERVICE_URL", "").rstrip("/")
        self.SPEECH_CONTENT_TYPE = os.getenv("SPEECH_CONTENT_TYPE", "audio/mp3")
        self.SPEECH_MODEL = os.getenv("SPEECH_MODEL", "")
        self.SPEECH_TIMEOUT = _get_int_env("SPEECH_TIMEOUT", 3600, min_val=1)
        self.TRANSCRIPTION_ENABLED = _get_bool_env("TRANSCRIPTION_ENABLED", True)

        # Network settings
        self.HTTP_TIMEOUT = _get_int_env("HTTP_TIMEOUT", 300, min_val=1)
        self.DOWNLOAD_CHUNK_SIZE = _get_int_env("DOWNLOAD_CHUNK_SIZE", 8192, min_val=1)
        self.USER_AGENT = os.getenv("USER_AGENT", "WebcastPodcast/1.0")

        # Transcoder
        self.FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
        self.FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
        self.AUDIO_CODEC = os.getenv("AUDIO_CODEC", "libmp3lame")

        # Channel metadata used when the output feed does not exist yet
        self.PODCAST_TITLE = os.getenv("PODCAST_TITLE", "Dublin City Council Meetings")
        self.PODCAST_DESCRIPTION = os.getenv(
            "PODCAST_DESCRIPTION",
            "Audio recordings of Dublin City Council webcast meetings.",
        )
        self.PODCAST_SITE_URL = os.getenv("PODCAST_SITE_URL", "https://dublincity.public-i.tv/")
        self.PODCAST_LANGUAGE = os.getenv("PODCAST_LANGUAGE", "en")
        self.PODCAST_AUTHOR = os.getenv("PODCAST_AUTHOR", "Dublin City Council")
        self.PODCAST_IMAGE_URL = os.getenv("PODCAST_IMAGE_URL", "")

    def validate(self):
        """
        Validate that the object store settings needed for a run are present.

        Raises:
            ValueError: If any required object store setting is missing.
        """
        missing = [
            name
            for name in ("SPACES_ENDPOINT", "SPACES_BUCKET", "SPACES_KEY", "SPACES_SECRET")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(
                f"Missing required object store settings: {', '.join(missing)}. "
                f"Please set them in your environment or .env file."
            )

    @property
    def _endpoint_host(self) -> str:
        _, _, host = self.SPACES_ENDPOINT.rpartition("://")
        return host.rstrip("/")

    @property
    def endpoint_url(self) -> str:
        '''S3 API endpoint URL.'''
        return f"https://{self._endpoint_host}"

    @property
    def public_base_url(self) -> str:
        '''Public URL prefix of objects stored with public-read visibility.'''
        return f"https://{self.SPACES_BUCKET}.{self._endpoint_host}"

    @property
    def output_feed_url(self) -> str:
        return f"{self.public_base_url}/{self.OUTPUT_FEED_KEY}"

    @property
    def transcription_enabled(self) -> bool:
        '''Transcription runs only when switched on and the service is configured.'''
        return bool(
            self.TRANSCRIPTION_ENABLED and self.SPEECH_API_KEY and self.SPEECH_SERVICE_URL
        )

    def build_redirect_url(self, activity_id: str) -> str:
        '''Build the stable "latest video" redirect link for an activity.'''
        return self.WEBCAST_REDIRECT_URL.format(activity_id=activity_id)

    def channel_defaults(self) -> dict:
        '''Channel metadata for a feed that has not been published yet.'''
        return {
            "title": self.PODCAST_TITLE,
            "description": self.PODCAST_DESCRIPTION,
            "link": self.PODCAST_SITE_URL,
            "language": self.PODCAST_LANGUAGE,
            "author": self.PODCAST_AUTHOR,
            "image_url": self.PODCAST_IMAGE_URL or None,
            "feed_url": self.output_feed_url,
        }
