"""Media transfer between the web, local scratch storage and the object store.

Downloads stream over a shared requests session; uploads go to an
S3-compatible object store (DigitalOcean Spaces) through boto3 with
public-read visibility so enclosure URLs are publicly fetchable.
"""

import logging
import mimetypes
import os
from typing import Callable, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import TransferError

logger = logging.getLogger(__name__)

PUBLIC_READ_ACL = "public-read"

# mimetypes has no reliable entry for these on every platform
_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".xml": "application/rss+xml",
    ".json": "application/json",
    ".txt": "text/plain",
}


def guess_content_type(key: str) -> str:
    """Guess the Content-Type to store an object with."""
    ext = os.path.splitext(key)[1].lower()
    if ext in _CONTENT_TYPES:
        return _CONTENT_TYPES[ext]
    content_type, _ = mimetypes.guess_type(key)
    return content_type or "application/octet-stream"


class MediaTransfer:
    """Moves media files between remote URLs, local disk and the object store.

    Example:
        transfer = MediaTransfer.from_config(config)
        transfer.download(video_url, "tmp/1616096362038_548471.mp4")
        transfer.upload("tmp/1616096362038_548471.mp3", "1616096362038_548471.mp3")
    """

    DEFAULT_USER_AGENT = "WebcastPodcast/1.0"
    DEFAULT_CHUNK_SIZE = 8192
    DEFAULT_TIMEOUT = 300  # 5 minutes

    def __init__(
        self,
        bucket: str,
        public_base_url: str,
        s3_client=None,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        user_agent: Optional[str] = None,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ):
        """Initialize the media transfer.

        Args:
            bucket: Object store bucket (space) name
            public_base_url: Public URL prefix for objects in the bucket
            s3_client: boto3 S3 client used for uploads
            session: requests session for downloads; created if omitted
            timeout: Network timeout in seconds
            chunk_size: Chunk size for streaming downloads
            user_agent: Custom user agent string
            progress_callback: Callback for download progress (url, downloaded, total)
        """
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self.progress_callback = progress_callback
        self._s3 = s3_client
        self.session = session or self._create_session()

    @classmethod
    def from_config(cls, config, progress_callback=None) -> "MediaTransfer":
        """Create a MediaTransfer with an S3 client built from configuration."""
        s3_client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.SPACES_KEY,
            aws_secret_access_key=config.SPACES_SECRET,
            region_name=config.SPACES_REGION,
        )
        return cls(
            bucket=config.SPACES_BUCKET,
            public_base_url=config.public_base_url,
            s3_client=s3_client,
            timeout=config.HTTP_TIMEOUT,
            chunk_size=config.DOWNLOAD_CHUNK_SIZE,
            user_agent=config.USER_AGENT,
            progress_callback=progress_callback,
        )

    def _create_session(self) -> requests.Session:
        """Create a requests session carrying the user agent."""
        session = requests.Session()
        session.headers.update({"User-Agent": self.user_agent})
        return session

    def public_url(self, remote_key: str) -> str:
        """Public URL of an object uploaded under ``remote_key``."""
        return f"{self.public_base_url}/{remote_key.lstrip('/')}"

    def resolve_redirect(self, url: str) -> str:
        """Follow redirects from ``url`` and return the terminal URL.

        The body is not read. HTTP error statuses are not treated as
        failures: the caller decides availability from the URL itself.

        Raises:
            TransferError: If the request cannot be made.
        """
        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise TransferError(f"Failed to resolve {url}: {e}") from e

        try:
            final_url = response.url
        finally:
            response.close()

        logger.info(f"Resolved {url} -> {final_url}")
        return final_url

    def download(self, remote_url: str, local_path: str) -> int:
        """Stream a remote resource to a local file.

        A partial file may remain at ``local_path`` on failure.

        Args:
            remote_url: URL to download
            local_path: Path to save the file

        Returns:
            Number of bytes written

        Raises:
            TransferError: On any network or disk error.
        """
        logger.info(f"Downloading {remote_url} -> {local_path}")
        downloaded = 0

        try:
            directory = os.path.dirname(local_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with self.session.get(
                remote_url,
                stream=True,
                timeout=self.timeout,
                allow_redirects=True,
            ) as response:
                response.raise_for_status()

                total_size = None
                if "content-length" in response.headers:
                    try:
                        total_size = int(response.headers["content-length"])
                    except ValueError:
                        pass

                with open(local_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
                            downloaded += len(chunk)

                            if self.progress_callback and total_size:
                                self.progress_callback(remote_url, downloaded, total_size)

        except (requests.RequestException, OSError) as e:
            raise TransferError(f"Download of {remote_url} failed: {e}") from e

        logger.info(f"Downloaded {local_path} ({downloaded / 1024 / 1024:.1f} MB)")
        return downloaded

    def upload(self, local_path: str, remote_key: str) -> str:
        """Upload a local file to the object store with public-read visibility.

        The file is read fully into memory before the put.

        Args:
            local_path: File to upload
            remote_key: Object key in the bucket

        Returns:
            Public URL of the stored object

        Raises:
            TransferError: If the file cannot be read or the store rejects it.
        """
        logger.info(f"Uploading {local_path} -> {remote_key}")

        try:
            with open(local_path, "rb") as f:
                body = f.read()
        except OSError as e:
            raise TransferError(f"Cannot read {local_path} for upload: {e}") from e

        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=remote_key,
                Body=body,
                ACL=PUBLIC_READ_ACL,
                ContentType=guess_content_type(remote_key),
            )
        except (ClientError, BotoCoreError) as e:
            raise TransferError(f"Upload of {remote_key} failed: {e}") from e

        logger.info(f"Uploaded {remote_key} ({len(body)} bytes)")
        return self.public_url(remote_key)

    def close(self):
        """Close the HTTP session."""
        self.session.close()
