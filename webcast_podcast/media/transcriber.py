"""Speech-to-text transcription of published episode audio.

Submits the audio to a Watson-style speech recognition REST endpoint,
keeps the full structured response as JSON, stitches the top alternative
of every segment into a plain-text transcript, and publishes both.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

import requests

from ..errors import TranscriptionError
from .transfer import MediaTransfer

logger = logging.getLogger(__name__)


def stitch_transcript(result: Dict[str, Any]) -> str:
    """Concatenate the first alternative of every segment, in order.

    Segments without alternatives contribute nothing. No separator is
    inserted; the service already ends segment transcripts with a space.
    """
    parts = []
    for segment in result.get("results") or []:
        alternatives = segment.get("alternatives") or []
        if alternatives:
            parts.append(alternatives[0].get("transcript", ""))
    return "".join(parts)


class Transcriber:
    """Transcribes audio files through a speech recognition service.

    Configuration (via Config):
        SPEECH_API_KEY: API key, sent as basic auth user "apikey"
        SPEECH_SERVICE_URL: Service instance URL
        SPEECH_CONTENT_TYPE: Content type of the submitted audio (default: "audio/mp3")
        SPEECH_MODEL: Optional recognition model name
        SPEECH_TIMEOUT: Seconds to wait for a recognition response (default: 3600)
    """

    RECOGNIZE_PATH = "/v1/recognize"

    def __init__(
        self,
        api_key: str,
        service_url: str,
        transfer: MediaTransfer,
        output_directory: str,
        content_type: str = "audio/mp3",
        model: Optional[str] = None,
        timeout: int = 3600,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the transcriber.

        Args:
            api_key: Speech service API key.
            service_url: Speech service instance URL.
            transfer: Used to publish the transcript artifacts.
            output_directory: Where the JSON and text artifacts are written.
            content_type: Content type sent with the audio.
            model: Optional recognition model.
            timeout: Request timeout in seconds.
            session: requests session; created if omitted.
        """
        self.api_key = api_key
        self.service_url = service_url.rstrip("/")
        self.transfer = transfer
        self.output_directory = output_directory
        self.content_type = content_type
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config, transfer: MediaTransfer) -> "Transcriber":
        return cls(
            api_key=config.SPEECH_API_KEY,
            service_url=config.SPEECH_SERVICE_URL,
            transfer=transfer,
            output_directory=config.TRANSCRIPT_DIRECTORY,
            content_type=config.SPEECH_CONTENT_TYPE,
            model=config.SPEECH_MODEL or None,
            timeout=config.SPEECH_TIMEOUT,
        )

    @staticmethod
    def transcript_id_for(audio_path: str) -> str:
        """Base name of the audio file without its extension."""
        return os.path.basename(audio_path).split(".")[0]

    def recognize(self, audio_path: str) -> Dict[str, Any]:
        """Submit an audio file and return the structured recognition result.

        Raises:
            TranscriptionError: If the call fails or the response is not JSON.
        """
        params = {"model": self.model} if self.model else None
        try:
            with open(audio_path, "rb") as audio:
                response = self._session.post(
                    f"{self.service_url}{self.RECOGNIZE_PATH}",
                    data=audio,
                    params=params,
                    headers={"Content-Type": self.content_type},
                    auth=("apikey", self.api_key),
                    timeout=self.timeout,
                )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, OSError, ValueError) as e:
            raise TranscriptionError(f"Speech recognition failed for {audio_path}: {e}") from e

    def transcribe(self, audio_path: str) -> str:
        """Transcribe an audio file and publish the artifacts.

        Writes ``{id}.json`` (full result) and ``{id}.txt`` (stitched text)
        to the output directory and uploads both under the same names.

        Args:
            audio_path: Local audio file produced for the current episode.

        Returns:
            The transcript id (audio base name).

        Raises:
            TranscriptionError: If the service call or writing the artifacts fails.
            TransferError: If publishing an artifact fails.
        """
        logger.info(f"Beginning transcription of {audio_path}")
        result = self.recognize(audio_path)

        transcript_id = self.transcript_id_for(audio_path)
        json_name = f"{transcript_id}.json"
        text_name = f"{transcript_id}.txt"
        json_path = os.path.join(self.output_directory, json_name)
        text_path = os.path.join(self.output_directory, text_name)

        transcript = stitch_transcript(result)
        try:
            os.makedirs(self.output_directory, exist_ok=True)
            with open(json_path, "w", encoding="utf-8") as f:
                json.dump(result, f, indent=2)
            with open(text_path, "w", encoding="utf-8") as f:
                f.write(transcript)
        except OSError as e:
            raise TranscriptionError(f"Could not write transcript for {audio_path}: {e}") from e

        logger.info(f"Transcription finished: {len(transcript)} characters")

        self.transfer.upload(json_path, json_name)
        self.transfer.upload(text_path, text_name)

        return transcript_id
