"""
Google Speech‑to‑Text service wrapper.

:class:`SpeechGateway` takes a Cloud Storage URI for a staged FLAC file and
returns the recognised text.  Recognition runs as a long running operation
on a worker thread; a failure is reported once as
:class:`~archive_pipeline.exceptions.TranscriptionError` and never retried.

Usage::

    gateway = SpeechGateway(language_code="en-US")
    text = await gateway.transcribe("gs://my-staging-bucket/p1/a1/archive.flac")
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Optional

from google.api_core import exceptions as api_exceptions
from google.cloud import speech_v1p1beta1 as speech

from .exceptions import TranscriptionError

logger = logging.getLogger(__name__)


def join_results(response: Any) -> str:
    """Concatenate the top alternative of every result, one per line."""
    lines = []
    for result in response.results:
        if result.alternatives:
            lines.append(result.alternatives[0].transcript.strip())
    return "\n".join(line for line in lines if line)


class SpeechGateway:
    """Transcribe staged audio with Google Cloud Speech‑to‑Text."""

    def __init__(
        self,
        *,
        language_code: str = "en-US",
        timeout: Optional[float] = 3600.0,
        enable_automatic_punctuation: bool = True,
        client: Optional[speech.SpeechClient] = None,
    ) -> None:
        self.language_code = language_code
        self.timeout = timeout
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self._client = client

    @property
    def client(self) -> speech.SpeechClient:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def _config(self) -> speech.RecognitionConfig:
        # Sample rate is read from the FLAC header.
        return speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.FLAC,
            audio_channel_count=1,
            language_code=self.language_code,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )

    def _recognize(self, gcs_uri: str) -> str:
        audio = speech.RecognitionAudio(uri=gcs_uri)
        logger.info("Starting STT job for %s", gcs_uri)
        try:
            operation = self.client.long_running_recognize(config=self._config(), audio=audio)
            response = operation.result(timeout=self.timeout)
        except (api_exceptions.GoogleAPICallError, api_exceptions.RetryError) as exc:
            raise TranscriptionError(f"Speech-to-Text failed for {gcs_uri}: {exc}") from exc
        except concurrent.futures.TimeoutError as exc:
            raise TranscriptionError(f"Speech-to-Text timed out after {self.timeout}s for {gcs_uri}") from exc
        logger.info("STT job complete for %s", gcs_uri)
        return join_results(response)

    async def transcribe(self, gcs_uri: str) -> str:
        """Transcribe the audio at ``gcs_uri`` and return the full text.

        Raises:
            TranscriptionError: If the recognition job fails or times out.
        """
        return await asyncio.to_thread(self._recognize, gcs_uri)
