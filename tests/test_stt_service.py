import asyncio
import concurrent.futures
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from google.api_core import exceptions as api_exceptions

from archive_pipeline.exceptions import TranscriptionError
from archive_pipeline.stt_service import SpeechGateway, join_results


def result(*transcripts):
    return SimpleNamespace(alternatives=[SimpleNamespace(transcript=t) for t in transcripts])


class FakeSpeechClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def long_running_recognize(self, config=None, audio=None):
        self.requests.append((config, audio))
        op = Mock()
        if self.error is not None:
            op.result.side_effect = self.error
        else:
            op.result.return_value = self.response
        return op


def test_join_results_uses_top_alternative():
    response = SimpleNamespace(results=[result("Hello there. ", "hello their"), result(), result("General Kenobi.")])
    assert join_results(response) == "Hello there.\nGeneral Kenobi."


def test_transcribe_returns_text():
    client = FakeSpeechClient(response=SimpleNamespace(results=[result("hi")]))
    gateway = SpeechGateway(language_code="en-GB", client=client)
    assert asyncio.run(gateway.transcribe("gs://staging/p1/a1/archive.flac")) == "hi"
    config, audio = client.requests[0]
    assert audio.uri == "gs://staging/p1/a1/archive.flac"
    assert config.language_code == "en-GB"
    assert config.audio_channel_count == 1


def test_transcribe_empty_response():
    gateway = SpeechGateway(client=FakeSpeechClient(response=SimpleNamespace(results=[])))
    assert asyncio.run(gateway.transcribe("gs://staging/x.flac")) == ""


@pytest.mark.parametrize(
    "error",
    [
        api_exceptions.ResourceExhausted("quota"),
        api_exceptions.InvalidArgument("bad audio"),
        concurrent.futures.TimeoutError(),
    ],
)
def test_transcribe_failure(error):
    gateway = SpeechGateway(client=FakeSpeechClient(error=error), timeout=1)
    with pytest.raises(TranscriptionError):
        asyncio.run(gateway.transcribe("gs://staging/x.flac"))


def test_transcribe_is_not_retried():
    client = FakeSpeechClient(error=api_exceptions.ServiceUnavailable("down"))
    gateway = SpeechGateway(client=client)
    with pytest.raises(TranscriptionError):
        asyncio.run(gateway.transcribe("gs://staging/x.flac"))
    assert len(client.requests) == 1
