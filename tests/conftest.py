import asyncio
import io
import json
import zipfile

import pytest
from google.api_core import exceptions as api_exceptions

from archive_pipeline.blob_store import BlobStore
from archive_pipeline.config import PipelineConfig
from archive_pipeline.exceptions import ExtractionError, TranscriptionError
from archive_pipeline.tasks import ArchiveProcessor


class FakeWriter:
    def __init__(self, blob, content_type):
        self.blob = blob
        self.content_type = content_type
        self.chunks = []
        self.closed = False
        self.terminated = False
        blob.client.writers.append(self)

    def write(self, data):
        self.chunks.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True
        self.blob.commit(b"".join(self.chunks), self.content_type)

    def terminate(self):
        self.terminated = True
        self.chunks = []


class FakeBlob:
    def __init__(self, client, bucket_name, name):
        self.client = client
        self.bucket_name = bucket_name
        self.name = name

    @property
    def _key(self):
        return (self.bucket_name, self.name)

    def _data(self):
        try:
            return self.client.objects[self._key]
        except KeyError:
            raise api_exceptions.NotFound(f"{self.bucket_name}/{self.name}")

    def commit(self, data, content_type=None):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.client.objects[self._key] = data
        self.client.content_types[self._key] = content_type

    def open(self, mode="rb", content_type=None):
        if mode == "rb":
            return io.BytesIO(self._data())
        return FakeWriter(self, content_type)

    def download_to_filename(self, filename):
        data = self._data()
        with open(filename, "wb") as fh:
            fh.write(data)

    def download_as_text(self, encoding="utf-8"):
        return self._data().decode(encoding)

    def upload_from_string(self, data, content_type=None):
        self.commit(data, content_type)

    def delete(self):
        self._data()
        del self.client.objects[self._key]


class FakeBucket:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def blob(self, name):
        return FakeBlob(self.client, self.name, name)


class FakeClient:
    def __init__(self):
        self.objects = {}
        self.content_types = {}
        self.writers = []

    def bucket(self, name):
        return FakeBucket(self, name)

    def list_blobs(self, bucket_name, prefix=None):
        names = sorted(k for b, k in self.objects if b == bucket_name and k.startswith(prefix or ""))
        return [FakeBlob(self, bucket_name, name) for name in names]

    def put(self, bucket, key, data):
        FakeBlob(self, bucket, key).commit(data)

    def get(self, bucket, key):
        return self.objects.get((bucket, key))

    def get_json(self, bucket, key):
        return json.loads(self.objects[(bucket, key)].decode("utf-8"))


class FakeGateway:
    """Returns canned text per URI and fails for URIs containing a marker."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def transcribe(self, uri):
        self.calls.append(uri)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if any(marker in uri for marker in self.fail):
                raise TranscriptionError(f"quota exceeded for {uri}")
            return f"hello from {uri.rsplit('/', 1)[-1]}"
        finally:
            self.in_flight -= 1


async def fake_extract(source, sink, *, label, command=None):
    data = source.read()
    if data.startswith(b"BAD"):
        raise ExtractionError(f"cannot decode {label}")
    sink.write(b"fLaC" + data)
    return len(data) + 4


def make_zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        blob_bucket="archives",
        project_id="p1",
        staging_bucket="staging",
        tmp_dir=tmp_path / "tmp",
    )


@pytest.fixture
def gcs():
    return FakeClient()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def processor(config, gcs, gateway):
    return ArchiveProcessor(config, store=BlobStore(client=gcs), gateway=gateway, extract=fake_extract)
