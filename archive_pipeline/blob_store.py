"""
Cloud Storage access for the pipeline.

:class:`BlobStore` wraps a ``google.cloud.storage`` client behind a small
asynchronous interface.  The storage client is blocking, so every call is
pushed onto a worker thread with :func:`asyncio.to_thread`; the event loop
only suspends while the network operation runs.

Usage::

    store = BlobStore()
    await store.put_object("my-bucket", "p1/transcripts/a1/transcript.txt", "hello", "text/plain")
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, BinaryIO, List, Optional, Union

from google.cloud import storage

logger = logging.getLogger(__name__)


class BlobStore:
    """Asynchronous get/put/list operations over Cloud Storage buckets."""

    def __init__(self, client: Optional[storage.Client] = None) -> None:
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def _blob(self, bucket: str, key: str) -> storage.Blob:
        return self.client.bucket(bucket).blob(key)

    @staticmethod
    def uri(bucket: str, key: str) -> str:
        """Return the ``gs://`` URI of an object."""
        return f"gs://{bucket}/{key}"

    async def get_object_stream(self, bucket: str, key: str) -> BinaryIO:
        """Open a streaming, chunked read of an object.

        The caller owns the returned reader and must close it.
        """
        return await asyncio.to_thread(self._blob(bucket, key).open, "rb")

    async def open_writer(self, bucket: str, key: str, content_type: str) -> BinaryIO:
        """Open a streaming (resumable) upload.

        The object is finalised when the writer is closed.
        """
        return await asyncio.to_thread(self._blob(bucket, key).open, "wb", content_type=content_type)

    async def download_to_file(self, bucket: str, key: str, path: Union[str, Path]) -> None:
        """Stream an object into a local file."""
        blob = self._blob(bucket, key)
        await asyncio.to_thread(blob.download_to_filename, str(path))
        logger.debug("Downloaded %s to %s", self.uri(bucket, key), path)

    async def get_object_json(self, bucket: str, key: str) -> Any:
        text = await asyncio.to_thread(self._blob(bucket, key).download_as_text, encoding="utf-8")
        return json.loads(text)

    async def list_objects(self, bucket: str, prefix: str) -> List[str]:
        """Return object keys under ``prefix`` in listing (lexicographic) order."""

        def _list() -> List[str]:
            return [blob.name for blob in self.client.list_blobs(bucket, prefix=prefix)]

        return await asyncio.to_thread(_list)

    async def put_object(self, bucket: str, key: str, body: Union[str, bytes], content_type: str) -> None:
        blob = self._blob(bucket, key)
        await asyncio.to_thread(blob.upload_from_string, body, content_type=content_type)
        logger.debug("Uploaded %s (%s)", self.uri(bucket, key), content_type)

    async def delete_object(self, bucket: str, key: str) -> None:
        await asyncio.to_thread(self._blob(bucket, key).delete)
