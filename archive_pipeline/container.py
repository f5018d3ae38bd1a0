"""
Lazy traversal of zip archive containers.

Individual output archives are zip files holding one media file per stream
plus a JSON manifest.  :func:`iter_entries` discovers entries one at a time
and hands back a :class:`ContainerEntry` whose stream is only opened on
request, so nothing is extracted up front.  The sequence is finite and
cannot be restarted; iterate again to reopen the container.
"""

from __future__ import annotations

import asyncio
import json
import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, AsyncIterator, Iterator, Union

from .exceptions import ContainerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerEntry:
    """A single file inside a container."""

    name: str
    size: int
    _zip: zipfile.ZipFile
    _info: zipfile.ZipInfo

    def open(self) -> IO[bytes]:
        """Open a streaming read of the entry's decompressed bytes."""
        try:
            return self._zip.open(self._info)
        except (zipfile.BadZipFile, NotImplementedError, RuntimeError, ValueError, OSError) as exc:
            raise ContainerError(f"Cannot open entry {self.name}: {exc}") from exc

    def read_json(self) -> Any:
        """Read the whole entry into memory and parse it as JSON."""
        try:
            with self.open() as fh:
                data = fh.read()
        except (zipfile.BadZipFile, zlib.error, OSError) as exc:
            raise ContainerError(f"Cannot read entry {self.name}: {exc}") from exc
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ContainerError(f"Entry {self.name} is not valid JSON: {exc}") from exc


def iter_entries(path: Union[str, Path]) -> Iterator[ContainerEntry]:
    """Yield the file entries of a zip container in archive order.

    The zip is opened when iteration starts and closed once every entry has
    been visited.

    Raises:
        ContainerError: If the file is missing or is not a readable zip.
    """
    try:
        archive = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as exc:
        raise ContainerError(f"Cannot open container {path}: {exc}") from exc
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            yield ContainerEntry(name=info.filename, size=info.file_size, _zip=archive, _info=info)
    logger.debug("Closed container %s", path)


async def aiter_entries(path: Union[str, Path]) -> AsyncIterator[ContainerEntry]:
    """Asynchronous form of :func:`iter_entries`.

    The next entry is only looked up when the consumer asks for it, which
    keeps at most one entry in flight.
    """
    entries = iter_entries(path)
    try:
        while True:
            entry = await asyncio.to_thread(next, entries, None)
            if entry is None:
                return
            yield entry
    finally:
        entries.close()
