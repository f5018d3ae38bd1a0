"""
Orchestration layer for the archive pipeline.

:class:`ArchiveProcessor` is driven by the archive monitoring callback via
:mod:`archive_pipeline.main`.  It coordinates the steps for one archive:

* **Composed** output (a single mp4): stream the archive through ffmpeg
  into a staged FLAC object, transcribe it, upload ``transcript.txt`` and
  then ``metadata.json``.
* **Individual** output (a zip with one webm per stream and a
  ``<archiveId>.json`` manifest): download the zip to a temporary file, walk
  its entries one at a time, transcribe every stream, upload one
  ``<streamId>.txt`` per success and finally ``metadata.json`` listing the
  successful streams together with the manifest.

``metadata.json`` is the completion marker and is written last.  Failures
are logged and skip the affected stream or archive; nothing is raised back
to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import posixpath
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple

from . import audio_processor, container, keys
from .blob_store import BlobStore
from .config import PipelineConfig
from .container import ContainerEntry
from .exceptions import ContainerError
from .metadata import COMPOSED, INDIVIDUAL, ArchiveMetadata, build_transcript_metadata
from .stt_service import SpeechGateway

logger = logging.getLogger(__name__)


def stream_id_for(entry_name: str) -> str:
    """Derive a stream id from a media entry name, e.g. ``s1.webm`` -> ``s1``."""
    return posixpath.basename(entry_name).split(".")[0]


class ArchiveProcessor:
    """Turn recorded archives into transcripts stored next to them."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        store: Optional[BlobStore] = None,
        gateway: Optional[SpeechGateway] = None,
        extract: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config
        self.store = store or BlobStore()
        self.gateway = gateway or SpeechGateway(
            language_code=config.language_code,
            timeout=config.transcription_timeout,
        )
        self._extract = extract or audio_processor.extract_audio
        self._ffmpeg_command = audio_processor.build_command(config.ffmpeg_binary)
        self._tmpdir = Path(config.tmp_dir).resolve()
        self._tmpdir.mkdir(parents=True, exist_ok=True)

    @property
    def project_id(self) -> str:
        return self.config.project_id

    async def process_archive(self, metadata: ArchiveMetadata) -> None:
        """Process an archive according to its output mode.

        Args:
            metadata: Archive details posted by the monitoring callback.
        """
        if metadata.output_mode == COMPOSED:
            await self.process_composed_output(metadata)
        elif metadata.output_mode == INDIVIDUAL:
            await self.process_individual_output(metadata)
        else:
            logger.info("Skipping processing of unknown output mode %r for archive %s", metadata.output_mode, metadata.id)

    async def process_composed_output(self, metadata: ArchiveMetadata) -> None:
        archive_id = metadata.id
        source = None
        try:
            source = await self.store.get_object_stream(
                self.config.blob_bucket, keys.archive_key(self.project_id, archive_id)
            )
            uri = await self._stage_audio(
                source, keys.staged_audio_key(self.project_id, archive_id), f"archive {archive_id}"
            )
            text = await self.gateway.transcribe(uri)
            logger.debug("Transcription for archive %s:\n%s\n", archive_id, text)
            await self.upload_transcript(text, archive_id)
            await self._prune_stale_transcripts(archive_id, [keys.COMPOSED_TRANSCRIPT])
            await self.upload_transcript_metadata(metadata)
            logger.info("Uploaded transcript and metadata for archive %s", archive_id)
        except Exception:
            logger.exception("Error processing composed archive %s", archive_id)
        finally:
            if source is not None:
                await asyncio.to_thread(source.close)

    async def process_individual_output(self, metadata: ArchiveMetadata) -> None:
        archive_id = metadata.id
        fd, tmp_name = tempfile.mkstemp(prefix="archive-", suffix=".zip", dir=self._tmpdir)
        os.close(fd)
        zip_path = Path(tmp_name)
        try:
            await self.store.download_to_file(
                self.config.blob_bucket, keys.archive_key(self.project_id, archive_id, individual=True), zip_path
            )
            logger.info("Saved archive.zip temporarily to %s", zip_path)
            streams_transcribed, manifest = await self._transcribe_container(archive_id, zip_path)
            logger.info("Finished processing archive %s", archive_id)
            await self._prune_stale_transcripts(archive_id, streams_transcribed)
            await self.upload_transcript_metadata(metadata, streams_transcribed, manifest)
        except Exception:
            logger.exception("Error processing individual archive %s", archive_id)
        finally:
            audio_processor.cleanup_temp_file(zip_path)

    async def _transcribe_container(self, archive_id: str, zip_path: Path) -> Tuple[List[str], Any]:
        """Walk the container entries, strictly one at a time.

        Returns:
            The ids of the streams transcribed and the parsed manifest, which
            is an empty dict when the container has no manifest entry.
        """
        manifest_name = f"{archive_id}.json"
        manifest: Any = {}
        streams_transcribed: List[str] = []
        async for entry in container.aiter_entries(zip_path):
            if entry.name == manifest_name:
                logger.info("Parsing manifest file for archive %s", archive_id)
                try:
                    manifest = await asyncio.to_thread(entry.read_json)
                except ContainerError:
                    logger.exception("Error reading manifest for archive %s", archive_id)
            elif audio_processor.is_media_entry(entry.name, self.config.media_extensions) and stream_id_for(entry.name):
                stream_id = await self._process_stream(archive_id, entry)
                if stream_id is not None and stream_id not in streams_transcribed:
                    streams_transcribed.append(stream_id)
            else:
                logger.debug("Skipping entry %s of archive %s", entry.name, archive_id)
        return streams_transcribed, manifest

    async def _process_stream(self, archive_id: str, entry: ContainerEntry) -> Optional[str]:
        """Extract, transcribe and upload one stream; return its id on success."""
        stream_id = stream_id_for(entry.name)
        logger.info("Processing stream file %s", entry.name)
        source = None
        try:
            source = await asyncio.to_thread(entry.open)
            uri = await self._stage_audio(
                source,
                keys.staged_audio_key(self.project_id, archive_id, stream_id),
                f"stream {stream_id} of archive {archive_id}",
            )
            text = await self.gateway.transcribe(uri)
            logger.debug("Transcription for %s:\n%s\n", entry.name, text)
            await self.upload_transcript(text, archive_id, stream_id)
        except Exception:
            logger.exception("Error transcribing stream %s of archive %s", stream_id, archive_id)
            return None
        finally:
            if source is not None:
                source.close()
        logger.info("Uploaded transcript for stream %s of archive %s", stream_id, archive_id)
        return stream_id

    async def _stage_audio(self, source: Any, key: str, label: str) -> str:
        """Extract mono FLAC from ``source`` into the staging bucket and return its URI."""
        writer = await self.store.open_writer(self.config.staging_bucket, key, audio_processor.FLAC_CONTENT_TYPE)
        try:
            await self._extract(source, writer, label=label, command=self._ffmpeg_command)
        except Exception:
            await self._abort_upload(writer, key)
            raise
        await asyncio.to_thread(writer.close)
        uri = self.store.uri(self.config.staging_bucket, key)
        logger.info("Uploaded to %s", uri)
        return uri

    async def _abort_upload(self, writer: Any, key: str) -> None:
        try:
            await asyncio.to_thread(writer.terminate)
        except Exception:
            logger.warning("Could not cancel staging upload of %s", key, exc_info=True)

    async def _prune_stale_transcripts(self, archive_id: str, stream_ids: Iterable[str]) -> None:
        """Delete transcripts left by an earlier run that this run did not produce."""
        prefix = keys.transcripts_prefix(self.project_id, archive_id)
        wanted = {keys.transcript_key(self.project_id, archive_id, s) for s in stream_ids}
        try:
            existing = await self.store.list_objects(self.config.blob_bucket, prefix)
            for key in existing:
                name = key[len(prefix):]
                if "/" in name or not name.endswith(".txt") or key in wanted:
                    continue
                await self.store.delete_object(self.config.blob_bucket, key)
                logger.info("Removed stale transcript %s", key)
        except Exception:
            logger.exception("Error pruning stale transcripts of archive %s", archive_id)

    async def upload_transcript(self, text: str, archive_id: str, stream_id: str = keys.COMPOSED_TRANSCRIPT) -> None:
        key = keys.transcript_key(self.project_id, archive_id, stream_id)
        await self.store.put_object(self.config.blob_bucket, key, text, "text/plain")
        logger.info("Uploaded transcript %s", key)

    async def upload_transcript_metadata(
        self,
        metadata: ArchiveMetadata,
        streams_transcribed: Iterable[str] = (),
        manifest: Optional[Any] = None,
    ) -> None:
        """Write ``metadata.json``, the marker that the archive is done."""
        content = build_transcript_metadata(metadata, self.project_id, streams_transcribed, manifest)
        key = keys.metadata_key(self.project_id, metadata.id)
        await self.store.put_object(
            self.config.blob_bucket, key, json.dumps(content, indent=2), "application/json"
        )
        logger.info("Uploaded transcript metadata %s", key)

    async def get_transcript(self, archive_id: str) -> Any:
        """Return the parsed ``metadata.json`` of a processed archive."""
        return await self.store.get_object_json(
            self.config.blob_bucket, keys.metadata_key(self.project_id, archive_id)
        )

    async def list_available_transcripts(self) -> List[str]:
        """Return the ids of archives that have a ``metadata.json`` marker."""
        prefix = keys.transcripts_prefix(self.project_id)
        archive_ids: List[str] = []
        for key in await self.store.list_objects(self.config.blob_bucket, prefix):
            parts = key[len(prefix):].split("/")
            if len(parts) == 2 and parts[1] == "metadata.json" and parts[0] not in archive_ids:
                archive_ids.append(parts[0])
        return archive_ids
