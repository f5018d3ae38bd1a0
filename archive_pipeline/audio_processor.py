"""
Audio extraction utilities.

Recorded archives are video files (mp4 for composed output, webm per stream
for individual output).  The speech recogniser only needs a single audio
channel, so :func:`extract_audio` pipes the media through ``ffmpeg``, drops
the video track, downmixes to mono and encodes lossless FLAC.  Input is fed
to ffmpeg's stdin and its stdout is forwarded to the sink chunk by chunk,
so neither the video nor the audio is ever fully held in memory.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Union

from .exceptions import ExtractionError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 256 * 1024
FLAC_CONTENT_TYPE = "audio/flac"


def build_command(ffmpeg_binary: str = "ffmpeg") -> List[str]:
    """Return the ffmpeg invocation reading stdin and writing mono FLAC to stdout."""
    return [
        ffmpeg_binary,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        "pipe:0",
        "-vn",
        "-ac",
        "1",
        "-f",
        "flac",
        "pipe:1",
    ]


async def extract_audio(
    source: BinaryIO,
    sink: BinaryIO,
    *,
    label: str,
    command: Optional[Sequence[str]] = None,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """Transcode ``source`` into mono FLAC written to ``sink``.

    Args:
        source: Readable binary stream with the input media.
        sink: Writable binary stream receiving the FLAC bytes.  It is not
            closed here; the caller closes it once extraction succeeded.
        label: Human readable name of the media, used in log messages.
        command: Override for the ffmpeg command line.
        chunk_size: Size of the chunks moved between the streams.

    Returns:
        Number of bytes written to ``sink``.

    Raises:
        ExtractionError: If ffmpeg cannot be started, exits with a non-zero
            status, or either stream fails.
    """
    cmd = list(command) if command else build_command()
    logger.info("Starting transcoding of %s. Command: %s", label, shlex.join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.error("Error transcoding %s. Reason: %s", label, exc)
        raise ExtractionError(f"Cannot start {cmd[0]}: {exc}") from exc

    stopped = asyncio.Event()

    async def feed() -> None:
        try:
            while not stopped.is_set():
                chunk = await asyncio.to_thread(source.read, chunk_size)
                if not chunk or stopped.is_set():
                    break
                proc.stdin.write(chunk)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg stopped reading; its exit status says why.
            logger.debug("ffmpeg closed stdin early while transcoding %s", label)
        finally:
            proc.stdin.close()

    async def forward() -> int:
        written = 0
        while True:
            chunk = await proc.stdout.read(chunk_size)
            if not chunk:
                break
            await asyncio.to_thread(sink.write, chunk)
            written += len(chunk)
        return written

    tasks = [
        asyncio.ensure_future(feed()),
        asyncio.ensure_future(forward()),
        asyncio.ensure_future(proc.stderr.read()),
    ]
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    failed = [t for t in done if t.exception() is not None]
    if failed:
        exc = failed[0].exception()
        # No read or write may outlive this call.
        stopped.set()
        if proc.returncode is None:
            proc.kill()
        await asyncio.gather(*pending, return_exceptions=True)
        await proc.wait()
        logger.error("Error transcoding %s. Reason: %s", label, exc)
        raise ExtractionError(f"Transcoding {label} failed: {exc}") from exc

    written = tasks[1].result()
    stderr = tasks[2].result()
    returncode = await proc.wait()
    if returncode != 0:
        reason = stderr.decode("utf-8", errors="replace").strip() or f"exit status {returncode}"
        logger.error("Error transcoding %s. Reason: %s", label, reason)
        raise ExtractionError(f"ffmpeg exited with status {returncode} for {label}: {reason}")

    logger.info("Completed transcoding of %s (%d bytes)", label, written)
    return written


def is_media_entry(name: str, extensions: Sequence[str]) -> bool:
    """Check whether a container entry name has one of the media ``extensions``."""
    return os.path.splitext(name)[1].lower() in {ext.lower() for ext in extensions}


def cleanup_temp_file(path: Optional[Union[str, Path]]) -> None:
    """Remove a temporary file if it exists.

    Args:
        path: Path to the temporary file.  Nothing happens if ``path`` is
            ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
            logger.debug("Removed temporary file %s", path)
        except OSError as exc:
            logger.warning("Could not remove temporary file %s: %s", path, exc)
