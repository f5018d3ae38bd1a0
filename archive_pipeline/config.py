"""
Runtime configuration for the archive pipeline.

Configuration is passed explicitly to :class:`archive_pipeline.tasks.ArchiveProcessor`.
:meth:`PipelineConfig.from_env` builds it from environment variables:

* ``BLOB_BUCKET`` – bucket holding the recorded archives and the transcripts.
* ``PROJECT_ID`` – project id used to namespace every object key.
* ``STAGING_BUCKET`` – bucket receiving the extracted FLAC audio.
* ``TMP_DIR`` – local directory for downloaded containers (default ``tmp``).
* ``MEDIA_EXTENSIONS`` – comma separated suffixes of per-stream media entries.
* ``LANGUAGE_CODE`` – BCP‑47 language tag passed to the recogniser.
* ``FFMPEG_BINARY`` – ffmpeg executable to run.
* ``TRANSCRIPTION_TIMEOUT`` – seconds to wait for a recognition job.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .exceptions import ConfigError

DEFAULT_MEDIA_EXTENSIONS: Tuple[str, ...] = (".webm",)


@dataclass(frozen=True)
class PipelineConfig:
    blob_bucket: str
    project_id: str
    staging_bucket: str
    tmp_dir: Path = Path("tmp")
    media_extensions: Tuple[str, ...] = DEFAULT_MEDIA_EXTENSIONS
    language_code: str = "en-US"
    ffmpeg_binary: str = "ffmpeg"
    transcription_timeout: Optional[float] = 3600.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a configuration from environment variables.

        Raises:
            ConfigError: If a required variable is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ
        missing = [name for name in ("BLOB_BUCKET", "PROJECT_ID", "STAGING_BUCKET") if not env.get(name)]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        extensions = DEFAULT_MEDIA_EXTENSIONS
        if env.get("MEDIA_EXTENSIONS"):
            extensions = tuple(
                ext if ext.startswith(".") else f".{ext}"
                for ext in (part.strip().lower() for part in env["MEDIA_EXTENSIONS"].split(","))
                if ext
            )

        timeout: Optional[float] = 3600.0
        if env.get("TRANSCRIPTION_TIMEOUT"):
            try:
                timeout = float(env["TRANSCRIPTION_TIMEOUT"])
            except ValueError as exc:
                raise ConfigError(f"Invalid TRANSCRIPTION_TIMEOUT: {env['TRANSCRIPTION_TIMEOUT']}") from exc

        return cls(
            blob_bucket=env["BLOB_BUCKET"],
            project_id=env["PROJECT_ID"],
            staging_bucket=env["STAGING_BUCKET"],
            tmp_dir=Path(env.get("TMP_DIR", "tmp")),
            media_extensions=extensions,
            language_code=env.get("LANGUAGE_CODE", "en-US"),
            ffmpeg_binary=env.get("FFMPEG_BINARY", "ffmpeg"),
            transcription_timeout=timeout,
        )
