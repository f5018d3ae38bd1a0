"""
Archive and transcript metadata records.

:class:`ArchiveMetadata` is built from the JSON posted by the archive
monitoring callback.  :func:`build_transcript_metadata` produces the
``metadata.json`` document that marks an archive as processed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from . import keys

COMPOSED = "composed"
INDIVIDUAL = "individual"


@dataclass(frozen=True)
class ArchiveMetadata:
    id: str
    output_mode: str
    project_id: Any = None
    created_at: Any = None
    duration: Any = None
    session_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArchiveMetadata":
        """Parse the camelCase callback payload.

        Raises:
            ValueError: If ``id`` or ``outputMode`` is missing, or the id
                contains a path separator or ``..``.
        """
        if not data.get("id") or not data.get("outputMode"):
            raise ValueError("Archive metadata requires 'id' and 'outputMode'")
        archive_id = str(data["id"])
        if "/" in archive_id or "\\" in archive_id or ".." in archive_id:
            raise ValueError(f"Invalid archive id: {archive_id!r}")
        return cls(
            id=archive_id,
            output_mode=data["outputMode"],
            project_id=data.get("projectId"),
            created_at=data.get("createdAt"),
            duration=data.get("duration"),
            session_id=data.get("sessionId"),
        )


def transcript_entry(project_id: str, archive_id: str, stream_id: str = keys.COMPOSED_TRANSCRIPT) -> Dict[str, str]:
    return {
        "transcript": f"{stream_id}.txt",
        "transcriptKey": keys.transcript_key(project_id, archive_id, stream_id),
    }


def build_transcript_metadata(
    metadata: ArchiveMetadata,
    project_id: str,
    streams_transcribed: Iterable[str] = (),
    manifest: Optional[Any] = None,
) -> Dict[str, Any]:
    """Assemble the metadata document for a processed archive.

    Composed archives always list the single ``transcript.txt`` and carry no
    manifest.  Individual archives list one entry per transcribed stream and
    include the manifest (an empty object when the container had none).

    Args:
        metadata: The archive the transcripts belong to.
        project_id: Project id used in the object keys.
        streams_transcribed: Stream ids whose transcripts were uploaded.
        manifest: Parsed manifest of an individual archive.
    """
    content: Dict[str, Any] = {
        "archiveId": metadata.id,
        "outputMode": metadata.output_mode,
        "projectId": metadata.project_id,
        "createdAt": metadata.created_at,
        "duration": metadata.duration,
        "sessionId": metadata.session_id,
    }
    if metadata.output_mode == COMPOSED:
        content["transcripts"] = [transcript_entry(project_id, metadata.id)]
    else:
        content["transcripts"] = [transcript_entry(project_id, metadata.id, s) for s in streams_transcribed]
        content["manifest"] = manifest if manifest is not None else {}
    return content
