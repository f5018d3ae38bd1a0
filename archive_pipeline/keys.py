"""
Object key layout.

Downstream readers depend on these keys, so the formats must not change.
"""

from __future__ import annotations

COMPOSED_TRANSCRIPT = "transcript"


def archive_key(project_id: str, archive_id: str, individual: bool = False) -> str:
    """Key of the recorded archive: a zip for individual output, an mp4 otherwise."""
    ext = "zip" if individual else "mp4"
    return f"{project_id}/{archive_id}/archive.{ext}"


def staged_audio_key(project_id: str, archive_id: str, stream_id: str = "archive") -> str:
    return f"{project_id}/{archive_id}/{stream_id}.flac"


def transcripts_prefix(project_id: str, archive_id: str = "") -> str:
    if archive_id:
        return f"{project_id}/transcripts/{archive_id}/"
    return f"{project_id}/transcripts/"


def transcript_key(project_id: str, archive_id: str, stream_id: str = COMPOSED_TRANSCRIPT) -> str:
    return f"{transcripts_prefix(project_id, archive_id)}{stream_id}.txt"


def metadata_key(project_id: str, archive_id: str) -> str:
    return f"{transcripts_prefix(project_id, archive_id)}metadata.json"
