"""
Exception hierarchy for the archive pipeline.

Collaborators raise these so the orchestrator can log and skip the failing
unit of work without knowing about the underlying client libraries.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class ConfigError(PipelineError):
    """Missing or invalid configuration."""


class ContainerError(PipelineError):
    """An archive container or one of its entries could not be read."""


class ExtractionError(PipelineError):
    """Audio extraction with ffmpeg failed."""


class TranscriptionError(PipelineError):
    """The speech recogniser failed to produce a transcript."""
