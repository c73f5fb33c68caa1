"""Errors raised by the background pipelines. The job queue turns any of them into a failed job status."""


class PipelineError(Exception):
    """Base class for fatal-to-job pipeline errors."""


class CloneError(PipelineError):
    """git clone failed (bad URL, auth, network)."""


class IndexingError(PipelineError):
    """An indexing run returned a failure result."""


class AudioConversionError(PipelineError):
    """ffmpeg could not produce the canonical WAV file."""


class TranscriptionError(PipelineError):
    """Speech-to-text failed."""


class MeetingNotFoundError(PipelineError):
    """The meeting row a transcription job points at does not exist."""
