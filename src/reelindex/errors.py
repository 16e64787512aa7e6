"""Error taxonomy shared by the pipeline, queue and worker.

Fatal errors (ExtractionError, PersistenceError) escape to the worker loop and
count against the job's attempts. Recoverable ones (TranscriptionError,
AnalysisError, EmbeddingError) are caught inside the pipeline and degrade the
result instead.
"""

from __future__ import annotations

from typing import Optional


class ReelIndexError(Exception):
    """Base exception for reelindex errors."""
    pass


class ToolError(ReelIndexError):
    """Raised when an external executable (ffmpeg, ffprobe) fails."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ExtractionError(ReelIndexError):
    """Metadata/media extraction failed. Fatal for the pipeline run."""
    pass


class TranscriptionError(ReelIndexError):
    """Speech-to-text transport failure. The transcript stays empty."""
    pass


class AnalysisError(ReelIndexError):
    """An AI analysis provider failed or returned an invalid shape."""
    pass


class EmbeddingError(ReelIndexError):
    """The embedding provider failed. The item is stored without a vector."""
    pass


class PersistenceError(ReelIndexError):
    """The transactional item/artifact write failed. Fatal for the job."""
    pass


class LeaseLostError(ReelIndexError):
    """The worker no longer owns the job's lease.

    Only used inside the queue module; callers see a False return instead.
    """
    pass
