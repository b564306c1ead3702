"""Error taxonomy shared by the job pipeline."""
from typing import List, Tuple


class ClipsmithError(Exception):
    """Base class for pipeline errors that end up on a job record."""
    pass


class ValidationError(ClipsmithError):
    """Bad input from a caller. Not retryable."""
    pass


class JobNotFound(ClipsmithError):
    """No job exists with the requested id."""
    pass


class AcquisitionExhausted(ClipsmithError):
    """Every provider in a fallback chain failed."""

    def __init__(self, kind: str, failures: List[Tuple[str, str]]):
        self.kind = kind
        self.failures = failures
        if failures:
            detail = "; ".join(f"{name}: {reason}" for name, reason in failures)
        else:
            detail = "no provider supports this source"
        super().__init__(f"Could not download {kind} from any provider ({detail})")


class TranscriptionError(ClipsmithError):
    """The speech-to-text service failed or returned something unusable."""
    pass


class NoHighlightsFound(ClipsmithError):
    """The transcript produced no usable clip windows."""

    def __init__(self, message: str = None):
        super().__init__(
            message
            or "Could not find suitable clips in the video. "
               "Try a shorter clip duration or a different video."
        )


class RenderError(ClipsmithError):
    """A transcoder invocation failed while cutting, captioning or packaging."""

    def __init__(self, message: str, stderr_tail: str = ""):
        self.stderr_tail = stderr_tail
        if stderr_tail:
            message = f"{message}: {stderr_tail}"
        super().__init__(message)


class StorageError(ClipsmithError):
    """Persisting a job or writing an artifact failed."""
    pass


class JobCancelled(ClipsmithError):
    """The client asked for the job to stop."""

    def __init__(self):
        super().__init__("Job cancelled")
