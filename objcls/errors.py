"""
Exception taxonomy for object classification runs.

Every error raised by the pipeline derives from ObjectClassificationError so
callers can report a failed batch with a single except clause.
"""

from typing import List, Optional, Sequence


class ObjectClassificationError(Exception):
    """Base class for all object classification failures."""
    pass


class InvalidArgument(ObjectClassificationError, ValueError):
    """Raised when a caller contract is violated (e.g. missing region)."""
    pass


class InsufficientSamples(ObjectClassificationError):
    """Raised when too few objects are available to normalize or classify."""
    pass


class MissingCalibration(ObjectClassificationError):
    """Raised when the image has no physical pixel size."""
    pass


class ExternalInvocationFailed(ObjectClassificationError):
    """
    Raised when the external inference process cannot be launched, exits
    with a non-zero status, or reports ``success: false``.

    Attributes:
        output: Captured process output lines (stdout and stderr merged)
        returncode: Process exit status, None if the process never started
    """

    def __init__(
        self,
        message: str,
        output: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message)
        self.output: List[str] = list(output or [])
        self.returncode = returncode

    def __str__(self) -> str:
        base = super().__str__()
        if self.returncode is not None:
            base = f"{base} (exit status {self.returncode})"
        return base


class MalformedResult(ObjectClassificationError):
    """Raised when a result document violates the JSON result schema."""
    pass


class ResultSizeMismatch(ObjectClassificationError):
    """
    Raised when result arrays do not match the submitted request.

    Attributes:
        expected: Expected length
        actual: Length found in the result document
    """

    def __init__(self, message: str, expected: int, actual: int):
        super().__init__(f"{message}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class PatchExtractionError(ObjectClassificationError):
    """
    Raised when patches could not be written and the run is configured to
    treat that as fatal (``fail_on_patch_error``).

    Attributes:
        failed: Request index -> error message
    """

    def __init__(self, message: str, failed: Optional[dict] = None):
        super().__init__(message)
        self.failed = dict(failed or {})
