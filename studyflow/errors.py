"""Exception types raised at the edges of the engine.

The reducer itself never raises; these are for the service boundary
and the remote store implementations.
"""


class StudyflowError(Exception):
    """Base class for studyflow errors."""
    pass


class ValidationError(StudyflowError):
    """Raised when user input is rejected before it reaches the reducer."""
    pass


class RemoteStoreError(StudyflowError):
    """Raised when a remote document write or read fails."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
