"""Exceptions raised by the augmentation engine."""
from __future__ import annotations


class AugmentorError(Exception):
    """Base exception for engine failures."""


class ConfigurationError(AugmentorError):
    """Raised when an instance is missing or lacks a required field. Fatal for the job."""


class ExternalServiceError(AugmentorError):
    """Raised when an external call fails."""
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ExternalTimeoutError(ExternalServiceError):
    """Raised when an external call exceeds its hard timeout."""
    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class RecordStoreError(ExternalServiceError):
    """Raised when the remote record store rejects a request."""
    def __init__(self, message: str, status_code: int | None = None):
        retryable = status_code is None or status_code == 429 or status_code >= 500
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class BatchDispatchError(AugmentorError):
    """Raised when a combined-prompt refinement fails or returns the wrong number of records."""


class NotFoundError(AugmentorError):
    """Raised when a job or instance id does not exist."""


class JobStateError(AugmentorError):
    """Raised when an operator action is not allowed in the job's current status."""
