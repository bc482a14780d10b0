# src/cloudtrail_processor/exceptions.py

"""
Shared custom exceptions for the CloudTrail processor.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- CloudTrailProcessorError (base)
  - RetryableError (the message stays on the queue and is redelivered)
  - NonRetryableError (should not be retried)
    - FormatError
      - LogParsingError
      - MessageParsingError
      - UnrecognizedMessageError
    - CallbackError
    - ConfigurationError
  - TransportError
    - S3Error
      - S3ThrottlingError (retryable)
      - S3TimeoutError (retryable)
      - S3AccessDeniedError (non-retryable)
      - S3ObjectNotFoundError (non-retryable)
    - LogDownloadError (retryable)
    - MessagePollingError (retryable)
    - MessageDeletionError (retryable)
  - UncaughtExceptionError
"""

from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

if TYPE_CHECKING:
    from .progress import ProgressStatus


class CloudTrailProcessorError(Exception):
    """Base exception for all CloudTrail processor errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        status: Optional["ProgressStatus"] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation
        self.correlation_id = correlation_id
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "progress_state": self.status.state.value if self.status else None,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(CloudTrailProcessorError):
    """Base class for errors that can be retried."""
    pass


class NonRetryableError(CloudTrailProcessorError):
    """Base class for errors that should not be retried."""
    pass


# === Format Errors ===

class FormatError(NonRetryableError):
    """Base class for malformed log files and notification messages."""
    pass


class LogParsingError(FormatError):
    """Raised when a log file cannot be decoded into events."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "LOG_PARSING_FAILED"
        super().__init__(message, **kwargs)


class MessageParsingError(FormatError):
    """Raised when one message interpreter does not recognize a message."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "MESSAGE_PARSING_FAILED"
        super().__init__(message, **kwargs)


class UnrecognizedMessageError(FormatError):
    """Raised when no message interpreter recognizes a message."""

    def __init__(self, message_id: str, suppressed: Sequence[Exception] = (), **kwargs):
        message = f"Unable to parse message {message_id} with any message interpreter"
        context = {
            "message_id": message_id,
            "interpreter_errors": [f"{type(e).__name__}: {e}" for e in suppressed],
        }
        super().__init__(
            message, error_code="UNRECOGNIZED_MESSAGE", context=context, **kwargs
        )
        self.suppressed = list(suppressed)


# === Callback Errors ===

class CallbackError(NonRetryableError):
    """
    Raised by user callbacks (filters, records processor) to signal a domain
    error. Aborts the current source; the message is not deleted.
    """

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "CALLBACK_FAILED"
        super().__init__(message, **kwargs)


# === Transport Errors ===

class TransportError(CloudTrailProcessorError):
    """Base class for queue and blob store communication failures."""
    pass


class S3Error(TransportError):
    """Base class for S3-related errors."""
    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations timeout."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out: {operation}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"operation": operation})
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


class LogDownloadError(TransportError, RetryableError):
    """Raised when a log file could not be downloaded."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Failed to download log file: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="LOG_DOWNLOAD_FAILED", context=context, **kwargs)


class MessagePollingError(TransportError, RetryableError):
    """Raised when the queue could not be polled."""

    def __init__(self, queue_url: str, **kwargs):
        message = f"Failed to poll messages from {queue_url}"
        context = {"queue_url": queue_url}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="MESSAGE_POLLING_FAILED", context=context, **kwargs)


class MessageDeletionError(TransportError, RetryableError):
    """Raised when a message could not be deleted from the queue."""

    def __init__(self, message_id: str, **kwargs):
        message = f"Failed to delete message {message_id}"
        context = {"message_id": message_id}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="MESSAGE_DELETION_FAILED", context=context, **kwargs)


# === Runtime Faults ===

class UncaughtExceptionError(CloudTrailProcessorError):
    """Wraps an unexpected exception that escaped a worker task."""

    def __init__(self, cause: BaseException, **kwargs):
        message = f"Uncaught exception in worker task: {cause}"
        context = {"cause_type": type(cause).__name__}
        super().__init__(message, error_code="UNCAUGHT_EXCEPTION", context=context, **kwargs)
        self.cause = cause
        self.__cause__ = cause


# === Configuration Errors ===

class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the processor configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===

def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: BaseException) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, CloudTrailProcessorError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False  # Unknown errors default to non-retryable
        }
