# src/cloudtrail_processor/callbacks.py

"""
The extension points a caller plugs into the processor, with the default
implementations used when the caller leaves one out.

Filters and the records processor may raise CallbackError to abort the
current source; the source's message is then left on the queue.
"""

import logging
from typing import Any, Protocol, Sequence

from .events import CloudTrailEvent
from .exceptions import CloudTrailProcessorError, get_error_context
from .models import ProcessedRecord, Source
from .progress import ProgressStatus

logger = logging.getLogger(__name__)


class SourceFilter(Protocol):
    def __call__(self, source: Source) -> bool: ...


class RecordFilter(Protocol):
    def __call__(self, record: ProcessedRecord) -> bool: ...


class RecordsProcessor(Protocol):
    def __call__(self, records: Sequence[ProcessedRecord]) -> None: ...


class ExceptionHandler(Protocol):
    def __call__(self, error: CloudTrailProcessorError) -> None: ...


class ProgressReporter(Protocol):
    def report_start(self, status: ProgressStatus) -> Any: ...

    def report_end(self, status: ProgressStatus, token: Any) -> None: ...


# --- Defaults ---


def accept_all_sources(source: Source) -> bool:
    return True


def accept_all_records(record: ProcessedRecord) -> bool:
    return True


def log_records(records: Sequence[ProcessedRecord]) -> None:
    """Default records processor: logs every record it receives."""
    for record in records:
        event: CloudTrailEvent = record.event
        logger.debug(
            "Received event",
            extra={
                "event_name": event.event_name,
                "event_source": event.event_source,
                "account_id": event.account_id,
                "log": str(record.delivery.log),
            },
        )


def log_exception(error: CloudTrailProcessorError) -> None:
    """Default exception handler: logs the error with its structured context."""
    logger.error(f"Processing failed: {error}", extra={"error": get_error_context(error)})


class LoggingProgressReporter:
    """Default progress reporter: logs the start and end of every unit of work."""

    def report_start(self, status: ProgressStatus) -> Any:
        logger.debug("Progress started", extra={"state": status.state.value})
        return None

    def report_end(self, status: ProgressStatus, token: Any) -> None:
        logger.debug(
            "Progress ended",
            extra={"state": status.state.value, "success": status.success},
        )
