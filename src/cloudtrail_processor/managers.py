# src/cloudtrail_processor/managers.py

"""
Queue and blob-store operations wrapped with progress reporting and error
routing.

The managers never let a transport or format error escape: each failure is
tagged with the progress status of the unit that failed, handed to the
exception handler once, and turned into an empty or negative result the
caller can act on.
"""

import logging
from typing import Sequence

from .callbacks import ExceptionHandler, ProgressReporter
from .clients import BlobClient, QueueClient
from .config import ProcessingConfig
from .exceptions import (
    CloudTrailProcessorError,
    TransportError,
    UnrecognizedMessageError,
)
from .models import LogFileLocation, NotificationMessage, Source
from .progress import (
    ParseMessageInfo,
    PollQueueInfo,
    ProcessLogInfo,
    ProcessSourceInfo,
    ProgressState,
    ProgressStatus,
)
from .resolver import SourceResolver

logger = logging.getLogger(__name__)

# SQS limits: at most 10 messages per receive, long-poll up to 20 seconds.
MAX_POLL_BATCH = 10
LONG_POLL_WAIT_SECONDS = 20


def _route_failure(
    handler: ExceptionHandler,
    error: CloudTrailProcessorError,
    status: ProgressStatus,
    correlation_id: str | None = None,
) -> None:
    error.status = status
    if correlation_id is not None:
        error.correlation_id = correlation_id
    logger.warning(
        f"{status.state.value} failed: {error}",
        extra={
            "error_code": error.error_code,
            "context": error.context,
            "correlation_id": error.correlation_id,
        },
    )
    handler(error)


class QueueManager:
    """Polls, resolves and deletes queue messages."""

    def __init__(
        self,
        queue_client: QueueClient,
        resolver: SourceResolver,
        config: ProcessingConfig,
        progress_reporter: ProgressReporter,
        exception_handler: ExceptionHandler,
    ):
        self._queue = queue_client
        self._resolver = resolver
        self._config = config
        self._progress = progress_reporter
        self._handle = exception_handler

    def poll_queue(self) -> list[NotificationMessage]:
        """One long-poll. Returns no messages when the poll fails."""
        token = self._progress.report_start(
            ProgressStatus(ProgressState.POLL_QUEUE, PollQueueInfo(0, False))
        )
        messages: list[NotificationMessage] = []
        success = False
        try:
            messages = self._queue.poll(
                max_messages=MAX_POLL_BATCH,
                wait_seconds=LONG_POLL_WAIT_SECONDS,
                visibility_timeout=self._config.visibility_timeout,
            )
            success = True
            if messages:
                logger.info("Polled messages", extra={"message_count": len(messages)})
        except TransportError as e:
            _route_failure(
                self._handle,
                e,
                ProgressStatus(ProgressState.POLL_QUEUE, PollQueueInfo(0, False)),
            )
        finally:
            self._progress.report_end(
                ProgressStatus(
                    ProgressState.POLL_QUEUE, PollQueueInfo(len(messages), success)
                ),
                token,
            )
        return messages

    def parse_messages(self, messages: Sequence[NotificationMessage]) -> list[Source]:
        """Resolves every message it can; unrecognized ones go to the handler."""
        sources: list[Source] = []
        for message in messages:
            token = self._progress.report_start(
                ProgressStatus(ProgressState.PARSE_MESSAGE, ParseMessageInfo(message, False))
            )
            success = False
            try:
                sources.append(self._resolver.resolve(message))
                success = True
            except UnrecognizedMessageError as e:
                _route_failure(
                    self._handle,
                    e,
                    ProgressStatus(
                        ProgressState.PARSE_MESSAGE, ParseMessageInfo(message, False)
                    ),
                    correlation_id=message.message_id,
                )
            finally:
                self._progress.report_end(
                    ProgressStatus(
                        ProgressState.PARSE_MESSAGE, ParseMessageInfo(message, success)
                    ),
                    token,
                )
        return sources

    def delete_message(
        self, source: Source, state: ProgressState = ProgressState.DELETE_MESSAGE
    ) -> bool:
        """
        Deletes the source's message. ``state`` is DELETE_MESSAGE or
        DELETE_FILTERED_MESSAGE and only affects progress reporting.
        """
        token = self._progress.report_start(
            ProgressStatus(state, ProcessSourceInfo(source, False))
        )
        success = False
        try:
            self._queue.delete(source.message)
            success = True
        except TransportError as e:
            _route_failure(
                self._handle,
                e,
                ProgressStatus(state, ProcessSourceInfo(source, False)),
                correlation_id=source.message.message_id,
            )
        finally:
            self._progress.report_end(
                ProgressStatus(state, ProcessSourceInfo(source, success)), token
            )
        return success


class BlobManager:
    """Downloads log files."""

    def __init__(
        self,
        blob_client: BlobClient,
        progress_reporter: ProgressReporter,
        exception_handler: ExceptionHandler,
    ):
        self._blobs = blob_client
        self._progress = progress_reporter
        self._handle = exception_handler

    def download_log(self, log: LogFileLocation, source: Source) -> bytes | None:
        """Returns the compressed log file, or None when the download failed."""
        token = self._progress.report_start(
            ProgressStatus(ProgressState.DOWNLOAD_LOG, ProcessLogInfo(source, log, False))
        )
        data: bytes | None = None
        try:
            data = self._blobs.download(log.bucket, log.object_key)
        except TransportError as e:
            _route_failure(
                self._handle,
                e,
                ProgressStatus(ProgressState.DOWNLOAD_LOG, ProcessLogInfo(source, log, False)),
                correlation_id=source.message.message_id,
            )
        finally:
            self._progress.report_end(
                ProgressStatus(
                    ProgressState.DOWNLOAD_LOG,
                    ProcessLogInfo(source, log, data is not None),
                ),
                token,
            )
        return data
