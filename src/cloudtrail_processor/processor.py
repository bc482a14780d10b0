# src/cloudtrail_processor/processor.py

"""
Core business logic: processing one Source end to end.

For every log file of a source, in order, the processor downloads the file,
decodes it record by record, runs each record through the record filter and
hands accepted records to the records processor in fixed-size batches. Once
every file was attempted it decides whether the source's queue message can
be deleted:

* a source rejected by the source filter is deleted straight away;
* a source whose files were all processed is deleted;
* otherwise it is deleted only when ``delete_message_upon_failure`` is set
  and none of its files failed to download. A download failure always leaves
  the message on the queue so the download is retried after the visibility
  timeout.

A CallbackError raised by a filter or by the records processor aborts the
source; it is handed to the exception handler and the message stays on the
queue. Any other exception propagates to the worker pool.
"""

import logging
from dataclasses import dataclass

from .callbacks import (
    ExceptionHandler,
    ProgressReporter,
    RecordFilter,
    RecordsProcessor,
    SourceFilter,
)
from .config import ProcessingConfig
from .decoder import LogDecoder, open_decoder
from .exceptions import CallbackError, LogParsingError
from .managers import BlobManager, QueueManager
from .models import LogFileLocation, ProcessedRecord, Source
from .progress import (
    ProcessLogInfo,
    ProcessSourceInfo,
    ProgressState,
    ProgressStatus,
)

logger = logging.getLogger(__name__)


class RecordBuffer:
    """A fixed-capacity, insertion-ordered batch of records."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._records: list[ProcessedRecord] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: ProcessedRecord) -> None:
        self._records.append(record)

    def is_full(self) -> bool:
        return len(self._records) >= self._capacity

    def drain(self) -> list[ProcessedRecord]:
        """Returns the buffered records and empties the buffer."""
        records, self._records = self._records, []
        return records


@dataclass(slots=True)
class SourceOutcome:
    """What happened to the log files of one source."""

    succeeded_logs: int = 0
    download_failures: int = 0
    parse_failures: int = 0

    @property
    def success(self) -> bool:
        return self.download_failures == 0 and self.parse_failures == 0


class SourceProcessor:
    def __init__(
        self,
        config: ProcessingConfig,
        queue_manager: QueueManager,
        blob_manager: BlobManager,
        source_filter: SourceFilter,
        record_filter: RecordFilter,
        records_processor: RecordsProcessor,
        progress_reporter: ProgressReporter,
        exception_handler: ExceptionHandler,
    ):
        self._config = config
        self._queue = queue_manager
        self._blobs = blob_manager
        self._source_filter = source_filter
        self._record_filter = record_filter
        self._records_processor = records_processor
        self._progress = progress_reporter
        self._handle = exception_handler

    def process_source(self, source: Source) -> None:
        token = self._progress.report_start(
            ProgressStatus(ProgressState.PROCESS_SOURCE, ProcessSourceInfo(source, False))
        )
        success = False
        try:
            if not self._source_filter(source):
                logger.debug(
                    "Source filtered out",
                    extra={"message_id": source.message.message_id},
                )
                self._queue.delete_message(source, ProgressState.DELETE_FILTERED_MESSAGE)
                success = True
                return

            outcome = SourceOutcome()
            for log in source.logs:
                self._process_log(source, log, outcome)

            success = outcome.success
            if self._should_delete(outcome):
                self._queue.delete_message(source, ProgressState.DELETE_MESSAGE)
            else:
                logger.info(
                    "Leaving message on the queue",
                    extra={
                        "message_id": source.message.message_id,
                        "download_failures": outcome.download_failures,
                        "parse_failures": outcome.parse_failures,
                    },
                )
        except CallbackError as e:
            e.status = ProgressStatus(
                ProgressState.PROCESS_SOURCE, ProcessSourceInfo(source, False)
            )
            e.correlation_id = source.message.message_id
            logger.warning(
                f"Callback aborted source: {e}",
                extra={"message_id": source.message.message_id},
            )
            self._handle(e)
        finally:
            self._progress.report_end(
                ProgressStatus(ProgressState.PROCESS_SOURCE, ProcessSourceInfo(source, success)),
                token,
            )

    def _should_delete(self, outcome: SourceOutcome) -> bool:
        if outcome.success:
            return True
        return self._config.delete_message_upon_failure and outcome.download_failures == 0

    def _process_log(self, source: Source, log: LogFileLocation, outcome: SourceOutcome) -> None:
        token = self._progress.report_start(
            ProgressStatus(ProgressState.PROCESS_LOG, ProcessLogInfo(source, log, False))
        )
        success = False
        try:
            data = self._blobs.download_log(log, source)
            if data is None:
                outcome.download_failures += 1
                return

            try:
                decoder = open_decoder(data, log, self._config.enable_raw_record_info)
                try:
                    self._emit_records(decoder)
                finally:
                    decoder.close()
            except LogParsingError as e:
                outcome.parse_failures += 1
                e.status = ProgressStatus(
                    ProgressState.PROCESS_LOG, ProcessLogInfo(source, log, False)
                )
                e.correlation_id = source.message.message_id
                logger.warning(
                    f"Failed to parse log file: {e}",
                    extra={"log": str(log), "message_id": source.message.message_id},
                )
                self._handle(e)
                return

            outcome.succeeded_logs += 1
            success = True
        finally:
            self._progress.report_end(
                ProgressStatus(ProgressState.PROCESS_LOG, ProcessLogInfo(source, log, success)),
                token,
            )

    def _emit_records(self, decoder: LogDecoder) -> None:
        buffer = RecordBuffer(self._config.max_records_per_emit)
        while decoder.has_next():
            record = decoder.get_next()
            if not self._record_filter(record):
                logger.debug(
                    "Record filtered out",
                    extra={"event_id": str(record.event.event_id), "log": str(decoder.log)},
                )
                continue
            buffer.append(record)
            if buffer.is_full():
                self._records_processor(buffer.drain())

        if len(buffer):
            self._records_processor(buffer.drain())
