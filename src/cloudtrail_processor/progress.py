# src/cloudtrail_processor/progress.py

"""
Progress reporting primitives.

Every bounded unit of work (poll, message parse, download, log decode,
source processing, message deletion) is bracketed by a ``report_start`` call
that returns a correlation token and a ``report_end`` call that receives the
same token back together with the outcome.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from aws_lambda_powertools import Metrics
from aws_lambda_powertools.metrics import MetricUnit

from .models import LogFileLocation, NotificationMessage, Source


class ProgressState(str, Enum):
    POLL_QUEUE = "pollQueue"
    PARSE_MESSAGE = "parseMessage"
    DELETE_MESSAGE = "deleteMessage"
    DELETE_FILTERED_MESSAGE = "deleteFilteredMessage"
    PROCESS_SOURCE = "processSource"
    DOWNLOAD_LOG = "downloadLog"
    PROCESS_LOG = "processLog"
    UNCAUGHT_EXCEPTION = "uncaughtException"


@dataclass(frozen=True, slots=True)
class PollQueueInfo:
    message_count: int
    success: bool


@dataclass(frozen=True, slots=True)
class ParseMessageInfo:
    message: NotificationMessage
    success: bool


@dataclass(frozen=True, slots=True)
class ProcessSourceInfo:
    source: Source
    success: bool


@dataclass(frozen=True, slots=True)
class ProcessLogInfo:
    source: Source
    log: LogFileLocation
    success: bool


ProgressInfo = Union[PollQueueInfo, ParseMessageInfo, ProcessSourceInfo, ProcessLogInfo]


@dataclass(frozen=True, slots=True)
class ProgressStatus:
    state: ProgressState
    info: ProgressInfo | None = None

    @property
    def success(self) -> bool:
        return self.info.success if self.info is not None else False


class MetricsProgressReporter:
    """
    Publishes a success/failure count and a duration for every finished unit
    of work through Powertools Metrics (CloudWatch EMF on stdout).

    Metrics are flushed whenever a poll or a source finishes, so one EMF blob
    covers roughly one unit of queue work.
    """

    _FLUSH_STATES = frozenset({ProgressState.POLL_QUEUE, ProgressState.PROCESS_SOURCE})

    def __init__(self, metrics: Metrics):
        self._metrics = metrics
        # Powertools keeps metrics in a shared dict; workers report concurrently.
        self._lock = threading.Lock()

    def report_start(self, status: ProgressStatus) -> Any:
        return time.monotonic()

    def report_end(self, status: ProgressStatus, token: Any) -> None:
        name = status.state.value[:1].upper() + status.state.value[1:]
        outcome = "Succeeded" if status.success else "Failed"

        with self._lock:
            self._metrics.add_metric(
                name=f"{name}{outcome}", unit=MetricUnit.Count, value=1
            )
            if isinstance(token, float):
                self._metrics.add_metric(
                    name=f"{name}Duration",
                    unit=MetricUnit.Milliseconds,
                    value=(time.monotonic() - token) * 1000,
                )
            if status.state in self._FLUSH_STATES:
                self._metrics.flush_metrics()
