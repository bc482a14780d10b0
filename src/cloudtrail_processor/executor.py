# src/cloudtrail_processor/executor.py

"""
The concurrency layer: a scheduler that polls the queue and a bounded worker
pool that processes the resulting sources.

Backpressure comes from the pool. It holds at most ``2 * W`` jobs (W running,
W waiting); when it is full the submitting scheduler thread runs the job
itself, which stalls its own polling until it is done.
"""

import functools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

import boto3
from botocore.config import Config as BotoConfig

from .callbacks import (
    ExceptionHandler,
    LoggingProgressReporter,
    ProgressReporter,
    RecordFilter,
    RecordsProcessor,
    SourceFilter,
    accept_all_records,
    accept_all_sources,
    log_exception,
)
from .clients import BlobClient, QueueClient, S3Client, SqsClient
from .config import ProcessingConfig
from .exceptions import ConfigurationError, UncaughtExceptionError, get_error_context
from .managers import LONG_POLL_WAIT_SECONDS, BlobManager, QueueManager
from .processor import SourceProcessor
from .progress import ProgressState, ProgressStatus
from .resolver import SourceResolver

logger = logging.getLogger(__name__)

CLIENT_CONNECT_TIMEOUT_SECONDS = 10
CLIENT_READ_TIMEOUT_SECONDS = 10


class WorkerPool:
    """
    A fixed-size thread pool with a bounded queue and caller-runs saturation.

    Every job runs inside a wrapper that turns an escaping exception into an
    UncaughtExceptionError for the exception handler, so a failing job never
    takes a worker thread or the scheduler down with it.
    """

    def __init__(
        self,
        size: int,
        exception_handler: ExceptionHandler,
        thread_name_prefix: str = "cloudtrail-worker",
    ):
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")
        self._size = size
        self._handle = exception_handler
        self._executor = ThreadPoolExecutor(
            max_workers=size, thread_name_prefix=thread_name_prefix
        )
        # Running plus queued jobs.
        self._slots = threading.BoundedSemaphore(2 * size)
        self._futures: set[Future] = set()
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    @property
    def size(self) -> int:
        return self._size

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def submit(self, job: Callable[[], Any]) -> bool:
        """
        Runs ``job`` on the pool, or on the calling thread when the pool is
        saturated. Returns False if the pool was already stopped.
        """
        if self._stopped.is_set():
            logger.debug("Worker pool is stopped, dropping job")
            return False

        if not self._slots.acquire(blocking=False):
            logger.debug("Worker pool saturated, running job on the submitting thread")
            self._run(job)
            return True

        try:
            future = self._executor.submit(self._run_and_release, job)
        except RuntimeError:
            # Lost the race with stop(); the executor refuses new work.
            self._slots.release()
            logger.debug("Worker pool stopped during submission, dropping job")
            return False

        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return True

    def stop(self, grace_seconds: float) -> bool:
        """
        Refuses new jobs, waits up to ``grace_seconds`` for the submitted
        ones, then cancels whatever has not started. Returns True if every
        job finished in time.
        """
        self._stopped.set()
        with self._lock:
            pending = list(self._futures)

        _, not_done = wait(pending, timeout=grace_seconds)
        if not_done:
            logger.warning(
                "Worker pool did not drain within the grace period, cancelling queued jobs",
                extra={"unfinished_jobs": len(not_done), "grace_seconds": grace_seconds},
            )
            self._executor.shutdown(wait=False, cancel_futures=True)
            return False

        self._executor.shutdown(wait=True)
        logger.debug("Worker pool stopped")
        return True

    def _run_and_release(self, job: Callable[[], Any]) -> None:
        try:
            self._run(job)
        finally:
            self._slots.release()

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run(self, job: Callable[[], Any]) -> None:
        try:
            job()
        except Exception as e:
            error = UncaughtExceptionError(
                e, status=ProgressStatus(ProgressState.UNCAUGHT_EXCEPTION)
            )
            logger.exception(
                "Uncaught exception in worker task",
                extra={"error": get_error_context(error)},
            )
            try:
                self._handle(error)
            except Exception:
                logger.exception("Exception handler failed on an uncaught exception")


class Scheduler:
    """Runs ``task`` on ``thread_count`` threads, each pausing ``period_seconds`` between runs."""

    def __init__(
        self,
        task: Callable[[], Any],
        thread_count: int,
        period_seconds: float,
        thread_name_prefix: str = "cloudtrail-scheduler",
    ):
        if thread_count < 1:
            raise ValueError(f"Scheduler thread count must be at least 1, got {thread_count}")
        self._task = task
        self._thread_count = thread_count
        self._period = period_seconds
        self._name = thread_name_prefix
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Scheduler already started")
        for i in range(self._thread_count):
            thread = threading.Thread(
                target=self._loop, name=f"{self._name}_{i}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        logger.debug("Scheduler started", extra={"thread_count": self._thread_count})

    def stop(self, grace_seconds: float) -> bool:
        """Signals the threads and waits for them; returns True if all exited in time."""
        self._stop_event.set()
        deadline = time.monotonic() + grace_seconds
        for thread in self._threads:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))

        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            logger.warning(
                "Scheduler threads still running after the grace period",
                extra={"threads": alive},
            )
            return False
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._task()
            except Exception:
                # Keep polling; one failed cycle must not end the schedule.
                logger.exception("Scheduled task failed")
            if self._stop_event.wait(self._period):
                break


class ProcessingExecutor:
    """
    Ties everything together: polls the queue on a schedule, resolves each
    message to a Source and runs one SourceProcessor job per source on the
    worker pool.

    Use ``ProcessingExecutor.build`` to construct one from a config and a
    records processor.
    """

    def __init__(
        self,
        config: ProcessingConfig,
        queue_manager: QueueManager,
        source_processor: SourceProcessor,
        exception_handler: ExceptionHandler,
    ):
        self._config = config
        self._queue = queue_manager
        self._processor = source_processor
        self._pool = WorkerPool(config.thread_count, exception_handler)
        self._scheduler = Scheduler(
            self.run_once,
            thread_count=config.scheduler_thread_count,
            period_seconds=config.scheduler_period_seconds,
        )

    @classmethod
    def build(
        cls,
        config: ProcessingConfig,
        records_processor: RecordsProcessor,
        *,
        source_filter: SourceFilter = accept_all_sources,
        record_filter: RecordFilter = accept_all_records,
        progress_reporter: ProgressReporter | None = None,
        exception_handler: ExceptionHandler = log_exception,
        sqs_client: QueueClient | None = None,
        s3_client: BlobClient | None = None,
        resolver: SourceResolver | None = None,
    ) -> "ProcessingExecutor":
        """
        Validates the configuration and collaborators and wires up the
        executor. boto3 clients are created from the config's regions unless
        queue and blob clients are passed in.
        """
        config.validate()
        for name, value in (
            ("records_processor", records_processor),
            ("source_filter", source_filter),
            ("record_filter", record_filter),
            ("exception_handler", exception_handler),
        ):
            if not callable(value):
                raise ConfigurationError(f"{name} must be callable", context={"field": name})

        progress_reporter = progress_reporter or LoggingProgressReporter()

        if sqs_client is None:
            sqs_client = SqsClient(
                boto3.client(
                    "sqs",
                    region_name=config.sqs_region,
                    config=BotoConfig(
                        connect_timeout=CLIENT_CONNECT_TIMEOUT_SECONDS,
                        # Must outlast a long poll.
                        read_timeout=LONG_POLL_WAIT_SECONDS + CLIENT_READ_TIMEOUT_SECONDS,
                    ),
                ),
                config.sqs_url,
            )
        if s3_client is None:
            s3_client = S3Client(
                boto3.client(
                    "s3",
                    region_name=config.s3_region,
                    config=BotoConfig(
                        connect_timeout=CLIENT_CONNECT_TIMEOUT_SECONDS,
                        read_timeout=CLIENT_READ_TIMEOUT_SECONDS,
                    ),
                )
            )

        queue_manager = QueueManager(
            sqs_client,
            resolver or SourceResolver(),
            config,
            progress_reporter,
            exception_handler,
        )
        blob_manager = BlobManager(s3_client, progress_reporter, exception_handler)
        source_processor = SourceProcessor(
            config,
            queue_manager,
            blob_manager,
            source_filter=source_filter,
            record_filter=record_filter,
            records_processor=records_processor,
            progress_reporter=progress_reporter,
            exception_handler=exception_handler,
        )
        return cls(config, queue_manager, source_processor, exception_handler)

    @property
    def worker_pool(self) -> WorkerPool:
        return self._pool

    def run_once(self) -> int:
        """One scheduler cycle: poll, resolve, dispatch. Returns the number of sources dispatched."""
        if self._pool.stopped:
            return 0
        messages = self._queue.poll_queue()
        if not messages:
            return 0

        dispatched = 0
        for source in self._queue.parse_messages(messages):
            if self._pool.submit(functools.partial(self._processor.process_source, source)):
                dispatched += 1
        return dispatched

    def start(self) -> None:
        logger.info(
            "Starting CloudTrail processor",
            extra={
                "sqs_url": self._config.sqs_url,
                "thread_count": self._config.thread_count,
                "scheduler_thread_count": self._config.scheduler_thread_count,
            },
        )
        self._scheduler.start()

    def stop(self) -> None:
        """Stops the worker pool, then the scheduler, each within the grace period."""
        grace = self._config.shutdown_grace_seconds
        logger.info("Stopping CloudTrail processor", extra={"grace_seconds": grace})
        self._pool.stop(grace)
        self._scheduler.stop(grace)
        logger.info("CloudTrail processor stopped")
