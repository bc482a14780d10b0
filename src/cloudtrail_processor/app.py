# src/cloudtrail_processor/app.py

"""
Entry point for running the CloudTrail processor as a long-lived service.

This module is responsible for:
1.  Loading and validating the configuration from environment variables.
2.  Initializing AWS Lambda Powertools (Logger and Metrics) and handing the
    structured logging setup to the library's module loggers.
3.  Building and starting the ProcessingExecutor with the default records
    processor, which logs every event it receives.
4.  Stopping the executor gracefully on SIGINT or SIGTERM.

Embedders that want their own callbacks should call
``ProcessingExecutor.build`` directly instead.
"""

import signal
import sys
import threading

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers

from .callbacks import log_exception, log_records
from .config import DEFAULT_SERVICE_NAME, ProcessingConfig, get_config
from .exceptions import ConfigurationError, get_error_context
from .executor import ProcessingExecutor
from .progress import MetricsProgressReporter

# How often the main thread wakes up to check for a stop request.
_WAIT_INTERVAL_SECONDS = 1.0


def build_executor(config: ProcessingConfig, metrics: Metrics) -> ProcessingExecutor:
    return ProcessingExecutor.build(
        config,
        log_records,
        progress_reporter=MetricsProgressReporter(metrics),
        exception_handler=log_exception,
    )


def main() -> int:
    try:
        config = get_config()
    except ConfigurationError as e:
        Logger(service=DEFAULT_SERVICE_NAME).error(
            f"Invalid configuration: {e}", extra={"error": get_error_context(e)}
        )
        return 2

    logger = Logger(service=config.service_name, level=config.log_level)
    copy_config_to_registered_loggers(source_logger=logger, log_level=config.log_level)
    metrics = Metrics(namespace=config.metrics_namespace, service=config.service_name)

    try:
        executor = build_executor(config, metrics)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}", extra={"error": get_error_context(e)})
        return 2

    stop_requested = threading.Event()

    def request_stop(signum, frame) -> None:
        logger.info("Stop requested", extra={"signal": signal.Signals(signum).name})
        stop_requested.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    executor.start()
    while not stop_requested.wait(_WAIT_INTERVAL_SECONDS):
        pass
    executor.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
