import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ALLOWED_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_TRUTHY = ("true", "1", "yes", "on")

# SQS caps ReceiveMessage at 12 hours of visibility.
MAX_VISIBILITY_TIMEOUT = 43_200

DEFAULT_SERVICE_NAME = "cloudtrail-processor"
DEFAULT_METRICS_NAMESPACE = "CloudTrailProcessor"


@dataclass(frozen=True, slots=True)
class ProcessingConfig:
    """Processor configuration, usually loaded from environment variables."""

    # --- Required Variables ---
    sqs_url: str

    # --- Optional Variables with Defaults ---
    sqs_region: str = "us-east-1"
    s3_region: str = "us-east-1"
    visibility_timeout: int = 60
    thread_count: int = 1
    scheduler_thread_count: int = 1
    scheduler_period_seconds: float = 0.001
    thread_termination_delay_seconds: int = 60
    max_records_per_emit: int = 1
    enable_raw_record_info: bool = False
    delete_message_upon_failure: bool = False
    log_level: str = "INFO"
    service_name: str = DEFAULT_SERVICE_NAME
    metrics_namespace: str = DEFAULT_METRICS_NAMESPACE

    # --- Derived Properties ---
    @property
    def shutdown_grace_seconds(self) -> float:
        return float(self.thread_termination_delay_seconds)

    def validate(self) -> None:
        """
        Re-checks every constraint, for configurations built directly rather
        than through load_from_env.
        """
        if not self.sqs_url:
            raise ConfigurationError("SQS URL is empty.")
        if not self.sqs_region:
            raise ConfigurationError("SQS region is empty.")
        if not self.s3_region:
            raise ConfigurationError("S3 region is empty.")
        if not 0 <= self.visibility_timeout <= MAX_VISIBILITY_TIMEOUT:
            raise ConfigurationError(
                f"Visibility timeout must be between 0 and {MAX_VISIBILITY_TIMEOUT}."
            )
        if self.thread_count < 1:
            raise ConfigurationError("Thread count cannot be less than 1.")
        if self.scheduler_thread_count < 1:
            raise ConfigurationError("Scheduler thread count cannot be less than 1.")
        if self.scheduler_period_seconds < 0:
            raise ConfigurationError("Scheduler period cannot be negative.")
        if self.thread_termination_delay_seconds < 0:
            raise ConfigurationError("Thread termination delay cannot be negative.")
        if self.max_records_per_emit < 1:
            raise ConfigurationError("Max records per emit cannot be less than 1.")
        if self.log_level not in _ALLOWED_LOG_LEVELS:
            raise ConfigurationError(
                f"Log level must be one of {_ALLOWED_LOG_LEVELS}, not '{self.log_level}'"
            )

    @classmethod
    def load_from_env(cls) -> "ProcessingConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            sqs_url = os.environ["SQS_URL"]

            # --- Handle optional and numeric variables with validation ---
            visibility_timeout = int(os.getenv("VISIBILITY_TIMEOUT", "60"))
            if not 0 <= visibility_timeout <= MAX_VISIBILITY_TIMEOUT:
                raise ValueError(
                    f"VISIBILITY_TIMEOUT must be between 0 and {MAX_VISIBILITY_TIMEOUT}."
                )

            thread_count = int(os.getenv("THREAD_COUNT", "1"))
            if thread_count < 1:
                raise ValueError("THREAD_COUNT must be a positive integer.")

            scheduler_thread_count = int(os.getenv("SCHEDULER_THREAD_COUNT", "1"))
            if scheduler_thread_count < 1:
                raise ValueError("SCHEDULER_THREAD_COUNT must be a positive integer.")

            scheduler_period_seconds = float(
                os.getenv("SCHEDULER_PERIOD_SECONDS", "0.001")
            )
            if scheduler_period_seconds < 0:
                raise ValueError("SCHEDULER_PERIOD_SECONDS must not be negative.")

            thread_termination_delay_seconds = int(
                os.getenv("THREAD_TERMINATION_DELAY_SECONDS", "60")
            )
            if thread_termination_delay_seconds < 0:
                raise ValueError(
                    "THREAD_TERMINATION_DELAY_SECONDS must be a non-negative integer."
                )

            max_records_per_emit = int(os.getenv("MAX_RECORDS_PER_EMIT", "1"))
            if max_records_per_emit < 1:
                raise ValueError("MAX_RECORDS_PER_EMIT must be a positive integer.")

            # --- Handle boolean toggles ---
            enable_raw_record_info = (
                os.getenv("ENABLE_RAW_RECORD_INFO", "false").lower() in _TRUTHY
            )
            delete_message_upon_failure = (
                os.getenv("DELETE_MESSAGE_UPON_FAILURE", "false").lower() in _TRUTHY
            )

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            if log_level not in _ALLOWED_LOG_LEVELS:
                raise ValueError(
                    f"LOG_LEVEL must be one of {_ALLOWED_LOG_LEVELS}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            sqs_url=sqs_url,
            sqs_region=os.getenv("SQS_REGION", "us-east-1"),
            s3_region=os.getenv("S3_REGION", "us-east-1"),
            visibility_timeout=visibility_timeout,
            thread_count=thread_count,
            scheduler_thread_count=scheduler_thread_count,
            scheduler_period_seconds=scheduler_period_seconds,
            thread_termination_delay_seconds=thread_termination_delay_seconds,
            max_records_per_emit=max_records_per_emit,
            enable_raw_record_info=enable_raw_record_info,
            delete_message_upon_failure=delete_message_upon_failure,
            log_level=log_level,
            service_name=os.getenv("SERVICE_NAME", DEFAULT_SERVICE_NAME),
            metrics_namespace=os.getenv("METRICS_NAMESPACE", DEFAULT_METRICS_NAMESPACE),
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> ProcessingConfig:
    """
    Loads the processor configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading processor configuration from environment...")
    return ProcessingConfig.load_from_env()
