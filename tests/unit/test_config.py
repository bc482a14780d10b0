# tests/unit/test_config.py

import pytest

from cloudtrail_processor.config import (
    ConfigurationError,
    ProcessingConfig,
    get_config,
)

_OPTIONAL_VARS = [
    "SQS_REGION",
    "S3_REGION",
    "VISIBILITY_TIMEOUT",
    "THREAD_COUNT",
    "SCHEDULER_THREAD_COUNT",
    "SCHEDULER_PERIOD_SECONDS",
    "THREAD_TERMINATION_DELAY_SECONDS",
    "MAX_RECORDS_PER_EMIT",
    "ENABLE_RAW_RECORD_INFO",
    "DELETE_MESSAGE_UPON_FAILURE",
    "LOG_LEVEL",
    "SERVICE_NAME",
    "METRICS_NAMESPACE",
]


@pytest.fixture(autouse=True)
def clear_config_cache():
    """
    Clears the lru_cache for get_config before each test, so each test reads
    its own monkeypatched environment.
    """
    get_config.cache_clear()


@pytest.fixture
def minimal_env(monkeypatch):
    monkeypatch.setenv("SQS_URL", "https://sqs.eu-west-1.amazonaws.com/123/queue")
    for name in _OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_valid_env(minimal_env, monkeypatch):
    monkeypatch.setenv("SQS_REGION", "eu-west-1")
    monkeypatch.setenv("S3_REGION", "eu-central-1")
    monkeypatch.setenv("VISIBILITY_TIMEOUT", "300")
    monkeypatch.setenv("THREAD_COUNT", "8")
    monkeypatch.setenv("SCHEDULER_THREAD_COUNT", "2")
    monkeypatch.setenv("SCHEDULER_PERIOD_SECONDS", "0.5")
    monkeypatch.setenv("THREAD_TERMINATION_DELAY_SECONDS", "30")
    monkeypatch.setenv("MAX_RECORDS_PER_EMIT", "100")
    monkeypatch.setenv("ENABLE_RAW_RECORD_INFO", "true")
    monkeypatch.setenv("DELETE_MESSAGE_UPON_FAILURE", "1")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("SERVICE_NAME", "test-service")
    monkeypatch.setenv("METRICS_NAMESPACE", "TestNamespace")


def test_get_config_happy_path(mock_valid_env):
    # ACT
    config = get_config()

    # ASSERT
    assert config.sqs_url == "https://sqs.eu-west-1.amazonaws.com/123/queue"
    assert config.sqs_region == "eu-west-1"
    assert config.s3_region == "eu-central-1"
    assert config.visibility_timeout == 300
    assert config.thread_count == 8
    assert config.scheduler_thread_count == 2
    assert config.scheduler_period_seconds == 0.5
    assert config.thread_termination_delay_seconds == 30
    assert config.max_records_per_emit == 100
    assert config.enable_raw_record_info is True
    assert config.delete_message_upon_failure is True
    assert config.log_level == "DEBUG"
    assert config.service_name == "test-service"
    assert config.metrics_namespace == "TestNamespace"
    # Derived properties
    assert config.shutdown_grace_seconds == 30.0


def test_get_config_uses_defaults(minimal_env):
    # ACT
    config = get_config()

    # ASSERT
    assert config.sqs_region == "us-east-1"
    assert config.s3_region == "us-east-1"
    assert config.visibility_timeout == 60
    assert config.thread_count == 1
    assert config.scheduler_thread_count == 1
    assert config.scheduler_period_seconds == 0.001
    assert config.thread_termination_delay_seconds == 60
    assert config.max_records_per_emit == 1
    assert config.enable_raw_record_info is False
    assert config.delete_message_upon_failure is False
    assert config.log_level == "INFO"
    assert config.service_name == "cloudtrail-processor"
    assert config.metrics_namespace == "CloudTrailProcessor"


def test_get_config_is_cached(minimal_env, monkeypatch):
    first = get_config()
    monkeypatch.setenv("THREAD_COUNT", "4")
    assert get_config() is first


def test_get_config_missing_required_var(minimal_env, monkeypatch):
    monkeypatch.delenv("SQS_URL")

    with pytest.raises(ConfigurationError, match="Missing required environment variable: SQS_URL"):
        get_config()


@pytest.mark.parametrize(
    "var_name, invalid_value, error_match",
    [
        ("VISIBILITY_TIMEOUT", "43201", "VISIBILITY_TIMEOUT must be between"),
        ("VISIBILITY_TIMEOUT", "-1", "VISIBILITY_TIMEOUT must be between"),
        ("THREAD_COUNT", "0", "THREAD_COUNT must be a positive integer"),
        ("THREAD_COUNT", "many", "invalid literal for int"),
        ("SCHEDULER_THREAD_COUNT", "0", "SCHEDULER_THREAD_COUNT must be a positive integer"),
        ("SCHEDULER_PERIOD_SECONDS", "-0.1", "SCHEDULER_PERIOD_SECONDS must not be negative"),
        ("THREAD_TERMINATION_DELAY_SECONDS", "-5", "must be a non-negative integer"),
        ("MAX_RECORDS_PER_EMIT", "0", "MAX_RECORDS_PER_EMIT must be a positive integer"),
        ("LOG_LEVEL", "VERBOSE", "LOG_LEVEL must be one of"),
    ],
)
def test_get_config_invalid_values(minimal_env, monkeypatch, var_name, invalid_value, error_match):
    monkeypatch.setenv(var_name, invalid_value)

    with pytest.raises(ConfigurationError, match=error_match):
        get_config()


@pytest.mark.parametrize("value", ["false", "0", "no", "off", "anything"])
def test_boolean_toggles_are_false_unless_truthy(minimal_env, monkeypatch, value):
    monkeypatch.setenv("ENABLE_RAW_RECORD_INFO", value)
    assert get_config().enable_raw_record_info is False


class TestValidate:
    def test_defaults_are_valid(self):
        ProcessingConfig(sqs_url="https://queue").validate()

    @pytest.mark.parametrize(
        "overrides, error_match",
        [
            ({"sqs_url": ""}, "SQS URL is empty"),
            ({"visibility_timeout": 50_000}, "Visibility timeout"),
            ({"thread_count": 0}, "Thread count"),
            ({"scheduler_thread_count": 0}, "Scheduler thread count"),
            ({"scheduler_period_seconds": -1}, "Scheduler period"),
            ({"thread_termination_delay_seconds": -1}, "Thread termination delay"),
            ({"max_records_per_emit": 0}, "Max records per emit"),
            ({"log_level": "TRACE"}, "Log level"),
        ],
    )
    def test_invalid_fields(self, overrides, error_match):
        config = ProcessingConfig(**{"sqs_url": "https://queue", **overrides})

        with pytest.raises(ConfigurationError, match=error_match):
            config.validate()
