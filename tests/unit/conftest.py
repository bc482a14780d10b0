"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import gzip
import json
import os
import uuid
from typing import Any, Callable

import pytest

from cloudtrail_processor.config import ProcessingConfig
from cloudtrail_processor.models import NotificationMessage

ACCOUNT_ID = "111122223333"
LOG_BUCKET = "trail-bucket"
LOG_KEY = (
    f"AWSLogs/{ACCOUNT_ID}/CloudTrail/us-east-1/2024/01/15/"
    f"{ACCOUNT_ID}_CloudTrail_us-east-1_20240115T1030Z_a1b2c3d4e5f6.json.gz"
)
QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/111122223333/cloudtrail-queue"


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables Powertools reads.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "cloudtrail-processor-test")
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    yield
    os.environ.clear()
    os.environ.update(original)


# ---------- Log files ---------- #
@pytest.fixture
def sample_event() -> dict[str, Any]:
    """A minimal but realistic CloudTrail record."""
    return {
        "eventVersion": "1.05",
        "eventTime": "2013-11-01T00:00:00Z",
        "eventSource": "s3.amazonaws.com",
        "eventName": "PutObject",
        "awsRegion": "us-east-1",
        "userIdentity": {"type": "IAMUser", "accountId": ACCOUNT_ID},
    }


@pytest.fixture
def make_events() -> Callable[[int], list[dict[str, Any]]]:
    """Builds N distinct records; eventName carries the record's position."""

    def _make(count: int) -> list[dict[str, Any]]:
        return [
            {
                "eventVersion": "1.08",
                "eventTime": "2024-01-15T10:30:00Z",
                "eventSource": "ec2.amazonaws.com",
                "eventName": f"Event{i}",
                "eventID": str(uuid.uuid4()),
                "recipientAccountId": ACCOUNT_ID,
            }
            for i in range(count)
        ]

    return _make


@pytest.fixture
def gzip_log() -> Callable[..., bytes]:
    """Gzip-compresses a log document built from records, or raw text."""

    def _gzip(records: list[dict[str, Any]] | None = None, text: str | None = None) -> bytes:
        if text is None:
            text = json.dumps({"Records": records or []})
        return gzip.compress(text.encode("utf-8"))

    return _gzip


# ---------- Queue messages ---------- #
@pytest.fixture
def make_message() -> Callable[..., NotificationMessage]:
    def _make(body: Any, message_id: str | None = None) -> NotificationMessage:
        if not isinstance(body, str):
            body = json.dumps(body)
        return NotificationMessage(
            message_id=message_id or str(uuid.uuid4()),
            body=body,
            receipt_handle="receipt-" + uuid.uuid4().hex,
            attributes={"ApproximateReceiveCount": "1"},
        )

    return _make


@pytest.fixture
def cloudtrail_notification() -> Callable[..., dict[str, Any]]:
    """An SNS envelope around a CloudTrail delivery notification."""

    def _make(keys: list[str], bucket: str = LOG_BUCKET) -> dict[str, Any]:
        return {
            "Type": "Notification",
            "MessageId": str(uuid.uuid4()),
            "TopicArn": "arn:aws:sns:us-east-1:111122223333:cloudtrail-topic",
            "Message": json.dumps({"s3Bucket": bucket, "s3ObjectKey": keys}),
        }

    return _make


@pytest.fixture
def s3_notification() -> Callable[..., dict[str, Any]]:
    """An S3 event notification for a single object."""

    def _make(
        key: str = LOG_KEY,
        event_name: str = "ObjectCreated:Put",
        bucket: str = LOG_BUCKET,
    ) -> dict[str, Any]:
        return {
            "Records": [
                {
                    "eventVersion": "2.1",
                    "eventSource": "aws:s3",
                    "eventName": event_name,
                    "s3": {
                        "bucket": {"name": bucket},
                        "object": {"key": key, "size": 1024},
                    },
                }
            ]
        }

    return _make


# ---------- Configuration ---------- #
@pytest.fixture
def config() -> ProcessingConfig:
    return ProcessingConfig(sqs_url=QUEUE_URL, thread_termination_delay_seconds=5)
