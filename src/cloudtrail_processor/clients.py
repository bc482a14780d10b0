# src/cloudtrail_processor/clients.py

"""
Client wrappers for interacting with AWS services (S3 and SQS).

These classes provide a clean, abstracted interface over raw boto3 clients,
so the processing logic only ever sees the two narrow protocols below and
our own exception types. Both wrappers are shared by every worker thread;
boto3 clients are thread-safe.
"""

import logging
from typing import TYPE_CHECKING, Protocol

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .exceptions import (
    LogDownloadError,
    MessageDeletionError,
    MessagePollingError,
    S3AccessDeniedError,
    S3Error,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)
from .models import NotificationMessage

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType
    from mypy_boto3_sqs.client import SQSClient as SQSClientType

logger = logging.getLogger(__name__)

_THROTTLING_CODES = ["Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown"]
_TIMEOUT_CODES = ["RequestTimeout", "RequestTimeoutException"]


class QueueClient(Protocol):
    def poll(
        self, max_messages: int, wait_seconds: int, visibility_timeout: int
    ) -> list[NotificationMessage]: ...

    def delete(self, message: NotificationMessage) -> None: ...


class BlobClient(Protocol):
    def download(self, bucket: str, key: str) -> bytes: ...


def _map_s3_client_error(e: ClientError, bucket: str, key: str) -> S3Error:
    """Map boto3 error codes to our specific exception types."""
    error_code = e.response["Error"]["Code"]
    error_message = e.response["Error"].get("Message", "")
    context = {
        "bucket": bucket,
        "key": key,
        "aws_error_code": error_code,
        "aws_error_message": error_message,
    }

    if error_code in ("NoSuchKey", "404"):
        return S3ObjectNotFoundError(bucket=bucket, key=key, context=context)
    if error_code in ("AccessDenied", "403"):
        return S3AccessDeniedError(bucket=bucket, key=key, context=context)
    if error_code in _THROTTLING_CODES:
        return S3ThrottlingError("GetObject", context=context)
    if error_code in _TIMEOUT_CODES:
        return S3TimeoutError("GetObject", context=context)
    # For other client errors, wrap in a generic download error
    return LogDownloadError(bucket=bucket, key=key, context=context)


class S3Client:
    """
    A wrapper for S3 client operations, focused on fetching log files.
    """

    def __init__(self, s3_client: "S3ClientType"):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
        """
        self._client = s3_client

    def download(self, bucket: str, key: str) -> bytes:
        """
        Retrieves an S3 object's full content.
        Raises specific S3 exceptions based on the error type.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            with response["Body"] as body:
                content = body.read()
        except ClientError as e:
            raise _map_s3_client_error(e, bucket, key) from e
        except ReadTimeoutError as e:
            raise S3TimeoutError(
                "GetObject",
                context={"bucket": bucket, "key": key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "GetObject",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise LogDownloadError(
                bucket=bucket, key=key, context={"botocore_error": str(e)}
            ) from e

        logger.info(
            "Downloaded log file",
            extra={"bucket": bucket, "key": key, "size": len(content)},
        )
        return content


class SqsClient:
    """
    A wrapper for SQS client operations on a single queue.
    """

    # Ask for every system attribute (receive count, sent timestamp, sender).
    ALL_ATTRIBUTES = "All"

    def __init__(self, sqs_client: "SQSClientType", queue_url: str):
        self._client = sqs_client
        self._queue_url = queue_url

    @property
    def queue_url(self) -> str:
        return self._queue_url

    def poll(
        self, max_messages: int, wait_seconds: int, visibility_timeout: int
    ) -> list[NotificationMessage]:
        """Long-polls the queue and converts the raw messages."""
        try:
            response = self._client.receive_message(
                QueueUrl=self._queue_url,
                AttributeNames=[self.ALL_ATTRIBUTES],
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=visibility_timeout,
            )
        except ClientError as e:
            raise MessagePollingError(
                self._queue_url,
                context={
                    "aws_error_code": e.response["Error"]["Code"],
                    "aws_error_message": e.response["Error"].get("Message", ""),
                },
            ) from e
        except BotoCoreError as e:
            raise MessagePollingError(
                self._queue_url, context={"botocore_error": str(e)}
            ) from e

        return [
            NotificationMessage(
                message_id=raw["MessageId"],
                body=raw["Body"],
                receipt_handle=raw["ReceiptHandle"],
                attributes=dict(raw.get("Attributes", {})),
            )
            for raw in response.get("Messages", [])
        ]

    def delete(self, message: NotificationMessage) -> None:
        try:
            self._client.delete_message(
                QueueUrl=self._queue_url, ReceiptHandle=message.receipt_handle
            )
        except ClientError as e:
            raise MessageDeletionError(
                message.message_id,
                context={
                    "queue_url": self._queue_url,
                    "aws_error_code": e.response["Error"]["Code"],
                    "aws_error_message": e.response["Error"].get("Message", ""),
                },
            ) from e
        except BotoCoreError as e:
            raise MessageDeletionError(
                message.message_id,
                context={"queue_url": self._queue_url, "botocore_error": str(e)},
            ) from e
        logger.debug(
            "Deleted message", extra={"message_id": message.message_id}
        )
