# src/cloudtrail_processor/models.py

"""
Plain data holders that flow between the queue, the resolver, the decoder and
the user's callbacks.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .events import CloudTrailEvent


class SourceType(str, Enum):
    """Classification tag the resolver writes into a message's attributes."""

    AUDIT_LOG = "AuditLog"
    VALIDATION_MESSAGE = "ValidationMessage"
    OTHER = "Other"


class SourceAttributeKeys(str, Enum):
    """Well-known keys of a notification message's attribute map."""

    SOURCE_TYPE = "SourceType"
    ACCOUNT_ID = "accountId"
    APPROXIMATE_FIRST_RECEIVE_TIMESTAMP = "ApproximateFirstReceiveTimestamp"
    APPROXIMATE_RECEIVE_COUNT = "ApproximateReceiveCount"
    SENT_TIMESTAMP = "SentTimestamp"
    SENDER_ID = "SenderId"


@dataclass(slots=True)
class NotificationMessage:
    """One message polled from the queue."""

    message_id: str
    body: str
    receipt_handle: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LogFileLocation:
    """Where a single gzip-compressed log file lives in S3."""

    bucket: str
    object_key: str
    size: int | None = None

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.object_key}"


@dataclass(slots=True)
class Source:
    """A notification message resolved into the log files it announces."""

    message: NotificationMessage
    logs: list[LogFileLocation] = field(default_factory=list)

    @property
    def attributes(self) -> dict[str, str]:
        return self.message.attributes

    @property
    def source_type(self) -> SourceType | None:
        value = self.attributes.get(SourceAttributeKeys.SOURCE_TYPE.value)
        return SourceType(value) if value else None

    @property
    def account_id(self) -> str | None:
        return self.attributes.get(SourceAttributeKeys.ACCOUNT_ID.value)


@dataclass(frozen=True, slots=True)
class DeliveryMetadata:
    """
    Provenance of one event inside its log file. Offsets are byte positions
    in the decompressed file (the end offset points at the closing brace);
    both are -1 and raw_record is None unless raw record info is enabled.
    """

    log: LogFileLocation
    start_offset: int = -1
    end_offset: int = -1
    raw_record: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessedRecord:
    """The unit handed to the records processor."""

    event: "CloudTrailEvent"
    delivery: DeliveryMetadata
