# src/cloudtrail_processor/resolver.py

"""
Turns queue messages into Sources.

Four message shapes can reach the queue:

1. A CloudTrail delivery notification published through SNS: the SNS
   ``Message`` text is JSON with ``s3Bucket`` and an ``s3ObjectKey`` list.
2. An S3 event notification published through SNS.
3. An S3 event notification delivered to the queue directly.
4. The validation message CloudTrail publishes when a trail's SNS topic is
   configured. It carries no log files.

Each shape has an interpreter: a plain function that returns a Source or
raises when the message is not its shape. ``SourceResolver`` tries them in
order, starting with whichever one matched last.
"""

import logging
import re
import threading
from typing import Callable, Sequence

from .events import canonical_json
from .exceptions import MessageParsingError, UnrecognizedMessageError
from .models import (
    LogFileLocation,
    NotificationMessage,
    Source,
    SourceAttributeKeys,
    SourceType,
)
from .schemas import (
    CloudTrailDeliveryNotification,
    S3EventNotification,
    SnsEnvelope,
)

logger = logging.getLogger(__name__)

VALIDATION_MESSAGE = "CloudTrail validation message."
OBJECT_CREATED_PREFIX = "ObjectCreated:"

# <prefix>/<account>_CloudTrail_<region>_<yyyyMMdd>T<HHmm>Z_<unique>.json.gz
LOG_FILE_PATTERN = re.compile(
    r".*\d+_CloudTrail_[\w\-]+_\d{8}T\d{4}Z_\w+\.json\.gz", re.ASCII
)

Interpreter = Callable[[NotificationMessage], Source]

# Interpreters signal "not my shape" with these; pydantic's ValidationError
# and json.JSONDecodeError are both ValueErrors.
_NOT_APPLICABLE = (MessageParsingError, ValueError)


def identify_object_key(object_key: str, event_name: str | None = None) -> SourceType:
    """
    Classifies an S3 object key. When the key comes from an S3 event, only
    object-creation events can announce a log file.
    """
    if event_name is not None and not event_name.startswith(OBJECT_CREATED_PREFIX):
        return SourceType.OTHER
    if LOG_FILE_PATTERN.fullmatch(object_key):
        return SourceType.AUDIT_LOG
    return SourceType.OTHER


def extract_account_id(object_key: str) -> str | None:
    """
    The account id is the file name's leading segment, up to the first '_'.
    Keys without a '/', or whose file name has no '_', carry no account id.
    """
    start = object_key.rfind("/")
    if start == -1:
        return None
    end = object_key.find("_", start + 1)
    if end == -1:
        return None
    return object_key[start + 1 : end]


def _attribute_text(value) -> str:
    if isinstance(value, str):
        return value
    return canonical_json(value)


def _build_source(
    message: NotificationMessage,
    candidates: Sequence[tuple[str, str, str | None, int | None]],
    extra_attributes: dict[str, str] | None = None,
) -> Source:
    """
    Builds a Source from (bucket, key, event_name, size) candidates, keeping
    only the ones that are log files. The message is tagged only after every
    candidate was looked at, so a rejected message is left untouched.
    """
    logs: list[LogFileLocation] = []
    attributes: dict[str, str] = dict(extra_attributes or {})
    source_type = SourceType.OTHER

    for bucket, key, event_name, size in candidates:
        if identify_object_key(key, event_name) is SourceType.AUDIT_LOG:
            logs.append(LogFileLocation(bucket=bucket, object_key=key, size=size))
            account_id = extract_account_id(key)
            if account_id is not None:
                attributes[SourceAttributeKeys.ACCOUNT_ID.value] = account_id
            source_type = SourceType.AUDIT_LOG

    attributes[SourceAttributeKeys.SOURCE_TYPE.value] = source_type.value
    message.attributes.update(attributes)
    return Source(message=message, logs=logs)


def _s3_event_source(message: NotificationMessage, notification: S3EventNotification) -> Source:
    return _build_source(
        message,
        [
            (record.s3.bucket.name, record.s3.object.key, record.event_name, record.s3.object.size)
            for record in notification.records
        ],
    )


# --- Interpreters ---


def interpret_cloudtrail_notification(message: NotificationMessage) -> Source:
    """Shape 1: SNS envelope around a CloudTrail delivery notification."""
    envelope = SnsEnvelope.model_validate_json(message.body)
    notification = CloudTrailDeliveryNotification.model_validate_json(envelope.message)

    # Everything besides the bucket and the key list travels as attributes.
    extra_attributes = {
        key: _attribute_text(value)
        for key, value in (notification.model_extra or {}).items()
    }
    return _build_source(
        message,
        [(notification.s3_bucket, key, None, None) for key in notification.s3_object_keys],
        extra_attributes,
    )


def interpret_s3_notification_via_sns(message: NotificationMessage) -> Source:
    """Shape 2: SNS envelope around an S3 event notification."""
    envelope = SnsEnvelope.model_validate_json(message.body)
    return _s3_event_source(message, S3EventNotification.model_validate_json(envelope.message))


def interpret_s3_notification(message: NotificationMessage) -> Source:
    """Shape 3: S3 event notification delivered straight to the queue."""
    return _s3_event_source(message, S3EventNotification.model_validate_json(message.body))


def interpret_validation_message(message: NotificationMessage) -> Source:
    """Shape 4: the trail's SNS validation message."""
    envelope = SnsEnvelope.model_validate_json(message.body)
    if envelope.message != VALIDATION_MESSAGE:
        raise MessageParsingError(
            "Not a CloudTrail validation message",
            context={"message_id": message.message_id},
        )
    message.attributes[SourceAttributeKeys.SOURCE_TYPE.value] = (
        SourceType.VALIDATION_MESSAGE.value
    )
    return Source(message=message, logs=[])


DEFAULT_INTERPRETERS: tuple[Interpreter, ...] = (
    interpret_cloudtrail_notification,
    interpret_s3_notification_via_sns,
    interpret_s3_notification,
    interpret_validation_message,
)


class SourceResolver:
    """
    Resolves a message with the first interpreter that accepts it.

    The index of the last successful interpreter is remembered and tried
    first, since a queue usually carries one shape only. Resolvers are shared
    by all scheduler threads; a stale cached index only costs an extra
    attempt.
    """

    def __init__(self, interpreters: Sequence[Interpreter] = DEFAULT_INTERPRETERS):
        if not interpreters:
            raise ValueError("At least one message interpreter is required")
        self._interpreters = tuple(interpreters)
        self._lock = threading.Lock()
        self._last_index = 0

    @property
    def interpreters(self) -> tuple[Interpreter, ...]:
        return self._interpreters

    def resolve(self, message: NotificationMessage) -> Source:
        with self._lock:
            cached = self._last_index
        order = [cached] + [i for i in range(len(self._interpreters)) if i != cached]

        errors: list[Exception] = []
        for index in order:
            interpreter = self._interpreters[index]
            try:
                source = interpreter(message)
            except _NOT_APPLICABLE as e:
                logger.debug(
                    "Interpreter did not recognize message",
                    extra={
                        "message_id": message.message_id,
                        "interpreter": getattr(interpreter, "__name__", repr(interpreter)),
                        "reason": type(e).__name__,
                    },
                )
                errors.append(e)
                continue

            if index != cached:
                with self._lock:
                    self._last_index = index
            return source

        raise UnrecognizedMessageError(message.message_id, suppressed=errors)
