# In src/cloudtrail_processor/schemas.py

from pydantic import BaseModel, ConfigDict, Field

# --- Runtime Validation (using Pydantic) ---


class SnsEnvelope(BaseModel):
    """
    The SNS notification wrapper. Only ``Message`` matters; the rest (Type,
    MessageId, TopicArn, Signature...) is tolerated and ignored.
    """

    message: str = Field(..., alias="Message")


class CloudTrailDeliveryNotification(BaseModel):
    """
    The message CloudTrail publishes to SNS after delivering log files.
    Fields other than the bucket and key list are kept so they can be copied
    into the queue message's attributes.
    """

    model_config = ConfigDict(extra="allow")

    s3_bucket: str = Field(..., alias="s3Bucket", min_length=1)
    s3_object_keys: list[str] = Field(..., alias="s3ObjectKey")


class S3BucketModel(BaseModel):
    name: str = Field(..., min_length=1)


class S3ObjectModel(BaseModel):
    key: str = Field(..., min_length=1)
    size: int | None = None


class S3DataModel(BaseModel):
    bucket: S3BucketModel
    object: S3ObjectModel


class S3EventNotificationRecord(BaseModel):
    """
    Pydantic model for runtime parsing and validation of an S3 event record.
    """

    event_name: str = Field(..., alias="eventName")
    s3: S3DataModel


class S3EventNotification(BaseModel):
    """An S3 event notification carrying one or more records."""

    records: list[S3EventNotificationRecord] = Field(
        ..., alias="Records", min_length=1
    )
