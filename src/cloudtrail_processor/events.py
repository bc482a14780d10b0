# src/cloudtrail_processor/events.py

"""
Schema-tolerant models of CloudTrail events.

Every entity is a frozen Pydantic model that types the keys CloudTrail
documents and keeps any other key verbatim in ``model_extra``: scalars as
they appeared, objects and arrays as canonical JSON text. New fields added
by CloudTrail therefore survive decoding without a library upgrade, while
known fields stay statically typed.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

EVENT_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
SUPPORTED_EVENT_VERSION = 1.09

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)?$")


def canonical_json(value: Any) -> str:
    """Compact JSON text, key order preserved."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _as_json_text(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return canonical_json(value)
    return value


class EventBag(BaseModel):
    """Base for every entity: typed known keys plus verbatim unknown keys."""

    model_config = ConfigDict(extra="allow", frozen=True, coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def keep_unknown_fields_as_text(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError(
                f"{cls.__name__} must be a JSON object, not {type(data).__name__}"
            )
        known = cls.json_keys()
        return {
            key: value if key in known else _as_json_text(value)
            for key, value in data.items()
        }

    @classmethod
    def json_keys(cls) -> set[str]:
        return {info.alias or name for name, info in cls.model_fields.items()}

    @property
    def unknown_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def get(self, key: str, default: Any = None) -> Any:
        """Looks a value up by its JSON key, whether the key is typed or not."""
        for name, info in type(self).model_fields.items():
            if (info.alias or name) == key:
                value = getattr(self, name)
                return default if value is None else value
        return (self.model_extra or {}).get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class SessionIssuer(EventBag):
    identity_type: str | None = Field(None, alias="type")
    principal_id: str | None = Field(None, alias="principalId")
    arn: str | None = None
    account_id: str | None = Field(None, alias="accountId")
    user_name: str | None = Field(None, alias="userName")


class WebIdentitySessionContext(EventBag):
    federated_provider: str | None = Field(None, alias="federatedProvider")
    attributes: dict[str, str | None] | None = None


class SessionContext(EventBag):
    attributes: dict[str, str | None] | None = None
    session_issuer: SessionIssuer | None = Field(None, alias="sessionIssuer")
    web_id_federation_data: WebIdentitySessionContext | None = Field(
        None, alias="webIdFederationData"
    )
    source_identity: str | None = Field(None, alias="sourceIdentity")
    ec2_role_delivery: str | None = Field(None, alias="ec2RoleDelivery")


class UserIdentity(EventBag):
    identity_type: str | None = Field(None, alias="type")
    principal_id: str | None = Field(None, alias="principalId")
    arn: str | None = None
    account_id: str | None = Field(None, alias="accountId")
    access_key_id: str | None = Field(None, alias="accessKeyId")
    user_name: str | None = Field(None, alias="userName")
    invoked_by: str | None = Field(None, alias="invokedBy")
    identity_provider: str | None = Field(None, alias="identityProvider")
    session_context: SessionContext | None = Field(None, alias="sessionContext")


class Resource(EventBag):
    arn: str | None = Field(None, alias="ARN")
    account_id: str | None = Field(None, alias="accountId")
    resource_type: str | None = Field(None, alias="type")
    arn_prefix: str | None = Field(None, alias="ARNPrefix")


class InsightDetails(EventBag):
    state: str | None = None
    event_source: str | None = Field(None, alias="eventSource")
    event_name: str | None = Field(None, alias="eventName")
    insight_type: str | None = Field(None, alias="insightType")
    insight_context: str | None = Field(None, alias="insightContext")

    @field_validator("insight_context", mode="before")
    @classmethod
    def insight_context_as_text(cls, value: Any) -> Any:
        return _as_json_text(value)


class Addendum(EventBag):
    reason: str | None = None
    updated_fields: str | None = Field(None, alias="updatedFields")
    original_request_id: str | None = Field(None, alias="originalRequestID")
    original_event_id: str | None = Field(None, alias="originalEventID")


class TlsDetails(EventBag):
    tls_version: str | None = Field(None, alias="tlsVersion")
    cipher_suite: str | None = Field(None, alias="cipherSuite")
    client_provided_host_header: str | None = Field(
        None, alias="clientProvidedHostHeader"
    )


class CloudTrailEvent(EventBag):
    """One entry of a log file's ``Records`` array."""

    event_version: str | None = Field(None, alias="eventVersion")
    event_time: datetime | None = Field(None, alias="eventTime")
    event_source: str | None = Field(None, alias="eventSource")
    event_name: str | None = Field(None, alias="eventName")
    aws_region: str | None = Field(None, alias="awsRegion")
    source_ip_address: str | None = Field(None, alias="sourceIPAddress")
    user_agent: str | None = Field(None, alias="userAgent")
    user_identity: UserIdentity | None = Field(None, alias="userIdentity")
    request_parameters: str | None = Field(None, alias="requestParameters")
    response_elements: str | None = Field(None, alias="responseElements")
    additional_event_data: str | None = Field(None, alias="additionalEventData")
    service_event_details: str | None = Field(None, alias="serviceEventDetails")
    edge_device_details: str | None = Field(None, alias="edgeDeviceDetails")
    request_id: str | None = Field(None, alias="requestID")
    event_id: UUID | None = Field(None, alias="eventID")
    shared_event_id: UUID | None = Field(None, alias="sharedEventID")
    event_type: str | None = Field(None, alias="eventType")
    event_category: str | None = Field(None, alias="eventCategory")
    api_version: str | None = Field(None, alias="apiVersion")
    read_only: bool | None = Field(None, alias="readOnly")
    management_event: bool | None = Field(None, alias="managementEvent")
    resources: list[Resource] | None = None
    recipient_account_id: str | None = Field(None, alias="recipientAccountId")
    account_id: str | None = Field(None, alias="accountId")
    error_code: str | None = Field(None, alias="errorCode")
    error_message: str | None = Field(None, alias="errorMessage")
    vpc_endpoint_id: str | None = Field(None, alias="vpcEndpointId")
    session_credential_from_console: bool | None = Field(
        None, alias="sessionCredentialFromConsole"
    )
    insight_details: InsightDetails | None = Field(None, alias="insightDetails")
    addendum: Addendum | None = None
    tls_details: TlsDetails | None = Field(None, alias="tlsDetails")

    @field_validator(
        "request_parameters",
        "response_elements",
        "additional_event_data",
        "service_event_details",
        "edge_device_details",
        mode="before",
    )
    @classmethod
    def structured_values_as_text(cls, value: Any) -> Any:
        return _as_json_text(value)

    @field_validator("event_time", mode="before")
    @classmethod
    def parse_event_time(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"eventTime must be a string, not {type(value).__name__}")
        return datetime.strptime(value, EVENT_TIME_FORMAT).replace(tzinfo=timezone.utc)

    @field_validator("event_id", "shared_event_id", mode="before")
    @classmethod
    def parse_uuid(cls, value: Any) -> UUID | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"Expected a UUID string, not {type(value).__name__}")
        return UUID(value)

    @field_validator("event_version")
    @classmethod
    def note_newer_event_version(cls, value: str | None) -> str | None:
        if (
            value is not None
            and _VERSION_PATTERN.match(value)
            and float(value) > SUPPORTED_EVENT_VERSION
        ):
            logger.debug(
                "Event version is newer than the supported version.",
                extra={"event_version": value, "supported": SUPPORTED_EVENT_VERSION},
            )
        return value


def resolve_account_id(event: CloudTrailEvent) -> str | None:
    """
    The account an event belongs to: recipientAccountId, then
    userIdentity.accountId, then the session issuer's accountId.
    """
    if event.recipient_account_id is not None:
        return event.recipient_account_id

    identity = event.user_identity
    if identity is None:
        return None
    if identity.account_id is not None:
        return identity.account_id

    session_context = identity.session_context
    if session_context is not None and session_context.session_issuer is not None:
        return session_context.session_issuer.account_id
    return None
