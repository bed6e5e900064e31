from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.common import CustomerIdentifiers


class NotificationEvent(str, Enum):
    CONSENT_HANDLE_CREATED = "CONSENT_HANDLE_CREATED"
    CONSENT_CREATED = "CONSENT_CREATED"
    NEW_CONSENT_VERSION_CREATED = "NEW_CONSENT_VERSION_CREATED"
    CONSENT_REVOKED = "CONSENT_REVOKED"

    @property
    def resource(self) -> str:
        return "CONSENT_HANDLE" if self is NotificationEvent.CONSENT_HANDLE_CREATED else "CONSENT"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConsentHandleCreatedPayload(_CamelModel):
    kind: Literal["consent_handle_created"] = "consent_handle_created"
    consent_handle_id: str
    template_id: str
    template_version: int
    expires_at: datetime


class ConsentCreatedPayload(_CamelModel):
    kind: Literal["consent_created"] = "consent_created"
    consent_id: str
    consent_handle_id: str
    version: int
    template_id: str
    expiry_date: datetime | None = None


class ConsentVersionCreatedPayload(_CamelModel):
    kind: Literal["consent_version_created"] = "consent_version_created"
    consent_id: str
    consent_handle_id: str
    version: int
    previous_version: int
    template_id: str
    expiry_date: datetime | None = None


class ConsentRevokedPayload(_CamelModel):
    kind: Literal["consent_revoked"] = "consent_revoked"
    consent_id: str
    consent_handle_id: str
    version: int
    template_id: str


EventPayload = Annotated[
    Union[
        ConsentHandleCreatedPayload,
        ConsentCreatedPayload,
        ConsentVersionCreatedPayload,
        ConsentRevokedPayload,
    ],
    Field(discriminator="kind"),
]


class TriggerEventRequest(_CamelModel):
    event_type: NotificationEvent
    resource: str
    customer_identifiers: CustomerIdentifiers | None = None
    data_processor_ids: list[str] | None = None
    language: str | None = None
    event_payload: EventPayload | None = None
