from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models.consent import ConsentStatus, PreferenceStatus
from models.version_status import VersionStatus
from schemas.common import CustomerIdentifiers


class ConsentCreate(BaseModel):
    consent_handle_id: str = Field(min_length=1, max_length=64)
    preferences_status: dict[str, PreferenceStatus]
    language_preference: str | None = Field(default=None, max_length=32)


class ConsentUpdate(BaseModel):
    consent_handle_id: str = Field(min_length=1, max_length=64)
    preferences_status: dict[str, PreferenceStatus] | None = None
    language_preference: str | None = Field(default=None, max_length=32)
    status: Literal["REVOKED"] | None = None


class ConsentCreated(BaseModel):
    consent_id: str | None = None
    version: int | None = None
    consent_expiry: datetime | None = None
    message: str


class ConsentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    consent_id: str
    version: int
    consent_handle_id: str
    business_id: str | None = None
    template_id: str
    template_version: int
    customer_identifiers: CustomerIdentifiers
    preferences_status: dict[str, PreferenceStatus]
    consent_status: VersionStatus
    status: ConsentStatus
    language_preference: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ConsentStatusCheck(BaseModel):
    consent_status: str
    consent_handle_id: str


class DashboardQuery(BaseModel):
    template_id: str | None = Field(default=None, max_length=64)
    version: int | None = Field(default=None, gt=0)
    start_date: datetime | None = None
    end_date: datetime | None = None


class DashboardEntry(BaseModel):
    consent_id: str | None = None
    consent_handle_id: str
    status: str
    version: int | None = None
    template_version: int
    start_date: datetime | None = None
    end_date: datetime | None = None


class DashboardTemplate(BaseModel):
    template_id: str
    version: int
    template_status: VersionStatus
    status: str
    template_name: str
    consents: list[DashboardEntry]
