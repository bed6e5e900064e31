from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.consent_handle import ConsentHandleStatus
from schemas.common import CustomerIdentifiers


class ConsentHandleCreate(BaseModel):
    template_id: str = Field(min_length=1, max_length=64)
    template_version: int = Field(ge=1)
    customer_identifiers: CustomerIdentifiers
    url: str | None = Field(default=None, max_length=2048)


class ConsentHandleCreated(BaseModel):
    consent_handle_id: str
    expires_at: datetime
    txn_id: str | None = None
    is_new_handle: bool
    message: str


class ConsentHandleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    consent_handle_id: str
    business_id: str | None = None
    template_id: str
    template_version: int
    url: str | None = None
    customer_identifiers: CustomerIdentifiers
    status: ConsentHandleStatus
    expires_at: datetime
    created_at: datetime
