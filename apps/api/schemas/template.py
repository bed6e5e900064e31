from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models.consent_template import TemplateStatus
from models.version_status import VersionStatus
from schemas.common import Preference


class Multilingual(BaseModel):
    supported_languages: list[str] = Field(default_factory=list)
    content: dict[str, dict] = Field(default_factory=dict)


class TemplateCreate(BaseModel):
    template_name: str = Field(min_length=1, max_length=256)
    status: TemplateStatus
    multilingual: Multilingual | None = None
    ui_config: dict | None = None
    preferences: list[Preference] | None = None


class TemplateUpdate(BaseModel):
    template_name: str | None = Field(default=None, min_length=1, max_length=256)
    status: TemplateStatus | None = None
    multilingual: Multilingual | None = None
    ui_config: dict | None = None
    preferences: list[Preference] | None = None


class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    template_id: str
    version: int
    template_status: VersionStatus
    status: TemplateStatus
    business_id: str | None = None
    template_name: str
    multilingual: dict | None = None
    ui_config: dict | None = None
    preferences: list[dict]
    created_at: datetime
    updated_at: datetime
