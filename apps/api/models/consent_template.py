import enum
import uuid

from sqlalchemy import DateTime, Enum, Index, Integer, JSON, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow
from models.version_status import VersionStatus, enum_values


class TemplateStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class ConsentTemplate(Base):
    __tablename__ = "consent_templates"
    __table_args__ = (
        UniqueConstraint("template_id", "version", name="uq_consent_templates_template_version"),
        Index("ix_consent_templates_template_status", "template_id", "template_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    template_status: Mapped[VersionStatus] = mapped_column(
        Enum(VersionStatus, name="versionstatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=VersionStatus.ACTIVE,
    )
    status: Mapped[TemplateStatus] = mapped_column(
        Enum(TemplateStatus, name="templatestatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=TemplateStatus.DRAFT,
    )
    business_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    template_name: Mapped[str] = mapped_column(String(256), nullable=False)
    multilingual: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ui_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    preferences: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )
