import enum
import uuid

from sqlalchemy import DateTime, Enum, Index, Integer, JSON, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow
from models.version_status import VersionStatus, enum_values


class ConsentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class PreferenceStatus(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    NOTACCEPTED = "NOTACCEPTED"
    EXPIRED = "EXPIRED"


class Consent(Base):
    __tablename__ = "consents"
    __table_args__ = (
        UniqueConstraint("consent_id", "version", name="uq_consents_consent_version"),
        Index("ix_consents_consent_status", "consent_id", "consent_status"),
        Index("ix_consents_customer_template", "customer_key", "template_id", "template_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    consent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    consent_handle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    business_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_version: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_identifiers: Mapped[dict] = mapped_column(JSON, nullable=False)
    customer_key: Mapped[str] = mapped_column(String(320), nullable=False)
    preferences_status: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    consent_status: Mapped[VersionStatus] = mapped_column(
        Enum(VersionStatus, name="versionstatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=VersionStatus.ACTIVE,
    )
    status: Mapped[ConsentStatus] = mapped_column(
        Enum(ConsentStatus, name="consentstatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=ConsentStatus.ACTIVE,
    )
    language_preference: Mapped[str | None] = mapped_column(String(32), nullable=True)
    start_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )
