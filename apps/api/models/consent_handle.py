import enum
import uuid

from sqlalchemy import DateTime, Enum, Index, Integer, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow
from models.version_status import enum_values


class ConsentHandleStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONSUMED = "CONSUMED"
    REQ_EXPIRED = "REQ_EXPIRED"


class ConsentHandle(Base):
    __tablename__ = "consent_handles"
    __table_args__ = (
        Index("ix_consent_handles_status_expires_at", "status", "expires_at"),
        Index("ix_consent_handles_lookup", "customer_key", "template_id", "template_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    consent_handle_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    business_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    txn_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_version: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    customer_identifiers: Mapped[dict] = mapped_column(JSON, nullable=False)
    customer_key: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[ConsentHandleStatus] = mapped_column(
        Enum(ConsentHandleStatus, name="consenthandlestatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=ConsentHandleStatus.PENDING,
    )
    expires_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )
