import enum
import uuid

from sqlalchemy import DateTime, Enum, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow
from models.version_status import enum_values


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationTrigger(Base):
    __tablename__ = "notification_triggers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trigger_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    business_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer_identifiers: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    data_processor_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notificationstatus", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=NotificationStatus.PENDING,
        index=True,
    )
    event_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    http_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    notification_event_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )
