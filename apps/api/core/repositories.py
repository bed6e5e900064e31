from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import InstrumentedAttribute, Session

from models.consent import Consent, ConsentStatus
from models.consent_handle import ConsentHandle, ConsentHandleStatus
from models.consent_template import ConsentTemplate, TemplateStatus
from models.notification_trigger import NotificationStatus, NotificationTrigger
from models.version_status import VersionStatus


@dataclass(frozen=True)
class VersionedKind:
    name: str
    model: type
    logical_id: InstrumentedAttribute
    version_status: InstrumentedAttribute


TEMPLATE_KIND = VersionedKind("template", ConsentTemplate, ConsentTemplate.template_id, ConsentTemplate.template_status)
CONSENT_KIND = VersionedKind("consent", Consent, Consent.consent_id, Consent.consent_status)


def customer_key(customer_identifiers: dict[str, Any]) -> str:
    return f"{customer_identifiers.get('type', '')}:{customer_identifiers.get('value', '')}"


# Versioned entities


def find_active(db: Session, kind: VersionedKind, logical_id: str) -> Any | None:
    # Highest version wins if an interrupted promotion ever left two ACTIVE rows.
    return db.scalar(
        select(kind.model)
        .where(kind.logical_id == logical_id, kind.version_status == VersionStatus.ACTIVE)
        .order_by(kind.model.version.desc())
        .limit(1)
    )


def find_version(db: Session, kind: VersionedKind, logical_id: str, version: int) -> Any | None:
    return db.scalar(select(kind.model).where(kind.logical_id == logical_id, kind.model.version == version))


def list_versions(db: Session, kind: VersionedKind, logical_id: str) -> list[Any]:
    return list(
        db.scalars(select(kind.model).where(kind.logical_id == logical_id).order_by(kind.model.version.desc())).all()
    )


def max_version(db: Session, kind: VersionedKind, logical_id: str) -> int:
    return int(db.scalar(select(func.max(kind.model.version)).where(kind.logical_id == logical_id)) or 0)


def count_active(db: Session, kind: VersionedKind, logical_id: str) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(kind.model)
            .where(kind.logical_id == logical_id, kind.version_status == VersionStatus.ACTIVE)
        )
        or 0
    )


def supersede_others(db: Session, kind: VersionedKind, logical_id: str, keep_version: int, now: datetime) -> int:
    result = db.execute(
        update(kind.model)
        .where(
            kind.logical_id == logical_id,
            kind.version_status == VersionStatus.ACTIVE,
            kind.model.version != keep_version,
        )
        .values({kind.version_status.key: VersionStatus.SUPERSEDED, "updated_at": now})
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def find_latest(db: Session, kind: VersionedKind, logical_id: str) -> Any | None:
    return db.scalar(
        select(kind.model).where(kind.logical_id == logical_id).order_by(kind.model.version.desc()).limit(1)
    )


def list_active_templates(
    db: Session,
    business_id: str | None = None,
    status: TemplateStatus | None = None,
) -> list[ConsentTemplate]:
    stmt = select(ConsentTemplate).where(ConsentTemplate.template_status == VersionStatus.ACTIVE)
    if business_id:
        stmt = stmt.where(ConsentTemplate.business_id == business_id)
    if status is not None:
        stmt = stmt.where(ConsentTemplate.status == status)
    return list(db.scalars(stmt.order_by(ConsentTemplate.created_at.desc())).all())


def list_template_rows(
    db: Session,
    template_id: str | None = None,
    version: int | None = None,
) -> list[ConsentTemplate]:
    stmt = select(ConsentTemplate)
    if template_id:
        stmt = stmt.where(ConsentTemplate.template_id == template_id)
    if version is not None:
        stmt = stmt.where(ConsentTemplate.version == version)
    return list(
        db.scalars(stmt.order_by(ConsentTemplate.template_id.asc(), ConsentTemplate.version.desc())).all()
    )


# Consent handles


def find_handle(db: Session, consent_handle_id: str) -> ConsentHandle | None:
    return db.scalar(select(ConsentHandle).where(ConsentHandle.consent_handle_id == consent_handle_id))


def find_reusable_handle(
    db: Session,
    *,
    customer: str,
    url: str | None,
    template_id: str,
    template_version: int,
    now: datetime,
) -> ConsentHandle | None:
    return db.scalar(
        select(ConsentHandle)
        .where(
            ConsentHandle.customer_key == customer,
            ConsentHandle.url == url,
            ConsentHandle.template_id == template_id,
            ConsentHandle.template_version == template_version,
            ConsentHandle.status == ConsentHandleStatus.PENDING,
            ConsentHandle.expires_at > now,
        )
        .order_by(ConsentHandle.created_at.desc())
        .limit(1)
    )


def find_latest_handle_for_customer(db: Session, customer_value: str, url: str) -> ConsentHandle | None:
    return db.scalar(
        select(ConsentHandle)
        .where(
            ConsentHandle.customer_key.endswith(f":{customer_value}", autoescape=True),
            ConsentHandle.url == url,
        )
        .order_by(ConsentHandle.created_at.desc())
        .limit(1)
    )


def list_open_handles(
    db: Session,
    *,
    template_id: str,
    template_version: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ConsentHandle]:
    stmt = select(ConsentHandle).where(
        ConsentHandle.template_id == template_id,
        ConsentHandle.template_version == template_version,
        ConsentHandle.status.in_([ConsentHandleStatus.PENDING, ConsentHandleStatus.REQ_EXPIRED]),
    )
    if start is not None:
        stmt = stmt.where(ConsentHandle.created_at >= start)
    if end is not None:
        stmt = stmt.where(ConsentHandle.created_at <= end)
    return list(db.scalars(stmt.order_by(ConsentHandle.created_at.desc())).all())


def consume_handle(db: Session, consent_handle_id: str, now: datetime) -> bool:
    result = db.execute(
        update(ConsentHandle)
        .where(
            ConsentHandle.consent_handle_id == consent_handle_id,
            ConsentHandle.status == ConsentHandleStatus.PENDING,
            ConsentHandle.expires_at > now,
        )
        .values(status=ConsentHandleStatus.CONSUMED, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def expire_pending_handles(db: Session, now: datetime) -> int:
    result = db.execute(
        update(ConsentHandle)
        .where(
            ConsentHandle.status == ConsentHandleStatus.PENDING,
            ConsentHandle.expires_at < now,
        )
        .values(status=ConsentHandleStatus.REQ_EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


# Consents


def find_active_consent_for_customer(
    db: Session, *, customer: str, template_id: str, template_version: int
) -> Consent | None:
    return db.scalar(
        select(Consent)
        .where(
            Consent.customer_key == customer,
            Consent.template_id == template_id,
            Consent.template_version == template_version,
            Consent.consent_status == VersionStatus.ACTIVE,
            Consent.status == ConsentStatus.ACTIVE,
        )
        .order_by(Consent.version.desc())
        .limit(1)
    )


def find_consent_by_handle(db: Session, consent_handle_id: str) -> Consent | None:
    return db.scalar(
        select(Consent)
        .where(Consent.consent_handle_id == consent_handle_id)
        .order_by(Consent.version.desc())
        .limit(1)
    )


def list_current_consents(
    db: Session,
    *,
    template_id: str,
    template_version: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Consent]:
    stmt = select(Consent).where(
        Consent.template_id == template_id,
        Consent.template_version == template_version,
        Consent.consent_status == VersionStatus.ACTIVE,
    )
    if start is not None:
        stmt = stmt.where(Consent.start_date >= start)
    if end is not None:
        stmt = stmt.where(Consent.end_date <= end)
    return list(db.scalars(stmt.order_by(Consent.created_at.desc())).all())


def expire_lapsed_consents(db: Session, now: datetime) -> int:
    result = db.execute(
        update(Consent)
        .where(
            Consent.consent_status == VersionStatus.ACTIVE,
            Consent.status == ConsentStatus.ACTIVE,
            Consent.end_date.is_not(None),
            Consent.end_date < now,
        )
        .values(status=ConsentStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


# Notification triggers


def save_trigger(db: Session, trigger: NotificationTrigger) -> NotificationTrigger:
    db.add(trigger)
    db.flush()
    return trigger


def find_trigger(db: Session, trigger_id: str) -> NotificationTrigger | None:
    return db.scalar(select(NotificationTrigger).where(NotificationTrigger.trigger_id == trigger_id))


def list_triggers(db: Session, status: NotificationStatus | None = None) -> list[NotificationTrigger]:
    stmt = select(NotificationTrigger)
    if status is not None:
        stmt = stmt.where(NotificationTrigger.status == status)
    return list(db.scalars(stmt.order_by(NotificationTrigger.created_at.asc())).all())
