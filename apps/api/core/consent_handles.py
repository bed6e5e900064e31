from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from core import repositories
from core.audit import AUDIT_COMPONENT_HANDLE, AuditClient, get_auditor
from core.config import get_settings
from core.db import as_utc, utcnow
from core.dispatch import DispatchManager, get_dispatcher
from core.errors import ConflictError, NotFound, ValidationError
from core.logging_utils import log_structured
from core.tenancy import TenantPartition
from core.versioning import TEMPLATES
from models.consent_handle import ConsentHandle, ConsentHandleStatus
from models.consent_template import TemplateStatus
from schemas.consent_handle import ConsentHandleCreate
from schemas.notification import ConsentHandleCreatedPayload, NotificationEvent


@dataclass(frozen=True)
class HandleResult:
    handle: ConsentHandle
    is_new: bool


def create_consent_handle(
    partition: TenantPartition,
    request: ConsentHandleCreate,
    business_id: str | None,
    txn_id: str | None = None,
    *,
    now: datetime | None = None,
    dispatcher: DispatchManager | None = None,
    auditor: AuditClient | None = None,
) -> HandleResult:
    now = now or utcnow()
    customer = request.customer_identifiers.model_dump()
    key = repositories.customer_key(customer)

    with partition.session() as db:
        template = TEMPLATES.get_version(db, request.template_id, request.template_version)
        if template.status != TemplateStatus.PUBLISHED:
            raise ValidationError(
                f"Template {request.template_id} version {request.template_version} is not published"
            )

        existing = repositories.find_reusable_handle(
            db,
            customer=key,
            url=request.url,
            template_id=request.template_id,
            template_version=request.template_version,
            now=now,
        )
        if existing is not None:
            log_structured(
                "consent_handle.reused",
                tenant_id=partition.tenant_id,
                resource_id=existing.consent_handle_id,
            )
            return HandleResult(handle=existing, is_new=False)

        handle = ConsentHandle(
            consent_handle_id=str(uuid.uuid4()),
            business_id=business_id,
            txn_id=txn_id,
            template_id=request.template_id,
            template_version=request.template_version,
            url=request.url,
            customer_identifiers=customer,
            customer_key=key,
            status=ConsentHandleStatus.PENDING,
            expires_at=now + timedelta(minutes=get_settings().consent_handle_expiry_minutes),
            created_at=now,
            updated_at=now,
        )
        db.add(handle)
        db.flush()

    log_structured("consent_handle.created", tenant_id=partition.tenant_id, resource_id=handle.consent_handle_id)
    (dispatcher or get_dispatcher()).trigger(
        NotificationEvent.CONSENT_HANDLE_CREATED,
        partition.tenant_id,
        business_id,
        customer,
        ConsentHandleCreatedPayload(
            consent_handle_id=handle.consent_handle_id,
            template_id=handle.template_id,
            template_version=handle.template_version,
            expires_at=handle.expires_at,
        ),
    )
    (auditor or get_auditor()).log(
        tenant_id=partition.tenant_id,
        business_id=business_id,
        component=AUDIT_COMPONENT_HANDLE,
        action="CONSENT_HANDLE_CREATED",
        resource_type="ConsentHandle",
        resource_id=handle.consent_handle_id,
        transaction_id=txn_id,
        context={"template_id": handle.template_id, "template_version": handle.template_version},
    )
    return HandleResult(handle=handle, is_new=True)


def is_expired(handle: ConsentHandle, now: datetime) -> bool:
    return handle.status == ConsentHandleStatus.REQ_EXPIRED or as_utc(handle.expires_at) <= now


def get_consent_handle(
    partition: TenantPartition,
    consent_handle_id: str,
    *,
    now: datetime | None = None,
) -> ConsentHandle:
    with partition.session() as db:
        return require_live_handle(db, consent_handle_id, now=now, allow_consumed=True)


def require_live_handle(
    db: Session,
    consent_handle_id: str,
    *,
    now: datetime | None = None,
    allow_consumed: bool = False,
) -> ConsentHandle:
    now = now or utcnow()
    handle = repositories.find_handle(db, consent_handle_id)
    if handle is None:
        raise NotFound(f"Consent handle not found: {consent_handle_id}")
    if is_expired(handle, now):
        raise ValidationError(f"Consent handle has expired: {consent_handle_id}")
    if not allow_consumed and handle.status != ConsentHandleStatus.PENDING:
        raise ConflictError(f"Consent handle has already been used: {consent_handle_id}")
    return handle


def consume_consent_handle(db: Session, consent_handle_id: str, now: datetime | None = None) -> None:
    # Compare-and-set: loses cleanly against the expiry sweep or a concurrent consumer.
    if not repositories.consume_handle(db, consent_handle_id, now or utcnow()):
        raise ConflictError(f"Consent handle is no longer pending: {consent_handle_id}")
    log_structured("consent_handle.consumed", resource_id=consent_handle_id)
