"""Consent capture, update and revocation.

A consent is created by spending a consent handle: the handle flips to
CONSUMED and version 1 of the consent is written in the same transaction, so
either both land or neither does. Updates and revocations spend a fresh handle
and append a new version; the previous one is superseded.
"""

from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from core import repositories
from core.audit import AUDIT_COMPONENT_CONSENT, AuditClient, get_auditor
from core.consent_handles import consume_consent_handle, require_live_handle
from core.db import as_utc, utcnow
from core.dispatch import DispatchManager, get_dispatcher
from core.errors import ConflictError, NotFound, ValidationError
from core.logging_utils import log_structured
from core.tenancy import TenantPartition
from core.versioning import CONSENTS, TEMPLATES
from models.consent import Consent, ConsentStatus, PreferenceStatus
from models.consent_handle import ConsentHandleStatus
from models.consent_template import ConsentTemplate
from schemas.common import ValidityUnit
from schemas.consent import (
    ConsentCreate,
    ConsentStatusCheck,
    ConsentUpdate,
    DashboardEntry,
    DashboardQuery,
    DashboardTemplate,
)
from schemas.notification import (
    ConsentCreatedPayload,
    ConsentRevokedPayload,
    ConsentVersionCreatedPayload,
    NotificationEvent,
)


NO_RECORD = "No_Record"


@dataclass(frozen=True)
class ConsentResult:
    consent: Consent
    created: bool
    previous_version: int | None = None


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def validity_end(start: datetime, validity: dict[str, Any] | None) -> datetime | None:
    if not validity:
        return None
    amount = int(validity["value"])
    unit = ValidityUnit(validity.get("unit", ValidityUnit.DAYS))
    if unit == ValidityUnit.DAYS:
        return start + timedelta(days=amount)
    if unit == ValidityUnit.MONTHS:
        return _add_months(start, amount)
    return _add_months(start, amount * 12)


def validate_preferences(
    template: ConsentTemplate,
    preferences_status: dict[str, PreferenceStatus],
) -> dict[str, str]:
    purposes = {preference["purpose"]: preference for preference in template.preferences or []}
    submitted = set(preferences_status)
    if submitted != set(purposes):
        unknown = sorted(submitted - set(purposes))
        missing = sorted(set(purposes) - submitted)
        raise ValidationError(f"Preferences do not match template purposes (unknown={unknown}, missing={missing})")
    if any(status == PreferenceStatus.EXPIRED for status in preferences_status.values()):
        raise ValidationError("Preferences cannot be submitted as EXPIRED")
    if all(status == PreferenceStatus.NOTACCEPTED for status in preferences_status.values()):
        raise ValidationError("Consent rejected: no preference was accepted")
    for purpose, preference in purposes.items():
        if preference.get("is_mandatory") and preferences_status[purpose] != PreferenceStatus.ACCEPTED:
            raise ValidationError(f"Mandatory preference must be accepted: {purpose}")
    return {purpose: PreferenceStatus(status).value for purpose, status in preferences_status.items()}


def consent_end_date(
    template: ConsentTemplate,
    preferences_status: dict[str, str],
    start: datetime,
) -> datetime | None:
    ends = [
        validity_end(start, preference.get("validity"))
        for preference in template.preferences or []
        if preferences_status.get(preference["purpose"]) == PreferenceStatus.ACCEPTED.value
    ]
    ends = [end for end in ends if end is not None]
    return max(ends) if ends else None


def create_consent(
    partition: TenantPartition,
    request: ConsentCreate,
    *,
    now: datetime | None = None,
    dispatcher: DispatchManager | None = None,
    auditor: AuditClient | None = None,
) -> ConsentResult:
    now = now or utcnow()
    with partition.session() as db:
        handle = require_live_handle(db, request.consent_handle_id, now=now)
        template = TEMPLATES.get_version(db, handle.template_id, handle.template_version)
        preferences_status = validate_preferences(template, request.preferences_status)

        existing = repositories.find_active_consent_for_customer(
            db,
            customer=handle.customer_key,
            template_id=handle.template_id,
            template_version=handle.template_version,
        )
        if existing is not None:
            log_structured("consent.exists", tenant_id=partition.tenant_id, resource_id=existing.consent_id)
            return ConsentResult(consent=existing, created=False)

        consume_consent_handle(db, handle.consent_handle_id, now)
        consent = CONSENTS.create_new_version(
            db,
            str(uuid.uuid4()),
            {
                "consent_handle_id": handle.consent_handle_id,
                "business_id": handle.business_id,
                "template_id": handle.template_id,
                "template_version": handle.template_version,
                "customer_identifiers": handle.customer_identifiers,
                "customer_key": handle.customer_key,
                "preferences_status": preferences_status,
                "status": ConsentStatus.ACTIVE,
                "language_preference": request.language_preference,
                "start_date": now,
                "end_date": consent_end_date(template, preferences_status, now),
            },
            now=now,
        )

    (dispatcher or get_dispatcher()).trigger(
        NotificationEvent.CONSENT_CREATED,
        partition.tenant_id,
        consent.business_id,
        consent.customer_identifiers,
        ConsentCreatedPayload(
            consent_id=consent.consent_id,
            consent_handle_id=consent.consent_handle_id,
            version=consent.version,
            template_id=consent.template_id,
            expiry_date=consent.end_date,
        ),
        consent.language_preference,
    )
    (auditor or get_auditor()).log(
        tenant_id=partition.tenant_id,
        business_id=consent.business_id,
        component=AUDIT_COMPONENT_CONSENT,
        action="CONSENT_CREATED",
        resource_type="Consent",
        resource_id=consent.consent_id,
        context={"version": consent.version, "consent_handle_id": consent.consent_handle_id},
    )
    return ConsentResult(consent=consent, created=True)


def update_consent(
    partition: TenantPartition,
    consent_id: str,
    request: ConsentUpdate,
    *,
    now: datetime | None = None,
    dispatcher: DispatchManager | None = None,
    auditor: AuditClient | None = None,
) -> ConsentResult:
    now = now or utcnow()
    revoking = request.status == ConsentStatus.REVOKED.value
    with partition.session() as db:
        active = CONSENTS.get_active(db, consent_id)
        if active.status != ConsentStatus.ACTIVE:
            raise ConflictError(f"Consent {consent_id} is {active.status.value} and cannot be updated")

        handle = require_live_handle(db, request.consent_handle_id, now=now)
        if handle.customer_key != active.customer_key or handle.template_id != active.template_id:
            raise ValidationError("Consent handle does not belong to this consent")

        if revoking:
            preferences_status = dict(active.preferences_status or {})
            end_date = active.end_date
            status = ConsentStatus.REVOKED
        else:
            if request.preferences_status is None:
                raise ValidationError("preferences_status is required unless the consent is revoked")
            template = TEMPLATES.get_version(db, handle.template_id, handle.template_version)
            preferences_status = validate_preferences(template, request.preferences_status)
            end_date = consent_end_date(template, preferences_status, now)
            status = ConsentStatus.ACTIVE

        consume_consent_handle(db, handle.consent_handle_id, now)
        previous_version = active.version
        consent = CONSENTS.create_new_version(
            db,
            consent_id,
            {
                "consent_handle_id": handle.consent_handle_id,
                "business_id": active.business_id,
                "template_id": handle.template_id,
                "template_version": handle.template_version,
                "customer_identifiers": active.customer_identifiers,
                "customer_key": active.customer_key,
                "preferences_status": preferences_status,
                "status": status,
                "language_preference": request.language_preference or active.language_preference,
                "start_date": active.start_date if revoking else now,
                "end_date": end_date,
            },
            now=now,
        )

    notifier = dispatcher or get_dispatcher()
    notifier.trigger(
        NotificationEvent.NEW_CONSENT_VERSION_CREATED,
        partition.tenant_id,
        consent.business_id,
        consent.customer_identifiers,
        ConsentVersionCreatedPayload(
            consent_id=consent.consent_id,
            consent_handle_id=consent.consent_handle_id,
            version=consent.version,
            previous_version=previous_version,
            template_id=consent.template_id,
            expiry_date=consent.end_date,
        ),
        consent.language_preference,
    )
    if revoking:
        notifier.trigger(
            NotificationEvent.CONSENT_REVOKED,
            partition.tenant_id,
            consent.business_id,
            consent.customer_identifiers,
            ConsentRevokedPayload(
                consent_id=consent.consent_id,
                consent_handle_id=consent.consent_handle_id,
                version=consent.version,
                template_id=consent.template_id,
            ),
            consent.language_preference,
        )
    (auditor or get_auditor()).log(
        tenant_id=partition.tenant_id,
        business_id=consent.business_id,
        component=AUDIT_COMPONENT_CONSENT,
        action="CONSENT_REVOKED" if revoking else "NEW_CONSENT_VERSION_CREATED",
        resource_type="Consent",
        resource_id=consent.consent_id,
        context={"version": consent.version, "previous_version": previous_version},
    )
    return ConsentResult(consent=consent, created=True, previous_version=previous_version)


def get_active_consent(partition: TenantPartition, consent_id: str) -> Consent:
    with partition.session() as db:
        return CONSENTS.get_active(db, consent_id)


def get_consent_version(partition: TenantPartition, consent_id: str, version: int) -> Consent:
    with partition.session() as db:
        return CONSENTS.get_version(db, consent_id, version)


def get_consent_history(partition: TenantPartition, consent_id: str) -> list[Consent]:
    with partition.session() as db:
        history = CONSENTS.list_versions(db, consent_id)
    if not history:
        raise NotFound(f"No consent found for id: {consent_id}")
    return history


def check_consent_status(
    partition: TenantPartition,
    *,
    customer_value: str | None,
    url: str | None,
    consent_id: str | None = None,
) -> ConsentStatusCheck:
    """Report where a customer stands for a page.

    With ``consent_id`` the latest version of that consent answers. Otherwise
    the newest handle issued for the customer value and url decides: a
    consumed handle defers to the consent it produced, anything else reports
    the handle status. ``No_Record`` is returned when nothing matches.
    """
    if not customer_value or not customer_value.strip():
        raise ValidationError("customer_value is required")
    if not url or not url.strip():
        raise ValidationError("url is required")

    with partition.session() as db:
        if consent_id:
            consent = repositories.find_latest(db, repositories.CONSENT_KIND, consent_id)
            if consent is None:
                return ConsentStatusCheck(consent_status=NO_RECORD, consent_handle_id=NO_RECORD)
            return ConsentStatusCheck(consent_status=consent.status.value, consent_handle_id=consent.consent_handle_id)

        handle = repositories.find_latest_handle_for_customer(db, customer_value.strip(), url.strip())
        if handle is None:
            return ConsentStatusCheck(consent_status=NO_RECORD, consent_handle_id=NO_RECORD)
        if handle.status == ConsentHandleStatus.CONSUMED:
            spent_on = repositories.find_consent_by_handle(db, handle.consent_handle_id)
            if spent_on is not None:
                latest = repositories.find_latest(db, repositories.CONSENT_KIND, spent_on.consent_id)
                return ConsentStatusCheck(
                    consent_status=latest.status.value,
                    consent_handle_id=handle.consent_handle_id,
                )
        return ConsentStatusCheck(consent_status=handle.status.value, consent_handle_id=handle.consent_handle_id)


def dashboard_consents(partition: TenantPartition, query: DashboardQuery) -> list[DashboardTemplate]:
    # Consents are filtered on their validity window, open handles on issue time.
    if query.version is not None and not query.template_id:
        raise ValidationError("version filter requires template_id")
    start, end = as_utc(query.start_date), as_utc(query.end_date)
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date")

    with partition.session() as db:
        templates = repositories.list_template_rows(db, query.template_id, query.version)
        if query.template_id and not templates:
            raise NotFound(f"No template found for id: {query.template_id}")

        grouped = []
        for template in templates:
            window = {
                "template_id": template.template_id,
                "template_version": template.version,
                "start": start,
                "end": end,
            }
            entries = [
                DashboardEntry(
                    consent_id=consent.consent_id,
                    consent_handle_id=consent.consent_handle_id,
                    status=consent.status.value,
                    version=consent.version,
                    template_version=consent.template_version,
                    start_date=consent.start_date,
                    end_date=consent.end_date,
                )
                for consent in repositories.list_current_consents(db, **window)
            ]
            entries.extend(
                DashboardEntry(
                    consent_handle_id=handle.consent_handle_id,
                    status=handle.status.value,
                    template_version=handle.template_version,
                )
                for handle in repositories.list_open_handles(db, **window)
            )
            grouped.append(
                DashboardTemplate(
                    template_id=template.template_id,
                    version=template.version,
                    template_status=template.template_status,
                    status=template.status.value,
                    template_name=template.template_name,
                    consents=entries,
                )
            )

    log_structured("dashboard.queried", tenant_id=partition.tenant_id, count=len(grouped))
    return grouped
