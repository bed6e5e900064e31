from __future__ import annotations

import uuid

from core import repositories
from core.audit import AUDIT_COMPONENT_TEMPLATE, AuditClient, get_auditor
from core.errors import NotFound, ValidationError
from core.logging_utils import log_structured
from core.tenancy import TenantPartition
from core.versioning import TEMPLATES
from models.consent_template import ConsentTemplate, TemplateStatus
from schemas.common import Preference
from schemas.template import Multilingual, TemplateCreate, TemplateUpdate


def _validate_preferences(preferences: list[Preference] | None) -> list[dict]:
    if preferences is None:
        return []
    if not preferences:
        raise ValidationError("Template preferences must not be empty")
    purposes = [preference.purpose for preference in preferences]
    if len(set(purposes)) != len(purposes):
        raise ValidationError("Template preference purposes must be unique")
    return [preference.model_dump(mode="json") for preference in preferences]


def _validate_multilingual(multilingual: Multilingual | None) -> dict | None:
    if multilingual is None:
        return None
    missing = [language for language in multilingual.supported_languages if language not in multilingual.content]
    if missing:
        raise ValidationError(f"Missing template content for languages: {', '.join(sorted(missing))}")
    return multilingual.model_dump(mode="json")


def create_template(
    partition: TenantPartition,
    request: TemplateCreate,
    business_id: str | None,
    *,
    auditor: AuditClient | None = None,
) -> ConsentTemplate:
    values = {
        "business_id": business_id,
        "template_name": request.template_name,
        "status": request.status,
        "multilingual": _validate_multilingual(request.multilingual),
        "ui_config": request.ui_config,
        "preferences": _validate_preferences(request.preferences),
    }
    template_id = str(uuid.uuid4())
    with partition.session() as db:
        template = TEMPLATES.create_new_version(db, template_id, values)

    log_structured("template.created", tenant_id=partition.tenant_id, resource_id=template_id, version=1)
    (auditor or get_auditor()).log(
        tenant_id=partition.tenant_id,
        business_id=business_id,
        component=AUDIT_COMPONENT_TEMPLATE,
        action="TEMPLATE_CREATED",
        resource_type="ConsentTemplate",
        resource_id=template_id,
        context={"version": template.version, "status": template.status.value},
    )
    return template


def update_template(
    partition: TenantPartition,
    template_id: str,
    request: TemplateUpdate,
    business_id: str | None,
    *,
    auditor: AuditClient | None = None,
) -> ConsentTemplate:
    with partition.session() as db:
        active = TEMPLATES.get_active(db, template_id)
        values = {
            "business_id": business_id or active.business_id,
            "template_name": request.template_name or active.template_name,
            "status": request.status or active.status,
            "multilingual": (
                _validate_multilingual(request.multilingual)
                if request.multilingual is not None
                else active.multilingual
            ),
            "ui_config": request.ui_config if request.ui_config is not None else active.ui_config,
            "preferences": (
                _validate_preferences(request.preferences)
                if request.preferences is not None
                else list(active.preferences or [])
            ),
        }
        template = TEMPLATES.create_new_version(db, template_id, values)

    (auditor or get_auditor()).log(
        tenant_id=partition.tenant_id,
        business_id=template.business_id,
        component=AUDIT_COMPONENT_TEMPLATE,
        action="NEW_TEMPLATE_VERSION_CREATED",
        resource_type="ConsentTemplate",
        resource_id=template_id,
        context={"version": template.version, "previous_version": active.version},
    )
    return template


def get_active_template(partition: TenantPartition, template_id: str) -> ConsentTemplate:
    with partition.session() as db:
        return TEMPLATES.get_active(db, template_id)


def get_template_version(partition: TenantPartition, template_id: str, version: int) -> ConsentTemplate:
    with partition.session() as db:
        return TEMPLATES.get_version(db, template_id, version)


def get_template_history(partition: TenantPartition, template_id: str) -> list[ConsentTemplate]:
    with partition.session() as db:
        history = TEMPLATES.list_versions(db, template_id)
    if not history:
        raise NotFound(f"No template found for id: {template_id}")
    return history


def list_templates(
    partition: TenantPartition,
    business_id: str | None = None,
    status: TemplateStatus | None = None,
) -> list[ConsentTemplate]:
    with partition.session() as db:
        return repositories.list_active_templates(db, business_id, status)
