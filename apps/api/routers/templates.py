from fastapi import APIRouter, Depends, Query

from core import templates as template_service
from core.deps import business_id_header, require_partition
from core.tenancy import TenantPartition
from models.consent_template import TemplateStatus
from schemas.template import TemplateCreate, TemplateOut, TemplateUpdate

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("", response_model=TemplateOut, status_code=201)
def create_template(
    payload: TemplateCreate,
    partition: TenantPartition = Depends(require_partition),
    business_id: str | None = Depends(business_id_header),
):
    return template_service.create_template(partition, payload, business_id)


@router.put("/{template_id}", response_model=TemplateOut)
def update_template(
    template_id: str,
    payload: TemplateUpdate,
    partition: TenantPartition = Depends(require_partition),
    business_id: str | None = Depends(business_id_header),
):
    return template_service.update_template(partition, template_id, payload, business_id)


@router.get("", response_model=list[TemplateOut])
def list_templates(
    partition: TenantPartition = Depends(require_partition),
    business_id: str | None = Query(default=None, max_length=128),
    status: TemplateStatus | None = Query(default=None),
):
    return template_service.list_templates(partition, business_id, status)


@router.get("/status/{status}", response_model=list[TemplateOut])
def list_templates_by_status(status: TemplateStatus, partition: TenantPartition = Depends(require_partition)):
    return template_service.list_templates(partition, status=status)


@router.get("/{template_id}", response_model=TemplateOut)
def get_active_template(template_id: str, partition: TenantPartition = Depends(require_partition)):
    return template_service.get_active_template(partition, template_id)


@router.get("/{template_id}/versions", response_model=list[TemplateOut])
def get_template_history(template_id: str, partition: TenantPartition = Depends(require_partition)):
    return template_service.get_template_history(partition, template_id)


@router.get("/{template_id}/versions/{version}", response_model=TemplateOut)
def get_template_version(
    template_id: str,
    version: int,
    partition: TenantPartition = Depends(require_partition),
):
    return template_service.get_template_version(partition, template_id, version)
