from fastapi import APIRouter, Depends

from core import consents as consent_service
from core.deps import require_partition
from core.tenancy import TenantPartition
from schemas.consent import DashboardQuery, DashboardTemplate

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.post("/consents", response_model=list[DashboardTemplate])
def dashboard_consents(payload: DashboardQuery, partition: TenantPartition = Depends(require_partition)):
    return consent_service.dashboard_consents(partition, payload)
