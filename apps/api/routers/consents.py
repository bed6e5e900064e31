from fastapi import APIRouter, Depends, Query, Response

from core import consents as consent_service
from core.deps import require_partition
from core.tenancy import TenantPartition
from models.consent import ConsentStatus
from schemas.consent import ConsentCreate, ConsentCreated, ConsentOut, ConsentStatusCheck, ConsentUpdate

router = APIRouter(prefix="/consents", tags=["consents"])


def _created_body(result: consent_service.ConsentResult, message: str) -> ConsentCreated:
    return ConsentCreated(
        consent_id=result.consent.consent_id,
        version=result.consent.version,
        consent_expiry=result.consent.end_date,
        message=message,
    )


@router.post("", response_model=ConsentCreated, status_code=201)
def create_consent(
    payload: ConsentCreate,
    response: Response,
    partition: TenantPartition = Depends(require_partition),
):
    result = consent_service.create_consent(partition, payload)
    if not result.created:
        response.status_code = 200
        return _created_body(result, "Consent already exists")
    return _created_body(result, "Consent created")


@router.put("/{consent_id}", response_model=ConsentCreated)
def update_consent(
    consent_id: str,
    payload: ConsentUpdate,
    partition: TenantPartition = Depends(require_partition),
):
    result = consent_service.update_consent(partition, consent_id, payload)
    if result.consent.status == ConsentStatus.REVOKED:
        return _created_body(result, "Consent revoked")
    return _created_body(result, "Consent updated")


@router.get("/status", response_model=ConsentStatusCheck)
def check_consent_status(
    customer_value: str = Query(min_length=1, max_length=255),
    url: str = Query(min_length=1, max_length=2048),
    consent_id: str | None = Query(default=None, max_length=64),
    partition: TenantPartition = Depends(require_partition),
):
    return consent_service.check_consent_status(
        partition, customer_value=customer_value, url=url, consent_id=consent_id
    )


@router.get("/{consent_id}", response_model=ConsentOut)
def get_active_consent(consent_id: str, partition: TenantPartition = Depends(require_partition)):
    return consent_service.get_active_consent(partition, consent_id)


@router.get("/{consent_id}/versions", response_model=list[ConsentOut])
def get_consent_history(consent_id: str, partition: TenantPartition = Depends(require_partition)):
    return consent_service.get_consent_history(partition, consent_id)


@router.get("/{consent_id}/versions/{version}", response_model=ConsentOut)
def get_consent_version(
    consent_id: str,
    version: int,
    partition: TenantPartition = Depends(require_partition),
):
    return consent_service.get_consent_version(partition, consent_id, version)
