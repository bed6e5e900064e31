from fastapi import APIRouter, Depends, Response

from core import consent_handles as handle_service
from core.deps import business_id_header, require_partition, transaction_id_header
from core.tenancy import TenantPartition
from schemas.consent_handle import ConsentHandleCreate, ConsentHandleCreated, ConsentHandleOut

router = APIRouter(prefix="/consent-handles", tags=["consent-handles"])


@router.post("", response_model=ConsentHandleCreated, status_code=201)
def create_consent_handle(
    payload: ConsentHandleCreate,
    response: Response,
    partition: TenantPartition = Depends(require_partition),
    business_id: str | None = Depends(business_id_header),
    txn_id: str | None = Depends(transaction_id_header),
):
    result = handle_service.create_consent_handle(partition, payload, business_id, txn_id)
    if not result.is_new:
        response.status_code = 200
    return ConsentHandleCreated(
        consent_handle_id=result.handle.consent_handle_id,
        expires_at=result.handle.expires_at,
        txn_id=result.handle.txn_id,
        is_new_handle=result.is_new,
        message="Consent handle created" if result.is_new else "Existing consent handle returned",
    )


@router.get("/{consent_handle_id}", response_model=ConsentHandleOut)
def get_consent_handle(consent_handle_id: str, partition: TenantPartition = Depends(require_partition)):
    return handle_service.get_consent_handle(partition, consent_handle_id)
