from fastapi import Header

from core.contracts import BUSINESS_HEADER, TENANT_HEADER, TRANSACTION_HEADER
from core.tenancy import TenantPartition, get_resolver


def require_partition(tenant_id: str | None = Header(default=None, alias=TENANT_HEADER)) -> TenantPartition:
    return get_resolver().resolve(tenant_id)


def business_id_header(business_id: str | None = Header(default=None, alias=BUSINESS_HEADER)) -> str | None:
    return business_id.strip() if business_id and business_id.strip() else None


def transaction_id_header(transaction_id: str | None = Header(default=None, alias=TRANSACTION_HEADER)) -> str | None:
    return transaction_id.strip() if transaction_id and transaction_id.strip() else None
