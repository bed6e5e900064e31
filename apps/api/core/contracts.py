from enum import StrEnum
from typing import Any


TENANT_HEADER = "X-Tenant-Id"
BUSINESS_HEADER = "X-Business-Id"
TRANSACTION_HEADER = "X-Transaction-Id"


class ErrorCode(StrEnum):
    TENANT_CONTEXT_INVALID = "TENANT_CONTEXT_INVALID"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    PARTITION_UNAVAILABLE = "PARTITION_UNAVAILABLE"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_body(code: ErrorCode, message: str, request_id: str) -> dict[str, Any]:
    return {
        "error": {
            "code": str(code),
            "message": message,
            "request_id": request_id,
        }
    }
