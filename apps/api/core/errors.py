from core.contracts import ErrorCode


class ConsentServiceError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ConsentServiceError):
    """Missing or invalid tenant context. Always a programming or routing error."""

    code = ErrorCode.TENANT_CONTEXT_INVALID
    http_status = 400


class NotFound(ConsentServiceError):
    code = ErrorCode.NOT_FOUND
    http_status = 404


class ConflictError(ConsentServiceError):
    code = ErrorCode.CONFLICT
    http_status = 409


class ValidationError(ConsentServiceError):
    code = ErrorCode.VALIDATION_ERROR
    http_status = 422


class DeliveryError(ConsentServiceError):
    """Outbound dispatch failed. Recorded on the trigger row, never raised to callers."""

    code = ErrorCode.DELIVERY_FAILED
    http_status = 502

    def __init__(self, message: str, *, http_status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.response_status = http_status
        self.body = body


class PartitionError(ConsentServiceError):
    code = ErrorCode.PARTITION_UNAVAILABLE
    http_status = 503

    def __init__(self, tenant_id: str, message: str) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
