from __future__ import annotations

import socket
import urllib.error
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from core.errors import ConsentServiceError
from core.observability import unexpected_exception_metric


class FailureClass(StrEnum):
    DOMAIN = "domain"
    DB_UNAVAILABLE = "db.unavailable"
    DB_CONSTRAINT_VIOLATION = "db.constraint_violation"
    TRANSPORT_TIMEOUT = "transport.timeout"
    TRANSPORT_FAILED = "transport.failed"
    SERIALIZATION_FAILED = "serialization.failed"
    UNEXPECTED_EXCEPTION = "unexpected.exception"


@dataclass(frozen=True)
class FailurePolicy:
    failure_class: FailureClass
    http_status: int
    fail_closed: bool


def classify_failure(exc: BaseException) -> FailureClass:
    if isinstance(exc, ConsentServiceError):
        return FailureClass.DOMAIN
    if isinstance(exc, IntegrityError):
        return FailureClass.DB_CONSTRAINT_VIOLATION
    if isinstance(exc, (OperationalError, DBAPIError)):
        return FailureClass.DB_UNAVAILABLE
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return FailureClass.TRANSPORT_TIMEOUT
    if isinstance(exc, urllib.error.URLError):
        if isinstance(getattr(exc, "reason", None), (TimeoutError, socket.timeout)):
            return FailureClass.TRANSPORT_TIMEOUT
        return FailureClass.TRANSPORT_FAILED
    if isinstance(exc, (ConnectionError, OSError)):
        return FailureClass.TRANSPORT_FAILED

    lowered = str(exc).lower()
    if "serializ" in lowered or "json" in lowered:
        return FailureClass.SERIALIZATION_FAILED
    return FailureClass.UNEXPECTED_EXCEPTION


def failure_policy(exc: BaseException) -> FailurePolicy:
    failure_class = classify_failure(exc)
    if failure_class == FailureClass.DOMAIN:
        return FailurePolicy(failure_class=failure_class, http_status=exc.http_status, fail_closed=True)
    if failure_class == FailureClass.DB_UNAVAILABLE:
        return FailurePolicy(failure_class=failure_class, http_status=503, fail_closed=True)
    if failure_class == FailureClass.DB_CONSTRAINT_VIOLATION:
        return FailurePolicy(failure_class=failure_class, http_status=409, fail_closed=True)
    if failure_class == FailureClass.SERIALIZATION_FAILED:
        return FailurePolicy(failure_class=failure_class, http_status=422, fail_closed=True)
    return FailurePolicy(failure_class=failure_class, http_status=500, fail_closed=True)


def record_unexpected(exc: BaseException, *, request_id: str | None = None) -> FailureClass:
    failure_class = classify_failure(exc)
    if failure_class == FailureClass.UNEXPECTED_EXCEPTION:
        unexpected_exception_metric(exc.__class__.__name__, request_id=request_id)
    return failure_class
