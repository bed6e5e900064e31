from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future
from functools import lru_cache
from typing import Any

from core.config import Settings, get_settings
from core.db import utcnow
from core.dispatch import DispatchManager, Sender, canonical_json, get_dispatcher, post_json
from core.failure_modes import classify_failure
from core.logging_utils import log_structured
from core.observability import METRIC_AUDIT_FAILED, increment_metric
from schemas.audit import AuditActor, AuditRequest, AuditResource

AUDIT_COMPONENT_TEMPLATE = "CONSENT_TEMPLATE"
AUDIT_COMPONENT_HANDLE = "CONSENT_HANDLE"
AUDIT_COMPONENT_CONSENT = "CONSENT"
DEFAULT_INITIATOR = "DATA_FIDUCIARY"


def build_audit_headers(request: AuditRequest) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Tenant-ID": request.tenant_id,
        "X-Business-ID": request.business_id or "",
        "X-Transaction-ID": request.transaction_id,
    }


class AuditClient:
    """Best-effort audit trail. Failures are logged and counted, never raised."""

    def __init__(
        self,
        dispatcher: DispatchManager | None = None,
        settings: Settings | None = None,
        *,
        sender: Sender | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher or get_dispatcher()
        self.sender = sender or post_json

    def build_request(
        self,
        *,
        tenant_id: str,
        business_id: str | None,
        component: str,
        action: str,
        resource_type: str,
        resource_id: str,
        actor_id: str | None = None,
        initiator: str = DEFAULT_INITIATOR,
        context: dict[str, Any] | None = None,
        status: str = "SUCCESS",
        transaction_id: str | None = None,
    ) -> AuditRequest:
        return AuditRequest(
            tenant_id=tenant_id,
            business_id=business_id,
            transaction_id=transaction_id or str(uuid.uuid4()),
            actor=AuditActor(id=actor_id or business_id or tenant_id),
            component=component,
            action_type=action,
            initiator=initiator,
            resource=AuditResource(type=resource_type, id=resource_id),
            context=context or {},
            status=status,
            timestamp=utcnow().isoformat(),
        )

    def log(self, **fields: Any) -> Future | None:
        if not self.settings.audit_enabled:
            return None
        request = self.build_request(**fields)
        return self.dispatcher.submit(self.send_now, request)

    def send_now(self, request: AuditRequest) -> bool:
        body = request.model_dump(mode="json", by_alias=True)
        try:
            status_code, _ = self.sender(
                self.settings.audit_url,
                canonical_json(body),
                build_audit_headers(request),
                self.settings.outbound_http_timeout_seconds,
            )
        except Exception as exc:
            increment_metric(METRIC_AUDIT_FAILED, tenant_id=request.tenant_id, reason=exc.__class__.__name__)
            log_structured(
                "audit.failed",
                level=logging.WARNING,
                tenant_id=request.tenant_id,
                resource_type=request.resource.type,
                resource_id=request.resource.id,
                error_class=exc.__class__.__name__,
                failure_class=classify_failure(exc).value,
            )
            return False
        if not 200 <= status_code < 300:
            increment_metric(METRIC_AUDIT_FAILED, tenant_id=request.tenant_id, reason=str(status_code))
            log_structured(
                "audit.failed",
                level=logging.WARNING,
                tenant_id=request.tenant_id,
                resource_type=request.resource.type,
                resource_id=request.resource.id,
                http_status=status_code,
            )
            return False
        log_structured(
            "audit.sent",
            tenant_id=request.tenant_id,
            resource_type=request.resource.type,
            resource_id=request.resource.id,
        )
        return True


@lru_cache(maxsize=1)
def get_auditor() -> AuditClient:
    return AuditClient()
