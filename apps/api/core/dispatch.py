"""Fire-and-forget notification dispatch.

``trigger`` hands the work to a bounded thread pool and returns at once. The
worker records a PENDING ``NotificationTrigger`` before calling the
notification service and always persists the terminal SENT/FAILED state
afterwards. Delivery failures are absorbed here and never reach the caller.
When the pool is saturated the event is not queued: a FAILED trigger is
written straight away so the rejection still leaves a record.
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from typing import Any, Callable

from core import repositories
from core.config import Settings, get_settings
from core.contracts import BUSINESS_HEADER, TENANT_HEADER, TRANSACTION_HEADER
from core.errors import DeliveryError
from core.failure_modes import classify_failure
from core.logging_utils import log_structured
from core.observability import (
    METRIC_DISPATCH_FAILED,
    METRIC_DISPATCH_REJECTED,
    METRIC_DISPATCH_SENT,
    increment_metric,
)
from core.tenancy import TenantResolver, get_resolver
from models.notification_trigger import NotificationStatus, NotificationTrigger
from schemas.notification import EventPayload, NotificationEvent, TriggerEventRequest

DEFAULT_LANGUAGE = "en"
MAX_ERROR_LENGTH = 2000
QUEUE_FULL_ERROR = "dispatch queue full"

Sender = Callable[[str, str, dict[str, str], int], tuple[int, str]]


def canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def build_notification_headers(tenant_id: str, business_id: str | None, transaction_id: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        TENANT_HEADER: tenant_id,
        BUSINESS_HEADER: business_id or "",
        TRANSACTION_HEADER: transaction_id,
    }


def post_json(url: str, body_text: str, headers: dict[str, str], timeout: int = 10) -> tuple[int, str]:
    request = urllib.request.Request(
        url=url,
        data=body_text.encode("utf-8"),
        method="POST",
        headers=headers,
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            return int(response.status), response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        return int(exc.code), exc.read().decode("utf-8", errors="replace")


def build_trigger_request(
    event: NotificationEvent,
    customer_identifiers: dict[str, Any] | None,
    payload: EventPayload | None,
    language: str | None,
    data_processor_ids: list[str] | None = None,
) -> TriggerEventRequest:
    return TriggerEventRequest(
        event_type=event,
        resource=event.resource,
        customer_identifiers=customer_identifiers,
        data_processor_ids=data_processor_ids,
        language=language or DEFAULT_LANGUAGE,
        event_payload=payload,
    )


def _remote_event_id(response_text: str) -> str | None:
    try:
        decoded = json.loads(response_text) if response_text else None
    except json.JSONDecodeError as exc:
        raise DeliveryError("Notification service returned a non-JSON body", body=response_text) from exc
    if not isinstance(decoded, dict):
        raise DeliveryError("Notification service returned an empty body", body=response_text)
    event_id = decoded.get("eventId") or decoded.get("event_id")
    return str(event_id) if event_id is not None else None


class DispatchManager:
    def __init__(
        self,
        resolver: TenantResolver | None = None,
        settings: Settings | None = None,
        *,
        sender: Sender | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.resolver = resolver or get_resolver()
        self.sender = sender or post_json
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.dispatch_max_workers,
            thread_name_prefix="dispatch",
        )
        # Bounds queued plus running work; submit never waits for a free slot.
        self._slots = threading.BoundedSemaphore(self.settings.dispatch_queue_size)
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        if not self._slots.acquire(blocking=False):
            increment_metric(METRIC_DISPATCH_REJECTED, reason="queue_full")
            log_structured("dispatch.rejected", level=logging.WARNING, reason="queue_full")
            return None
        try:
            return self._executor.submit(self._run, fn, *args, **kwargs)
        except RuntimeError:
            self._slots.release()
            log_structured("dispatch.rejected", level=logging.WARNING, reason="executor_shutdown")
            return None

    def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            log_structured(
                "dispatch.task_failed",
                level=logging.ERROR,
                error_class=exc.__class__.__name__,
                failure_class=classify_failure(exc).value,
            )
            return None
        finally:
            self._slots.release()

    def trigger(
        self,
        event: NotificationEvent,
        tenant_id: str,
        business_id: str | None,
        customer_identifiers: dict[str, Any] | None,
        payload: EventPayload | None,
        language: str | None = None,
        data_processor_ids: list[str] | None = None,
    ) -> Future | None:
        if not self.settings.notification_enabled:
            log_structured("dispatch.skipped", event_type=event.value, tenant_id=tenant_id, reason="disabled")
            return None
        future = self.submit(
            self.dispatch_now,
            event,
            tenant_id,
            business_id,
            customer_identifiers,
            payload,
            language,
            data_processor_ids,
        )
        if future is None and not self._closed:
            self.record_rejected(
                event, tenant_id, business_id, customer_identifiers, payload, language, data_processor_ids
            )
        return future

    def _new_trigger(
        self,
        event: NotificationEvent,
        business_id: str | None,
        body: dict[str, Any],
        data_processor_ids: list[str] | None,
    ) -> NotificationTrigger:
        return NotificationTrigger(
            trigger_id=str(uuid.uuid4()),
            event_type=event.value,
            resource=event.resource,
            business_id=business_id,
            customer_identifiers=body.get("customerIdentifiers"),
            data_processor_ids=data_processor_ids,
            status=NotificationStatus.PENDING,
            event_payload=body.get("eventPayload"),
        )

    def record_rejected(
        self,
        event: NotificationEvent,
        tenant_id: str,
        business_id: str | None,
        customer_identifiers: dict[str, Any] | None,
        payload: EventPayload | None,
        language: str | None = None,
        data_processor_ids: list[str] | None = None,
    ) -> NotificationTrigger | None:
        request = build_trigger_request(event, customer_identifiers, payload, language, data_processor_ids)
        body = request.model_dump(mode="json", by_alias=True)
        trigger = self._new_trigger(event, business_id, body, data_processor_ids)
        trigger.status = NotificationStatus.FAILED
        trigger.error_message = QUEUE_FULL_ERROR
        try:
            with self.resolver.resolve(tenant_id).session() as db:
                repositories.save_trigger(db, trigger)
        except Exception as exc:
            log_structured(
                "dispatch.reject_record_failed",
                level=logging.ERROR,
                event_type=event.value,
                tenant_id=tenant_id,
                error_class=exc.__class__.__name__,
                failure_class=classify_failure(exc).value,
            )
            return None
        increment_metric(METRIC_DISPATCH_FAILED, tenant_id=tenant_id, reason="queue_full")
        log_structured(
            "dispatch.failed",
            level=logging.WARNING,
            event_type=event.value,
            tenant_id=tenant_id,
            resource_id=trigger.trigger_id,
            reason="queue_full",
        )
        return trigger

    def dispatch_now(
        self,
        event: NotificationEvent,
        tenant_id: str,
        business_id: str | None,
        customer_identifiers: dict[str, Any] | None,
        payload: EventPayload | None,
        language: str | None = None,
        data_processor_ids: list[str] | None = None,
    ) -> NotificationTrigger:
        partition = self.resolver.resolve(tenant_id)
        request = build_trigger_request(event, customer_identifiers, payload, language, data_processor_ids)
        body = request.model_dump(mode="json", by_alias=True)

        trigger = self._new_trigger(event, business_id, body, data_processor_ids)
        with partition.session() as db:
            repositories.save_trigger(db, trigger)

        transaction_id = str(uuid.uuid4())
        headers = build_notification_headers(tenant_id, business_id, transaction_id)
        try:
            status_code, response_text = self.sender(
                self.settings.notification_url,
                canonical_json(body),
                headers,
                self.settings.outbound_http_timeout_seconds,
            )
            trigger.http_status = str(status_code)
            if not 200 <= status_code < 300:
                raise DeliveryError(f"HTTP {status_code}", http_status=status_code, body=response_text)
            trigger.notification_event_id = _remote_event_id(response_text)
            trigger.status = NotificationStatus.SENT
            trigger.error_message = None
        except DeliveryError as exc:
            trigger.status = NotificationStatus.FAILED
            trigger.error_message = (exc.body or exc.message)[:MAX_ERROR_LENGTH]
        except Exception as exc:
            trigger.status = NotificationStatus.FAILED
            trigger.error_message = (str(exc) or exc.__class__.__name__)[:MAX_ERROR_LENGTH]
            log_structured(
                "dispatch.transport_error",
                level=logging.WARNING,
                tenant_id=tenant_id,
                error_class=exc.__class__.__name__,
                failure_class=classify_failure(exc).value,
            )
        finally:
            with partition.session() as db:
                trigger = db.merge(trigger)

        if trigger.status == NotificationStatus.SENT:
            increment_metric(METRIC_DISPATCH_SENT, tenant_id=tenant_id)
            log_structured(
                "dispatch.sent",
                event_type=event.value,
                tenant_id=tenant_id,
                resource_id=trigger.trigger_id,
                http_status=trigger.http_status,
            )
        else:
            increment_metric(METRIC_DISPATCH_FAILED, tenant_id=tenant_id, reason=trigger.http_status or "transport")
            log_structured(
                "dispatch.failed",
                level=logging.WARNING,
                event_type=event.value,
                tenant_id=tenant_id,
                resource_id=trigger.trigger_id,
                http_status=trigger.http_status,
            )
        return trigger

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)


@lru_cache(maxsize=1)
def get_dispatcher() -> DispatchManager:
    return DispatchManager()
