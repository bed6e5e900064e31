"""Cross-tenant expiry sweeps.

Each sweep enumerates tenant partitions by database prefix and runs one bulk
conditional UPDATE per partition. Partitions are independent: a failure in
one is logged and counted, and the sweep moves on to the next. Both updates are
guarded by the state they transition from, so re-running a sweep is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from core import repositories
from core.db import utcnow
from core.errors import PartitionError
from core.failure_modes import classify_failure
from core.logging_utils import log_structured
from core.observability import (
    METRIC_CONSENTS_EXPIRED,
    METRIC_HANDLES_EXPIRED,
    METRIC_PARTITION_FAILED,
    increment_metric,
)
from core.tenancy import TenantResolver, get_resolver


@dataclass
class SweepResult:
    job: str
    total: int = 0
    per_tenant: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def partitions(self) -> int:
        return len(self.per_tenant) + len(self.failures)


def expire_consent_handles(db: Session, now: datetime | None = None) -> int:
    return repositories.expire_pending_handles(db, now or utcnow())


def expire_consents(db: Session, now: datetime | None = None) -> int:
    return repositories.expire_lapsed_consents(db, now or utcnow())


def _sweep(
    job: str,
    expire: Callable[[Session, datetime], int],
    metric: str,
    resolver: TenantResolver | None,
    now: datetime | None,
) -> SweepResult:
    resolver = resolver or get_resolver()
    now = now or utcnow()
    result = SweepResult(job=job)
    log_structured("sweep.started", job=job)

    try:
        tenant_ids = resolver.discover_tenant_ids()
    except Exception as exc:
        log_structured(
            "sweep.discovery_failed",
            level=logging.ERROR,
            job=job,
            error_class=exc.__class__.__name__,
            failure_class=classify_failure(exc).value,
        )
        raise

    for tenant_id in tenant_ids:
        try:
            partition = resolver.resolve(tenant_id)
            with partition.session() as db:
                changed = expire(db, now)
        except Exception as exc:
            error = PartitionError(tenant_id, f"{job} failed for tenant {tenant_id}: {exc.__class__.__name__}")
            result.failures[tenant_id] = error.message
            increment_metric(METRIC_PARTITION_FAILED, tenant_id=tenant_id, reason=job)
            log_structured(
                "sweep.partition_failed",
                level=logging.ERROR,
                job=job,
                tenant_id=tenant_id,
                error_class=exc.__class__.__name__,
                failure_class=classify_failure(exc).value,
            )
            continue

        result.per_tenant[tenant_id] = changed
        result.total += changed
        if changed:
            increment_metric(metric, changed, tenant_id=tenant_id)
            log_structured("sweep.partition_updated", job=job, tenant_id=tenant_id, count=changed)

    log_structured(
        "sweep.completed",
        job=job,
        total=result.total,
        partitions=result.partitions,
        failed_partitions=len(result.failures),
    )
    return result


def sweep_consent_handles(resolver: TenantResolver | None = None, now: datetime | None = None) -> SweepResult:
    return _sweep("consent_handle_expiry", expire_consent_handles, METRIC_HANDLES_EXPIRED, resolver, now)


def sweep_consents(resolver: TenantResolver | None = None, now: datetime | None = None) -> SweepResult:
    return _sweep("consent_expiry", expire_consents, METRIC_CONSENTS_EXPIRED, resolver, now)
