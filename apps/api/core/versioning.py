"""Create/activate/supersede logic shared by templates and consents.

Rows are never edited in place apart from the ACTIVE -> SUPERSEDED flip. A new
version is inserted first and the previous ACTIVE row is superseded afterwards
inside the same partition transaction; the unique (logical id, version)
constraint turns a concurrent promotion of the same version into a
:class:`ConflictError` instead of a duplicate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core import repositories
from core.db import utcnow
from core.errors import ConflictError, NotFound
from core.logging_utils import log_structured
from core.repositories import CONSENT_KIND, TEMPLATE_KIND, VersionedKind
from models.version_status import VersionStatus


class VersionedStore:
    def __init__(self, kind: VersionedKind) -> None:
        self.kind = kind

    def create_new_version(
        self,
        db: Session,
        logical_id: str,
        values: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> Any:
        now = now or utcnow()
        next_version = repositories.max_version(db, self.kind, logical_id) + 1
        record = self.kind.model(**values)
        setattr(record, self.kind.logical_id.key, logical_id)
        setattr(record, self.kind.version_status.key, VersionStatus.ACTIVE)
        record.version = next_version
        record.created_at = now
        record.updated_at = now

        db.add(record)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(
                f"{self.kind.name} {logical_id} version {next_version} was created concurrently"
            ) from exc

        superseded = repositories.supersede_others(db, self.kind, logical_id, next_version, now)
        if superseded:
            log_structured("version.superseded", resource_type=self.kind.name, resource_id=logical_id, count=superseded)
        log_structured(
            "version.created",
            resource_type=self.kind.name,
            resource_id=logical_id,
            version=next_version,
            count=superseded,
        )
        return record

    def get_active(self, db: Session, logical_id: str) -> Any:
        record = repositories.find_active(db, self.kind, logical_id)
        if record is None:
            raise NotFound(f"No active {self.kind.name} found for id: {logical_id}")
        return record

    def get_version(self, db: Session, logical_id: str, version: int) -> Any:
        record = repositories.find_version(db, self.kind, logical_id, version)
        if record is None:
            raise NotFound(f"{self.kind.name} {logical_id} has no version {version}")
        return record

    def list_versions(self, db: Session, logical_id: str) -> list[Any]:
        return repositories.list_versions(db, self.kind, logical_id)


TEMPLATES = VersionedStore(TEMPLATE_KIND)
CONSENTS = VersionedStore(CONSENT_KIND)
