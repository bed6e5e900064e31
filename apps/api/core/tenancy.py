"""Tenant partition resolution.

Every tenant owns one physical database named ``TENANT_DATABASE_PREFIX + tenant_id``.
Callers resolve a :class:`TenantPartition` once and pass the session it hands out
explicitly into every data call; there is no ambient "current tenant".
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.orm import Session, sessionmaker

import models  # noqa: F401  ensure partition tables are registered on Base.metadata
from core.config import Settings, get_settings
from core.db import Base, create_partition_engine, is_sqlite, partition_url
from core.errors import ConfigurationError
from core.logging_utils import log_structured

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,48}$")
_PROBE = "__partition_probe__"


@dataclass(frozen=True)
class TenantPartition:
    tenant_id: str
    database_name: str
    engine: Engine
    session_factory: sessionmaker

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def validate_tenant_id(tenant_id: str | None) -> str:
    if tenant_id is None or not str(tenant_id).strip():
        raise ConfigurationError("Tenant ID is required")
    normalized = str(tenant_id).strip()
    if not TENANT_ID_PATTERN.fullmatch(normalized):
        raise ConfigurationError("Tenant ID contains unsupported characters")
    return normalized


class TenantResolver:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._partitions: dict[str, TenantPartition] = {}
        self._lock = threading.Lock()
        self._catalog_engine: Engine | None = None

    def database_name(self, tenant_id: str) -> str:
        return f"{self.settings.tenant_database_prefix}{tenant_id}"

    def resolve(self, tenant_id: str | None) -> TenantPartition:
        tenant_id = validate_tenant_id(tenant_id)
        cached = self._partitions.get(tenant_id)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._partitions.get(tenant_id)
            if cached is not None:
                return cached
            database_name = self.database_name(tenant_id)
            if not self.partition_exists(database_name):
                if not self.settings.auto_create_schema:
                    raise ConfigurationError(f"No data partition exists for tenant: {tenant_id}")
                return self._provision_locked(tenant_id)
            partition = self._open(tenant_id, database_name)
            if self.settings.auto_create_schema:
                Base.metadata.create_all(bind=partition.engine)
            self._partitions[tenant_id] = partition
            log_structured("tenant.partition_resolved", tenant_id=tenant_id, database=database_name)
            return partition

    def provision(self, tenant_id: str | None) -> TenantPartition:
        tenant_id = validate_tenant_id(tenant_id)
        with self._lock:
            return self._provision_locked(tenant_id)

    def _provision_locked(self, tenant_id: str) -> TenantPartition:
        database_name = self.database_name(tenant_id)
        if not self.partition_exists(database_name):
            self._create_database(database_name)
        partition = self._partitions.get(tenant_id) or self._open(tenant_id, database_name)
        Base.metadata.create_all(bind=partition.engine)
        self._partitions[tenant_id] = partition
        log_structured("tenant.partition_provisioned", tenant_id=tenant_id, database=database_name)
        return partition

    def _open(self, tenant_id: str, database_name: str) -> TenantPartition:
        engine = create_partition_engine(partition_url(self.settings, database_name), self.settings)
        return TenantPartition(
            tenant_id=tenant_id,
            database_name=database_name,
            engine=engine,
            session_factory=sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False),
        )

    def _probe_url(self) -> URL:
        return partition_url(self.settings, _PROBE)

    def _sqlite_path(self, database_name: str) -> Path:
        return Path(partition_url(self.settings, database_name).database)

    def _catalog(self) -> Engine:
        if self._catalog_engine is None:
            url = self._probe_url().set(database=self.settings.catalog_database)
            self._catalog_engine = create_partition_engine(url, self.settings).execution_options(
                isolation_level="AUTOCOMMIT"
            )
        return self._catalog_engine

    def partition_exists(self, database_name: str) -> bool:
        if is_sqlite(self._probe_url()):
            return self._sqlite_path(database_name).exists()
        with self._catalog().connect() as conn:
            found = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            ).first()
        return found is not None

    def _create_database(self, database_name: str) -> None:
        if is_sqlite(self._probe_url()):
            # The file is created on first connect; only the directory has to exist.
            self._sqlite_path(database_name).parent.mkdir(parents=True, exist_ok=True)
            return
        engine = self._catalog()
        quoted = engine.dialect.identifier_preparer.quote(database_name)
        with engine.connect() as conn:
            conn.execute(text(f"CREATE DATABASE {quoted}"))

    def discover_tenant_ids(self) -> list[str]:
        prefix = self.settings.tenant_database_prefix
        if is_sqlite(self._probe_url()):
            probe_path = Path(self._probe_url().database)
            head, _, tail = probe_path.name.partition(_PROBE)
            names = [
                path.name[len(head):len(path.name) - len(tail)]
                for path in probe_path.parent.glob(f"{head}{prefix}*{tail}")
                if path.is_file()
            ]
        else:
            with self._catalog().connect() as conn:
                names = list(
                    conn.scalars(text("SELECT datname FROM pg_database WHERE NOT datistemplate")).all()
                )
        return sorted(name[len(prefix):] for name in names if name.startswith(prefix) and len(name) > len(prefix))

    def cached_tenant_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._partitions)

    def dispose(self) -> None:
        with self._lock:
            for partition in self._partitions.values():
                partition.engine.dispose()
            self._partitions.clear()
            if self._catalog_engine is not None:
                self._catalog_engine.dispose()
                self._catalog_engine = None


@lru_cache(maxsize=1)
def get_resolver() -> TenantResolver:
    return TenantResolver()
