import os
import tempfile
import unittest
from unittest.mock import patch

from core.config import Settings
from core.tenancy import TenantPartition, TenantResolver
from core.templates import create_template
from models.consent_template import TemplateStatus
from schemas.common import CustomerIdentifiers, Preference, Validity
from schemas.consent_handle import ConsentHandleCreate
from schemas.template import TemplateCreate


def make_settings(database_dir: str, **overrides) -> Settings:
    env = {
        "ENV": "test",
        "TENANT_DATABASE_URL_TEMPLATE": f"sqlite:///{database_dir}/{{database}}.db",
        "TENANT_DATABASE_PREFIX": "tenant_db_",
        "NOTIFICATION_ENABLED": "true",
        "NOTIFICATION_BASE_URL": "http://notify.local",
        "AUDIT_ENABLED": "false",
        "AUDIT_BASE_URL": "http://audit.local",
        "DISPATCH_MAX_WORKERS": "2",
        "DISPATCH_QUEUE_SIZE": "8",
    }
    env.update({key: str(value) for key, value in overrides.items()})
    with patch.dict(os.environ, env, clear=True):
        return Settings()


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events = []

    def trigger(self, event, tenant_id, business_id, customer_identifiers, payload, language=None, data_processor_ids=None):
        self.events.append((event, tenant_id, payload))
        return None

    def event_types(self) -> list[str]:
        return [event.value for event, _, _ in self.events]


class RecordingAuditor:
    def __init__(self) -> None:
        self.entries = []

    def log(self, **fields):
        self.entries.append(fields)
        return None

    def actions(self) -> list[str]:
        return [entry["action"] for entry in self.entries]


class PartitionTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.database_dir = self._tmp.name
        self.settings = make_settings(self.database_dir, **self.settings_overrides)
        self.resolver = TenantResolver(self.settings)
        self.dispatcher = RecordingDispatcher()
        self.auditor = RecordingAuditor()

    def tearDown(self) -> None:
        self.resolver.dispose()
        self._tmp.cleanup()

    def publish_template(self, partition: TenantPartition, status: TemplateStatus = TemplateStatus.PUBLISHED):
        return create_template(
            partition,
            TemplateCreate(
                template_name="Marketing and analytics",
                status=status,
                preferences=[
                    Preference(purpose="marketing", validity=Validity(value=30, unit="DAYS")),
                    Preference(purpose="analytics", is_mandatory=True, validity=Validity(value=1, unit="YEARS")),
                ],
            ),
            "biz-1",
            auditor=self.auditor,
        )


def handle_request(template, customer_value: str = "alice@example.com", url: str = "https://shop.example/consent"):
    return ConsentHandleCreate(
        template_id=template.template_id,
        template_version=template.version,
        customer_identifiers=CustomerIdentifiers(type="EMAIL", value=customer_value),
        url=url,
    )
