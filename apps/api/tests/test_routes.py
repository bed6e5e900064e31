import asyncio
import json
import unittest
from unittest.mock import patch

from fastapi import Response
from starlette.requests import Request

from core.deps import business_id_header, require_partition
from core.errors import ConfigurationError, ConflictError, NotFound
from models.consent import PreferenceStatus
from models.consent_template import TemplateStatus
from routers.consent_handles import create_consent_handle, get_consent_handle
from routers.consents import check_consent_status, create_consent, get_consent_history, update_consent
from routers.dashboard import dashboard_consents
from routers.health import health, live
from routers.templates import create_template, get_template_version, list_templates, list_templates_by_status
from schemas.common import Preference
from schemas.consent import ConsentCreate, ConsentUpdate, DashboardQuery
from schemas.template import TemplateCreate
from tests.helpers import PartitionTestCase, handle_request

ACCEPT = {"analytics": PreferenceStatus.ACCEPTED}


def _request(path: str = "/consents") -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "server": ("testserver", 80),
            "path": path,
            "query_string": b"",
            "headers": [],
        }
    )


class RouteTests(PartitionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.partition = self.resolver.provision("t1")
        patchers = [
            patch("core.templates.get_auditor", return_value=self.auditor),
            patch("core.consent_handles.get_auditor", return_value=self.auditor),
            patch("core.consent_handles.get_dispatcher", return_value=self.dispatcher),
            patch("core.consents.get_auditor", return_value=self.auditor),
            patch("core.consents.get_dispatcher", return_value=self.dispatcher),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

    def _template(self):
        return create_template(
            payload=TemplateCreate(
                template_name="Analytics",
                status="PUBLISHED",
                preferences=[Preference(purpose="analytics", is_mandatory=True)],
            ),
            partition=self.partition,
            business_id="biz-1",
        )

    def _handle(self, template, response=None):
        return create_consent_handle(
            payload=handle_request(template),
            response=response or Response(),
            partition=self.partition,
            business_id="biz-1",
            txn_id="txn-9",
        )

    def test_handle_creation_reports_reuse_with_200(self) -> None:
        template = self._template()
        first_response, second_response = Response(), Response()
        first = self._handle(template, first_response)
        second = self._handle(template, second_response)

        self.assertTrue(first.is_new_handle)
        self.assertEqual(first.txn_id, "txn-9")
        self.assertFalse(second.is_new_handle)
        self.assertEqual(second.consent_handle_id, first.consent_handle_id)
        self.assertEqual(second_response.status_code, 200)
        fetched = get_consent_handle(consent_handle_id=first.consent_handle_id, partition=self.partition)
        self.assertEqual(fetched.template_id, template.template_id)

    def test_consent_create_update_and_history(self) -> None:
        template = self._template()
        created = create_consent(
            payload=ConsentCreate(consent_handle_id=self._handle(template).consent_handle_id, preferences_status=ACCEPT),
            response=Response(),
            partition=self.partition,
        )
        self.assertEqual(created.version, 1)
        self.assertEqual(created.message, "Consent created")

        revoked = update_consent(
            consent_id=created.consent_id,
            payload=ConsentUpdate(consent_handle_id=self._handle(template).consent_handle_id, status="REVOKED"),
            partition=self.partition,
        )
        self.assertEqual(revoked.version, 2)
        self.assertEqual(revoked.message, "Consent revoked")
        history = get_consent_history(consent_id=created.consent_id, partition=self.partition)
        self.assertEqual([row.version for row in history], [2, 1])

    def test_template_routes(self) -> None:
        template = self._template()
        self.assertEqual(len(list_templates(partition=self.partition, business_id=None, status=None)), 1)
        with self.assertRaises(NotFound):
            get_template_version(template_id=template.template_id, version=2, partition=self.partition)

    def test_status_dashboard_and_status_listing_routes(self) -> None:
        template = self._template()
        handle = self._handle(template)

        checked = check_consent_status(
            customer_value="alice@example.com",
            url="https://shop.example/consent",
            consent_id=None,
            partition=self.partition,
        )
        self.assertEqual((checked.consent_status, checked.consent_handle_id), ("PENDING", handle.consent_handle_id))

        groups = dashboard_consents(payload=DashboardQuery(template_id=template.template_id), partition=self.partition)
        self.assertEqual([entry.consent_handle_id for entry in groups[0].consents], [handle.consent_handle_id])

        self.assertEqual(len(list_templates_by_status(status=TemplateStatus.PUBLISHED, partition=self.partition)), 1)
        self.assertEqual(list_templates_by_status(status=TemplateStatus.DRAFT, partition=self.partition), [])

    def test_missing_or_unknown_tenant_header_is_rejected(self) -> None:
        with patch("core.deps.get_resolver", return_value=self.resolver):
            self.assertIs(require_partition("t1"), self.partition)
            with self.assertRaises(ConfigurationError):
                require_partition(None)
            with self.assertRaises(ConfigurationError):
                require_partition("ghost")

    def test_blank_business_header_is_none(self) -> None:
        self.assertIsNone(business_id_header("  "))
        self.assertEqual(business_id_header(" biz-1 "), "biz-1")

    def test_health_routes(self) -> None:
        self.assertEqual(health(), {"status": "ok"})
        self.assertEqual(live(), {"status": "ok"})


class ErrorMappingTests(unittest.TestCase):
    def test_domain_errors_map_to_status_and_code(self) -> None:
        from main import consent_service_error_handler

        cases = [
            (ConfigurationError("Tenant ID is required"), 400, "TENANT_CONTEXT_INVALID"),
            (NotFound("missing"), 404, "NOT_FOUND"),
            (ConflictError("raced"), 409, "CONFLICT"),
        ]
        for exc, status_code, code in cases:
            request = _request()
            request.state.request_id = "req-1"
            response = asyncio.run(consent_service_error_handler(request, exc))
            body = json.loads(response.body)
            self.assertEqual(response.status_code, status_code)
            self.assertEqual(body["error"]["code"], code)
            self.assertEqual(body["error"]["message"], exc.message)
            self.assertEqual(body["error"]["request_id"], "req-1")


if __name__ == "__main__":
    unittest.main()
