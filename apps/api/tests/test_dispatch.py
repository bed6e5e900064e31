import io
import json
import threading
import time
import unittest
import urllib.error
from unittest.mock import patch

from core import repositories
from core.consent_handles import create_consent_handle
from core.dispatch import QUEUE_FULL_ERROR, DispatchManager, post_json
from core.observability import COUNTERS, METRIC_DISPATCH_FAILED, METRIC_DISPATCH_REJECTED, METRIC_DISPATCH_SENT
from models.notification_trigger import NotificationStatus
from schemas.notification import ConsentRevokedPayload, NotificationEvent
from tests.helpers import PartitionTestCase, handle_request, make_settings

CUSTOMER = {"type": "EMAIL", "value": "alice@example.com"}


def _payload() -> ConsentRevokedPayload:
    return ConsentRevokedPayload(consent_id="c-1", consent_handle_id="h-1", version=2, template_id="tpl-1")


class FakeSender:
    def __init__(self, status_code: int = 200, body: str = '{"eventId": "evt-1"}', error: Exception | None = None):
        self.status_code = status_code
        self.body = body
        self.error = error
        self.calls = []

    def __call__(self, url, body_text, headers, timeout):
        self.calls.append({"url": url, "body": json.loads(body_text), "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.status_code, self.body


class DispatchManagerTests(PartitionTestCase):
    def setUp(self) -> None:
        super().setUp()
        COUNTERS.reset()
        self.partition = self.resolver.provision("t1")
        self.managers = []

    def tearDown(self) -> None:
        for manager in self.managers:
            manager.shutdown(wait=True)
        super().tearDown()

    def _manager(self, sender, settings=None) -> DispatchManager:
        manager = DispatchManager(self.resolver, settings or self.settings, sender=sender)
        self.managers.append(manager)
        return manager

    def _triggers(self):
        with self.partition.session() as db:
            return repositories.list_triggers(db)

    def test_success_records_sent_trigger_with_remote_event_id(self) -> None:
        sender = FakeSender()
        trigger = self._manager(sender).dispatch_now(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload(), "en"
        )

        self.assertEqual(trigger.status, NotificationStatus.SENT)
        self.assertEqual(trigger.http_status, "200")
        self.assertEqual(trigger.notification_event_id, "evt-1")
        stored = self._triggers()
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].status, NotificationStatus.SENT)
        with self.partition.session() as db:
            self.assertEqual(repositories.find_trigger(db, trigger.trigger_id).notification_event_id, "evt-1")
        self.assertEqual(COUNTERS.value(METRIC_DISPATCH_SENT), 1)

    def test_request_shape_and_headers(self) -> None:
        sender = FakeSender()
        self._manager(sender).dispatch_now(NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload())

        call = sender.calls[0]
        self.assertEqual(call["url"], "http://notify.local/notification/v1/events/trigger")
        self.assertEqual(call["headers"]["X-Tenant-Id"], "t1")
        self.assertEqual(call["headers"]["X-Business-Id"], "biz-1")
        self.assertTrue(call["headers"]["X-Transaction-Id"])
        body = call["body"]
        self.assertEqual(body["eventType"], "CONSENT_REVOKED")
        self.assertEqual(body["resource"], "CONSENT")
        self.assertEqual(body["customerIdentifiers"], CUSTOMER)
        self.assertEqual(body["language"], "en")
        self.assertEqual(body["eventPayload"]["kind"], "consent_revoked")
        self.assertEqual(body["eventPayload"]["consentId"], "c-1")

    def test_pending_row_exists_before_the_call_is_made(self) -> None:
        seen = []

        def sender(url, body_text, headers, timeout):
            seen.extend(trigger.status for trigger in self._triggers())
            return 200, '{"eventId": "evt-2"}'

        self._manager(sender).dispatch_now(NotificationEvent.CONSENT_REVOKED, "t1", None, CUSTOMER, _payload())
        self.assertEqual(seen, [NotificationStatus.PENDING])

    def test_http_500_records_failed_with_status_text(self) -> None:
        trigger = self._manager(FakeSender(status_code=500, body="upstream exploded")).dispatch_now(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload()
        )

        self.assertEqual(trigger.status, NotificationStatus.FAILED)
        self.assertEqual(trigger.http_status, "500")
        self.assertEqual(trigger.error_message, "upstream exploded")
        stored = self._triggers()
        self.assertEqual([row.status for row in stored], [NotificationStatus.FAILED])
        self.assertEqual(COUNTERS.value(METRIC_DISPATCH_FAILED), 1)

    def test_transport_error_records_failed_without_http_status(self) -> None:
        sender = FakeSender(error=urllib.error.URLError("connection refused"))
        trigger = self._manager(sender).dispatch_now(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload()
        )

        self.assertEqual(trigger.status, NotificationStatus.FAILED)
        self.assertIsNone(trigger.http_status)
        self.assertIn("connection refused", trigger.error_message)
        self.assertEqual(len(self._triggers()), 1)

    def test_non_json_success_body_is_a_failure(self) -> None:
        trigger = self._manager(FakeSender(body="<html>ok</html>")).dispatch_now(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload()
        )
        self.assertEqual(trigger.status, NotificationStatus.FAILED)
        self.assertEqual(trigger.http_status, "200")

    def test_trigger_runs_in_background_and_never_raises(self) -> None:
        future = self._manager(FakeSender(error=TimeoutError("timed out"))).trigger(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload()
        )
        trigger = future.result(timeout=10)
        self.assertEqual(trigger.status, NotificationStatus.FAILED)

    def test_unknown_tenant_is_logged_not_raised(self) -> None:
        future = self._manager(FakeSender()).trigger(
            NotificationEvent.CONSENT_REVOKED, "ghost", "biz-1", CUSTOMER, _payload()
        )
        self.assertIsNone(future.result(timeout=10))

    def test_disabled_notifications_do_nothing(self) -> None:
        settings = make_settings(self.database_dir, NOTIFICATION_ENABLED="false")
        sender = FakeSender()
        result = self._manager(sender, settings).trigger(
            NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload()
        )
        self.assertIsNone(result)
        self.assertEqual(sender.calls, [])
        self.assertEqual(self._triggers(), [])

    def test_business_call_succeeds_when_delivery_fails(self) -> None:
        template = self.publish_template(self.partition)
        manager = self._manager(FakeSender(status_code=503, body="unavailable"))

        result = create_consent_handle(
            self.partition, handle_request(template), "biz-1", dispatcher=manager, auditor=self.auditor
        )
        manager.shutdown(wait=True)

        self.assertTrue(result.is_new)
        stored = self._triggers()
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].event_type, "CONSENT_HANDLE_CREATED")
        self.assertEqual(stored[0].resource, "CONSENT_HANDLE")
        self.assertEqual(stored[0].status, NotificationStatus.FAILED)
        self.assertEqual(stored[0].http_status, "503")

    def test_saturated_pool_rejects_without_blocking_and_records_failure(self) -> None:
        settings = make_settings(self.database_dir, DISPATCH_MAX_WORKERS="1", DISPATCH_QUEUE_SIZE="1")
        release = threading.Event()

        def slow_sender(url, body_text, headers, timeout):
            release.wait(timeout=10)
            return 200, '{"eventId": "evt-slow"}'

        manager = self._manager(slow_sender, settings)
        first = manager.trigger(NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload())

        started = time.monotonic()
        second = manager.trigger(NotificationEvent.CONSENT_REVOKED, "t1", "biz-1", CUSTOMER, _payload())
        elapsed = time.monotonic() - started

        self.assertIsNone(second)
        self.assertLess(elapsed, 0.5)
        self.assertEqual(COUNTERS.value(METRIC_DISPATCH_REJECTED), 1)
        rejected = [row for row in self._triggers() if row.error_message == QUEUE_FULL_ERROR]
        self.assertEqual(len(rejected), 1)
        self.assertEqual(rejected[0].status, NotificationStatus.FAILED)
        self.assertEqual(rejected[0].event_type, "CONSENT_REVOKED")

        release.set()
        self.assertEqual(first.result(timeout=10).status, NotificationStatus.SENT)

    def test_optional_body_fields_are_sent_as_null(self) -> None:
        sender = FakeSender()
        self._manager(sender).dispatch_now(NotificationEvent.CONSENT_REVOKED, "t1", None, None, None)

        body = sender.calls[0]["body"]
        self.assertEqual(
            set(body),
            {"eventType", "resource", "customerIdentifiers", "dataProcessorIds", "language", "eventPayload"},
        )
        self.assertIsNone(body["customerIdentifiers"])
        self.assertIsNone(body["dataProcessorIds"])
        self.assertIsNone(body["eventPayload"])

    def test_submit_after_shutdown_is_rejected_quietly(self) -> None:
        manager = self._manager(FakeSender())
        manager.shutdown(wait=True)
        self.assertIsNone(manager.trigger(NotificationEvent.CONSENT_REVOKED, "t1", None, CUSTOMER, _payload()))


class PostJsonTests(unittest.TestCase):
    @patch("core.dispatch.urllib.request.urlopen")
    def test_http_error_is_returned_as_status_and_body(self, urlopen) -> None:
        urlopen.side_effect = urllib.error.HTTPError(
            "http://notify.local", 503, "Service Unavailable", {}, io.BytesIO(b"busy")
        )
        self.assertEqual(post_json("http://notify.local", "{}", {}, 1), (503, "busy"))

    @patch("core.dispatch.urllib.request.urlopen")
    def test_transport_error_propagates(self, urlopen) -> None:
        urlopen.side_effect = urllib.error.URLError("refused")
        with self.assertRaises(urllib.error.URLError):
            post_json("http://notify.local", "{}", {}, 1)


if __name__ == "__main__":
    unittest.main()
