import unittest
from datetime import timedelta

from core.consent_handles import consume_consent_handle, create_consent_handle, get_consent_handle
from core.db import as_utc, utcnow
from core.errors import ConflictError, NotFound, ValidationError
from core import repositories
from models.consent_handle import ConsentHandleStatus
from models.consent_template import TemplateStatus
from schemas.consent_handle import ConsentHandleCreate
from schemas.notification import ConsentHandleCreatedPayload
from tests.helpers import PartitionTestCase, handle_request


class ConsentHandleTests(PartitionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.partition = self.resolver.provision("t1")
        self.template = self.publish_template(self.partition)
        self.now = utcnow()

    def _create(self, request=None, now=None):
        return create_consent_handle(
            self.partition,
            request or handle_request(self.template),
            "biz-1",
            "txn-1",
            now=now or self.now,
            dispatcher=self.dispatcher,
            auditor=self.auditor,
        )

    def _status(self, consent_handle_id: str) -> ConsentHandleStatus:
        with self.partition.session() as db:
            return repositories.find_handle(db, consent_handle_id).status

    def test_new_handle_is_pending_and_expires_after_configured_window(self) -> None:
        result = self._create()

        self.assertTrue(result.is_new)
        self.assertEqual(result.handle.status, ConsentHandleStatus.PENDING)
        self.assertEqual(result.handle.expires_at, self.now + timedelta(minutes=15))
        self.assertEqual(result.handle.customer_key, "EMAIL:alice@example.com")
        self.assertEqual(self.dispatcher.event_types(), ["CONSENT_HANDLE_CREATED"])
        payload = self.dispatcher.events[0][2]
        self.assertIsInstance(payload, ConsentHandleCreatedPayload)
        self.assertEqual(payload.consent_handle_id, result.handle.consent_handle_id)

    def test_pending_handle_is_reused_for_same_customer_url_and_template(self) -> None:
        first = self._create()
        second = self._create(now=self.now + timedelta(minutes=1))

        self.assertFalse(second.is_new)
        self.assertEqual(second.handle.consent_handle_id, first.handle.consent_handle_id)
        self.assertEqual(len(self.dispatcher.events), 1)

        other_customer = self._create(handle_request(self.template, customer_value="bob@example.com"))
        self.assertTrue(other_customer.is_new)

    def test_expired_handle_is_not_reused(self) -> None:
        first = self._create()
        later = self._create(now=self.now + timedelta(minutes=16))
        self.assertTrue(later.is_new)
        self.assertNotEqual(later.handle.consent_handle_id, first.handle.consent_handle_id)

    def test_template_must_exist_and_be_published(self) -> None:
        draft = self.publish_template(self.partition, status=TemplateStatus.DRAFT)
        with self.assertRaises(ValidationError):
            self._create(handle_request(draft))

        missing = ConsentHandleCreate(
            template_id=self.template.template_id,
            template_version=9,
            customer_identifiers={"type": "EMAIL", "value": "alice@example.com"},
        )
        with self.assertRaises(NotFound):
            self._create(missing)
        self.assertEqual(self.dispatcher.events, [])

    def test_get_handle_rejects_unknown_and_expired(self) -> None:
        result = self._create()
        handle_id = result.handle.consent_handle_id

        fetched = get_consent_handle(self.partition, handle_id, now=self.now + timedelta(minutes=5))
        self.assertEqual(fetched.consent_handle_id, handle_id)
        self.assertEqual(as_utc(fetched.expires_at), self.now + timedelta(minutes=15))

        with self.assertRaises(ValidationError):
            get_consent_handle(self.partition, handle_id, now=self.now + timedelta(minutes=15, seconds=1))
        with self.assertRaises(NotFound):
            get_consent_handle(self.partition, "missing")

    def test_handle_can_be_consumed_exactly_once(self) -> None:
        handle_id = self._create().handle.consent_handle_id

        with self.partition.session() as db:
            consume_consent_handle(db, handle_id, self.now + timedelta(minutes=1))
        self.assertEqual(self._status(handle_id), ConsentHandleStatus.CONSUMED)

        with self.assertRaises(ConflictError):
            with self.partition.session() as db:
                consume_consent_handle(db, handle_id, self.now + timedelta(minutes=2))

    def test_expired_handle_cannot_be_consumed(self) -> None:
        handle_id = self._create().handle.consent_handle_id

        with self.assertRaises(ConflictError):
            with self.partition.session() as db:
                consume_consent_handle(db, handle_id, self.now + timedelta(minutes=20))
        self.assertEqual(self._status(handle_id), ConsentHandleStatus.PENDING)


if __name__ == "__main__":
    unittest.main()
