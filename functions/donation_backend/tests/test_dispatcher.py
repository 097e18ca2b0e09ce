import time
import unittest
from unittest.mock import MagicMock

from donation_backend.dispatcher import NotificationDispatcher
from donation_backend.errors import Upstream
from donation_backend.events import (
    DirectMessage,
    DonationCreated,
    DonationStatusChanged,
    SupportRequestCreated,
)
from donation_backend.push import InMemoryPushChannel
from donation_backend.store import InMemoryDirectoryStore
from shared.firebase_constants import NOTIFICATIONS_COLLECTION, USERS_COLLECTION


def _donation_created():
    return DonationCreated(
        donation_id="d1",
        donor_email="donor@example.com",
        item="Rice",
        category="Food",
        quantity=5,
    )


class NotificationDispatcherTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDirectoryStore()
        self.push = InMemoryPushChannel()
        self.dispatcher = NotificationDispatcher(self.store, self.push)

    def _add_user(self, uid, role="Donor", enabled=True, token=None):
        data = {"email": f"{uid}@example.com", "role": role, "notificationsEnabled": enabled}
        if token is not None:
            data["fcmToken"] = token
        self.store.set(USERS_COLLECTION, uid, data)

    def _records(self):
        return [doc.data for doc in self.store.query(NOTIFICATIONS_COLLECTION)]

    def test_admin_fan_out_skips_ineligible_administrators(self):
        self._add_user("a1", role="Administrator", token="t1")
        self._add_user("a2", role="Administrator", token="t2")
        self._add_user("a3", role="Administrator", enabled=False, token="t3")
        self._add_user("a4", role="Administrator")
        self._add_user("donor", token="t5")

        result = self.dispatcher.dispatch(_donation_created())

        self.assertEqual(result.type, "donation_request")
        self.assertEqual(sorted(result.recipients), ["a1", "a2"])
        self.assertEqual(sorted(result.skipped), ["a3", "a4"])
        self.assertEqual(sorted(self.push.tokens_sent()), ["t1", "t2"])
        self.assertEqual(self.push.multicast_calls, 1)
        self.assertEqual(sorted(r["recipientId"] for r in self._records()), ["a1", "a2"])

    def test_records_written_even_when_push_fails(self):
        self._add_user("a1", role="Administrator", token="good")
        self._add_user("a2", role="Administrator", token="stale")
        self.push.failing_tokens.add("stale")

        result = self.dispatcher.dispatch(_donation_created())

        self.assertEqual(result.delivered, ["a1"])
        self.assertEqual(result.failed, ["a2"])
        self.assertEqual(len(result.notification_ids), 2)
        self.assertEqual(len(self._records()), 2)

    def test_record_shape(self):
        self._add_user("donor", token="t1")

        self.dispatcher.dispatch(
            DonationStatusChanged(
                donation_id="d1",
                owner_id="donor",
                category="Food",
                quantity=5,
                status="delivered",
            )
        )

        (record,) = self._records()
        self.assertEqual(record["recipientId"], "donor")
        self.assertEqual(record["title"], "Donation Status Updated")
        self.assertEqual(record["message"], "Your donation of 5 Food has been delivered.")
        self.assertEqual(record["type"], "donation_status_change")
        self.assertEqual(record["donationId"], "d1")
        self.assertFalse(record["read"])
        self.assertFalse(record["starred"])
        self.assertIsNotNone(record["timestamp"])

    def test_missing_recipient_is_skipped(self):
        result = self.dispatcher.dispatch(
            DirectMessage(recipient_id="ghost", title="Hi", body="There")
        )

        self.assertEqual(result.skipped, ["ghost"])
        self.assertEqual(result.recipients, [])
        self.assertEqual(self.push.sent, [])
        self.assertEqual(self._records(), [])

    def test_no_administrators_is_a_no_op(self):
        result = self.dispatcher.dispatch(
            SupportRequestCreated(
                request_id="s1", submitter_email="x@example.com", message="Help"
            )
        )
        self.assertEqual(result.recipients, [])
        self.assertEqual(self._records(), [])

    def test_per_recipient_delivery_without_multicast(self):
        self.push.supports_multicast = False
        self._add_user("a1", role="Administrator", token="t1")
        self._add_user("a2", role="Administrator", token="t2")

        result = self.dispatcher.dispatch(_donation_created())

        self.assertEqual(self.push.multicast_calls, 0)
        self.assertEqual(sorted(result.delivered), ["a1", "a2"])

    def test_slow_push_times_out_without_blocking_records(self):
        self.push.supports_multicast = False
        self.push.slow_tokens["slow"] = 0.5
        dispatcher = NotificationDispatcher(
            self.store, self.push, push_timeout_seconds=0.05
        )
        self._add_user("a1", role="Administrator", token="fast")
        self._add_user("a2", role="Administrator", token="slow")

        result = dispatcher.dispatch(_donation_created())

        self.assertEqual(result.delivered, ["a1"])
        self.assertEqual(result.failed, ["a2"])
        self.assertEqual(len(self._records()), 2)

    def test_slow_multicast_times_out_without_blocking_records(self):
        self.push.slow_tokens["slow"] = 1.0
        dispatcher = NotificationDispatcher(
            self.store, self.push, push_timeout_seconds=0.05
        )
        self._add_user("a1", role="Administrator", token="fast")
        self._add_user("a2", role="Administrator", token="slow")

        started = time.monotonic()
        result = dispatcher.dispatch(_donation_created())
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 0.5)
        self.assertEqual(result.delivered, [])
        self.assertEqual(sorted(result.failed), ["a1", "a2"])
        self.assertEqual(len(result.notification_ids), 2)
        self.assertEqual(len(self._records()), 2)

    def test_multicast_exception_still_records(self):
        self._add_user("a1", role="Administrator", token="t1")
        push = MagicMock()
        push.supports_multicast = True
        push.send_multicast.side_effect = RuntimeError("FCM unavailable")
        dispatcher = NotificationDispatcher(self.store, push)

        result = dispatcher.dispatch(_donation_created())

        self.assertEqual(result.failed, ["a1"])
        self.assertEqual(len(self._records()), 1)

    def test_record_write_failure_is_skipped(self):
        self._add_user("a1", role="Administrator", token="t1")
        store = MagicMock(wraps=self.store)
        store.add.side_effect = Upstream("Firestore write failed")
        dispatcher = NotificationDispatcher(store, self.push)

        result = dispatcher.dispatch(_donation_created())

        self.assertEqual(result.delivered, ["a1"])
        self.assertEqual(result.notification_ids, [])

    def test_push_payload_carries_type_and_string_data(self):
        self._add_user("a1", role="Administrator", token="t1")

        self.dispatcher.dispatch(_donation_created())

        (_, message), = self.push.sent
        self.assertEqual(message.data["type"], "donation_request")
        self.assertEqual(message.string_data()["quantity"], "5")


if __name__ == "__main__":
    unittest.main()
