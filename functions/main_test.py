# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
# Standard library imports
import unittest
from unittest.mock import MagicMock, patch

# Local application imports
# This patch must be applied before importing 'main'
with patch("firebase_admin.initialize_app") as mock_initialize_app:
    import main
from donation_backend.dispatcher import NotificationDispatcher
from donation_backend.push import InMemoryPushChannel
from donation_backend.store import InMemoryDirectoryStore
from shared.firebase_constants import (
    DONATIONS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    USERS_COLLECTION,
)


def _snapshot(data):
    snapshot = MagicMock()
    snapshot.exists = data is not None
    snapshot.to_dict.return_value = data
    return snapshot


class TestHandleDocumentChange(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDirectoryStore()
        self.push = InMemoryPushChannel()
        self.dispatcher = NotificationDispatcher(self.store, self.push)
        self.store.set(
            USERS_COLLECTION,
            "admin1",
            {
                "email": "admin@example.com",
                "role": "Administrator",
                "notificationsEnabled": True,
                "fcmToken": "admin-token",
            },
        )
        self.store.set(
            USERS_COLLECTION,
            "donor1",
            {
                "email": "donor@example.com",
                "role": "Donor",
                "notificationsEnabled": True,
                "fcmToken": "donor-token",
            },
        )

    def test_donation_created_notifies_admins(self):
        after = {
            "item": "Rice",
            "category": "Food",
            "quantity": 5,
            "status": "pending",
            "userId": "donor1",
            "createdBy": "donor@example.com",
        }

        result = main._handle_document_change(
            DONATIONS_COLLECTION,
            "d1",
            None,
            _snapshot(after),
            store=self.store,
            dispatcher=self.dispatcher,
        )

        self.assertEqual(result.type, "donation_request")
        self.assertEqual(result.delivered, ["admin1"])
        self.assertEqual(self.push.tokens_sent(), ["admin-token"])
        records = self.store.query(NOTIFICATIONS_COLLECTION)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].data["recipientId"], "admin1")
        self.assertEqual(records[0].data["donationId"], "d1")

    def test_donation_status_change_notifies_owner(self):
        before = {"category": "Food", "quantity": 5, "status": "pending", "userId": "donor1"}
        after = {**before, "status": "accepted"}

        result = main._handle_document_change(
            DONATIONS_COLLECTION,
            "d1",
            _snapshot(before),
            _snapshot(after),
            store=self.store,
            dispatcher=self.dispatcher,
        )

        self.assertEqual(result.type, "donation_status_change")
        self.assertEqual(result.delivered, ["donor1"])
        self.assertEqual(self.push.sent[0][1].body, "Your donation of 5 Food has been accepted.")

    def test_unrelated_update_sends_nothing(self):
        before = {"category": "Food", "quantity": 5, "status": "pending", "userId": "donor1"}
        after = {**before, "description": "Two bags"}

        result = main._handle_document_change(
            DONATIONS_COLLECTION,
            "d1",
            _snapshot(before),
            _snapshot(after),
            store=self.store,
            dispatcher=self.dispatcher,
        )

        self.assertIsNone(result)
        self.assertEqual(self.push.sent, [])
        self.assertEqual(self.store.query(NOTIFICATIONS_COLLECTION), [])

    def test_deleted_snapshot_sends_nothing(self):
        result = main._handle_document_change(
            DONATIONS_COLLECTION,
            "d1",
            _snapshot({"status": "pending", "userId": "donor1"}),
            _snapshot(None),
            store=self.store,
            dispatcher=self.dispatcher,
        )

        self.assertIsNone(result)

    @patch("main.triggers.handle_change")
    def test_failures_are_logged_not_raised(self, mock_handle_change):
        mock_handle_change.side_effect = RuntimeError("boom")

        with patch("main.logger") as mock_logger:
            result = main._handle_document_change(
                DONATIONS_COLLECTION,
                "d1",
                None,
                _snapshot({"item": "Rice", "userId": "donor1"}),
                store=self.store,
                dispatcher=self.dispatcher,
            )

        self.assertIsNone(result)
        mock_logger.error.assert_called_once()
        self.assertIn("boom", mock_logger.error.call_args[0][0])


class TestInitialization(unittest.TestCase):

    def test_app_initialized_with_push_timeout(self):
        mock_initialize_app.assert_called_once()
        options = mock_initialize_app.call_args.kwargs["options"]
        self.assertEqual(
            options["httpTimeout"], main.get_settings().push_timeout_seconds
        )
        self.assertLess(options["httpTimeout"], main.NOTIFICATION_FUNCTION_TIMEOUT)


if __name__ == "__main__":
    unittest.main()
