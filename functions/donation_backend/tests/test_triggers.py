import unittest

from donation_backend.dispatcher import NotificationDispatcher
from donation_backend.events import (
    DonationCreated,
    DonationStatusChanged,
    IssueCreated,
    IssueUpdated,
    OrganizationRegistered,
    OrganizationStatusChanged,
    SupportRequestUpdated,
    TicketUpdate,
)
from donation_backend.push import InMemoryPushChannel
from donation_backend.store import InMemoryDirectoryStore
from donation_backend.triggers import DocumentChange, handle_change, resolve_event
from shared.firebase_constants import (
    DONATIONS_COLLECTION,
    ISSUES_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    SUPPORT_REQUESTS_COLLECTION,
    USERS_COLLECTION,
)

DONATION = {
    "item": "Rice",
    "category": "Food",
    "quantity": 5,
    "status": "pending",
    "userId": "donor1",
}


class ResolveEventTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDirectoryStore()
        self.store.set(USERS_COLLECTION, "donor1", {"email": "donor@example.com"})

    def test_donation_create_falls_back_to_owner_email(self):
        event = resolve_event(
            DocumentChange(DONATIONS_COLLECTION, "d1", None, DONATION), self.store
        )
        self.assertEqual(
            event,
            DonationCreated(
                donation_id="d1",
                donor_email="donor@example.com",
                item="Rice",
                category="Food",
                quantity=5,
            ),
        )

    def test_donation_create_without_known_email(self):
        event = resolve_event(
            DocumentChange(
                DONATIONS_COLLECTION, "d1", None, {**DONATION, "userId": "ghost"}
            ),
            self.store,
        )
        self.assertEqual(event.donor_email, "unknown user")

    def test_donation_status_change_targets_org_owner(self):
        before = {"category": "Food", "quantity": 2, "status": "pending", "orgId": "org1"}
        event = resolve_event(
            DocumentChange(
                DONATIONS_COLLECTION, "d1", before, {**before, "status": "picked up"}
            ),
            self.store,
        )
        self.assertEqual(
            event,
            DonationStatusChanged(
                donation_id="d1",
                owner_id="org1",
                category="Food",
                quantity=2,
                status="picked up",
            ),
        )

    def test_unchanged_status_fires_nothing(self):
        change = DocumentChange(
            DONATIONS_COLLECTION, "d1", DONATION, {**DONATION, "quantity": 7}
        )
        self.assertIsNone(resolve_event(change, self.store))

    def test_removed_status_fires_nothing(self):
        donation = {k: v for k, v in DONATION.items() if k != "status"}
        org = {"email": "org@example.com", "role": "Organization", "status": "approved"}
        changes = [
            DocumentChange(DONATIONS_COLLECTION, "d1", DONATION, donation),
            DocumentChange(
                DONATIONS_COLLECTION, "d1", DONATION, {**DONATION, "status": None}
            ),
            DocumentChange(
                USERS_COLLECTION, "org1", org, {k: v for k, v in org.items() if k != "status"}
            ),
        ]
        for change in changes:
            with self.subTest(collection=change.collection, after=change.after):
                self.assertIsNone(resolve_event(change, self.store))

    def test_delete_fires_nothing(self):
        change = DocumentChange(DONATIONS_COLLECTION, "d1", DONATION, None)
        self.assertIsNone(resolve_event(change, self.store))

    def test_unwatched_collection_fires_nothing(self):
        change = DocumentChange("reports", "r1", None, {"status": "new"})
        self.assertIsNone(resolve_event(change, self.store))

    def test_ticket_status_wins_over_response(self):
        before = {"userId": "donor1", "status": "pending", "message": "Help"}
        after = {**before, "status": "resolved", "response": "Done"}

        event = resolve_event(
            DocumentChange(SUPPORT_REQUESTS_COLLECTION, "s1", before, after), self.store
        )

        self.assertEqual(
            event,
            SupportRequestUpdated(
                request_id="s1",
                submitter_id="donor1",
                update=TicketUpdate.STATUS,
                status="resolved",
                response="Done",
            ),
        )

    def test_issue_response_only(self):
        before = {"userId": "donor1", "status": "unresolved", "description": "Bug"}
        after = {**before, "response": "Looking into it"}

        event = resolve_event(
            DocumentChange(ISSUES_COLLECTION, "i1", before, after), self.store
        )

        self.assertIsInstance(event, IssueUpdated)
        self.assertEqual(event.update, TicketUpdate.RESPONSE)

    def test_issue_create_uses_reporter_email(self):
        event = resolve_event(
            DocumentChange(
                ISSUES_COLLECTION,
                "i1",
                None,
                {"userId": "donor1", "email": "reporter@example.com", "description": "Bug"},
            ),
            self.store,
        )
        self.assertEqual(
            event,
            IssueCreated(
                issue_id="i1", reporter_email="reporter@example.com", description="Bug"
            ),
        )

    def test_ticket_without_submitter_fires_nothing(self):
        before = {"status": "pending"}
        change = DocumentChange(
            SUPPORT_REQUESTS_COLLECTION, "s1", before, {"status": "resolved"}
        )
        self.assertIsNone(resolve_event(change, self.store))

    def test_organization_registration_and_status(self):
        org = {"email": "org@example.com", "role": "Organization", "status": "pending"}
        created = resolve_event(
            DocumentChange(USERS_COLLECTION, "org1", None, org), self.store
        )
        self.assertEqual(
            created, OrganizationRegistered(user_id="org1", email="org@example.com")
        )

        updated = resolve_event(
            DocumentChange(USERS_COLLECTION, "org1", org, {**org, "status": "rejected"}),
            self.store,
        )
        self.assertEqual(
            updated, OrganizationStatusChanged(user_id="org1", status="rejected")
        )

    def test_donor_signup_fires_nothing(self):
        donor = {"email": "d@example.com", "role": "Donor", "status": "approved"}
        change = DocumentChange(USERS_COLLECTION, "u1", None, donor)
        self.assertIsNone(resolve_event(change, self.store))


class HandleChangeTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDirectoryStore()
        self.push = InMemoryPushChannel()
        self.dispatcher = NotificationDispatcher(self.store, self.push)
        self.store.set(
            USERS_COLLECTION,
            "donor1",
            {"email": "donor@example.com", "notificationsEnabled": True, "fcmToken": "t1"},
        )

    def test_replaying_a_change_without_status_delta_is_harmless(self):
        accepted = {**DONATION, "status": "accepted"}
        change = DocumentChange(DONATIONS_COLLECTION, "d1", DONATION, accepted)

        handle_change(change, self.store, self.dispatcher)
        replay = DocumentChange(DONATIONS_COLLECTION, "d1", accepted, accepted)
        self.assertIsNone(handle_change(replay, self.store, self.dispatcher))

        self.assertEqual(len(self.store.query(NOTIFICATIONS_COLLECTION)), 1)
        self.assertEqual(self.push.tokens_sent(), ["t1"])

    def test_no_event_returns_none(self):
        change = DocumentChange(DONATIONS_COLLECTION, "d1", DONATION, dict(DONATION))
        self.assertIsNone(handle_change(change, self.store, self.dispatcher))


if __name__ == "__main__":
    unittest.main()
