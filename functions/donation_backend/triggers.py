"""
Translates document changes on the watched collections into notification events.

Invoked by the Firestore triggers in main.py and, when the API runs without
them, by the routes right after their own writes. Either way the input is the
same before/after snapshot pair, and at most one event comes out of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from donation_backend.authz import owner_id
from donation_backend.dispatcher import DispatchResult, NotificationDispatcher
from donation_backend.errors import ServiceError
from donation_backend.events import (
    DonationCreated,
    DonationStatusChanged,
    Event,
    IssueCreated,
    IssueUpdated,
    OrganizationRegistered,
    OrganizationStatusChanged,
    SupportRequestCreated,
    SupportRequestUpdated,
    TicketUpdate,
)
from donation_backend.store import DirectoryStore
from shared.firebase_constants import (
    DONATIONS_COLLECTION,
    ISSUES_COLLECTION,
    SUPPORT_REQUESTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import Role, UserStatus

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown user"


@dataclass(frozen=True)
class DocumentChange:
    collection: str
    document_id: str
    before: Optional[dict]
    after: Optional[dict]

    @property
    def is_create(self) -> bool:
        return self.before is None and self.after is not None


def _changed(before: dict, after: dict, key: str) -> bool:
    return before.get(key) != after.get(key)


def _email_for(store: DirectoryStore, data: dict, email_field: str) -> str:
    email = data.get(email_field)
    if email:
        return email
    user_id = owner_id(data)
    if user_id:
        user = store.get(USERS_COLLECTION, user_id)
        if user and user.data.get("email"):
            return user.data["email"]
    return UNKNOWN_EMAIL


def _ticket_update(before: dict, after: dict) -> Optional[TicketUpdate]:
    # A status change wins when the same write also adds a response.
    if after.get("status") and _changed(before, after, "status"):
        return TicketUpdate.STATUS
    if after.get("response") and _changed(before, after, "response"):
        return TicketUpdate.RESPONSE
    return None


def _donation_event(change: DocumentChange, store: DirectoryStore) -> Optional[Event]:
    after = change.after
    if change.is_create:
        return DonationCreated(
            donation_id=change.document_id,
            donor_email=_email_for(store, after, "createdBy"),
            item=after.get("item") or "",
            category=after.get("category") or "Other",
            quantity=after.get("quantity") or 1,
        )
    if after.get("status") and _changed(change.before, after, "status"):
        owner = owner_id(after)
        if not owner:
            logger.warning("Donation %s has no owner", change.document_id)
            return None
        return DonationStatusChanged(
            donation_id=change.document_id,
            owner_id=owner,
            category=after.get("category") or "Other",
            quantity=after.get("quantity") or 1,
            status=after.get("status"),
        )
    return None


def _support_event(change: DocumentChange, store: DirectoryStore) -> Optional[Event]:
    after = change.after
    if change.is_create:
        return SupportRequestCreated(
            request_id=change.document_id,
            submitter_email=_email_for(store, after, "email"),
            message=after.get("message") or "",
        )
    update = _ticket_update(change.before, after)
    if update is None or not after.get("userId"):
        return None
    return SupportRequestUpdated(
        request_id=change.document_id,
        submitter_id=after["userId"],
        update=update,
        status=after.get("status"),
        response=after.get("response"),
    )


def _issue_event(change: DocumentChange, store: DirectoryStore) -> Optional[Event]:
    after = change.after
    if change.is_create:
        return IssueCreated(
            issue_id=change.document_id,
            reporter_email=_email_for(store, after, "email"),
            description=after.get("description") or "",
        )
    update = _ticket_update(change.before, after)
    if update is None or not after.get("userId"):
        return None
    return IssueUpdated(
        issue_id=change.document_id,
        submitter_id=after["userId"],
        update=update,
        status=after.get("status"),
        response=after.get("response"),
    )


def _user_event(change: DocumentChange, store: DirectoryStore) -> Optional[Event]:
    after = change.after
    if after.get("role") != Role.ORGANIZATION.value:
        return None
    if change.is_create:
        if after.get("status") != UserStatus.PENDING.value:
            return None
        return OrganizationRegistered(
            user_id=change.document_id, email=after.get("email") or UNKNOWN_EMAIL
        )
    if not after.get("status") or not _changed(change.before, after, "status"):
        return None
    return OrganizationStatusChanged(
        user_id=change.document_id, status=after.get("status")
    )


_RESOLVERS = {
    DONATIONS_COLLECTION: _donation_event,
    SUPPORT_REQUESTS_COLLECTION: _support_event,
    ISSUES_COLLECTION: _issue_event,
    USERS_COLLECTION: _user_event,
}


def resolve_event(change: DocumentChange, store: DirectoryStore) -> Optional[Event]:
    """
    Returns the single event a change should fire, or None.

    Deletes and updates that touch no watched field fire nothing, so replaying
    the same before/after pair is harmless.
    """
    if change.after is None:
        return None
    resolver = _RESOLVERS.get(change.collection)
    if resolver is None:
        return None
    return resolver(change, store)


def handle_change(
    change: DocumentChange,
    store: DirectoryStore,
    dispatcher: NotificationDispatcher,
) -> Optional[DispatchResult]:
    try:
        event = resolve_event(change, store)
    except ServiceError as e:
        logger.error(
            "Could not resolve event for %s/%s: %s",
            change.collection,
            change.document_id,
            e.message,
        )
        return None
    if event is None:
        logger.debug(
            "No notification for change to %s/%s", change.collection, change.document_id
        )
        return None
    return dispatcher.dispatch(event)
