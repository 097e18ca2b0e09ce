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

# Cloud functions for the donation backend - notification fan-out on Firestore writes.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from typing import Optional

# Third-party library imports
from firebase_admin import firestore
from firebase_functions import logger, options
from firebase_functions.firestore_fn import (
    on_document_created,
    on_document_updated,
    Event,
    Change,
    DocumentSnapshot,
)

# Local application imports
from donation_backend import triggers
from donation_backend.config import get_settings
from donation_backend.dispatcher import DispatchResult, NotificationDispatcher
from donation_backend.firebase import get_firebase_app
from donation_backend.push import FcmPushChannel
from donation_backend.store import DirectoryStore, FirestoreDirectoryStore
from shared.firebase_constants import (
    DONATIONS_COLLECTION,
    ISSUES_COLLECTION,
    SUPPORT_REQUESTS_COLLECTION,
    USERS_COLLECTION,
)

NOTIFICATION_FUNCTION_TIMEOUT = 60

get_firebase_app(get_settings())


def _snapshot_data(snapshot: Optional[DocumentSnapshot]) -> Optional[dict]:
    if snapshot is None or not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def _handle_document_change(
    collection: str,
    document_id: str,
    before: Optional[DocumentSnapshot],
    after: Optional[DocumentSnapshot],
    store: Optional[DirectoryStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Optional[DispatchResult]:
    """
    Runs the change trigger adapter for one Firestore write.

    Notification failures are logged and never fail the function, so the
    platform does not retry the write's fan-out.
    """
    change = triggers.DocumentChange(
        collection=collection,
        document_id=document_id,
        before=_snapshot_data(before),
        after=_snapshot_data(after),
    )
    try:
        if store is None:
            store = FirestoreDirectoryStore(firestore.client())
        if dispatcher is None:
            settings = get_settings()
            dispatcher = NotificationDispatcher(
                store,
                FcmPushChannel(),
                push_timeout_seconds=settings.push_timeout_seconds,
                max_workers=settings.push_max_workers,
            )
        result = triggers.handle_change(change, store, dispatcher)
    except Exception as e:
        logger.error(
            f"Error sending notification for {collection}/{document_id}: {e}"
        )
        return None

    if result is not None:
        logger.info(
            f"{result.type} for {collection}/{document_id}: "
            f"{len(result.delivered)} delivered, {len(result.failed)} failed, "
            f"{len(result.notification_ids)} stored"
        )
    return result


@on_document_created(
    document=DONATIONS_COLLECTION + "/{donationId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_donation_created(event: Event[Optional[DocumentSnapshot]]) -> None:
    """Notifies Administrators of a new donation request."""
    _handle_document_change(
        DONATIONS_COLLECTION, event.params["donationId"], None, event.data
    )


@on_document_updated(
    document=DONATIONS_COLLECTION + "/{donationId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_donation_updated(event: Event[Change[Optional[DocumentSnapshot]]]) -> None:
    """Notifies the donation's owner when its status changes."""
    _handle_document_change(
        DONATIONS_COLLECTION,
        event.params["donationId"],
        event.data.before,
        event.data.after,
    )


@on_document_created(
    document=USERS_COLLECTION + "/{userId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_user_created(event: Event[Optional[DocumentSnapshot]]) -> None:
    """Notifies Administrators of a pending organization registration."""
    _handle_document_change(USERS_COLLECTION, event.params["userId"], None, event.data)


@on_document_updated(
    document=USERS_COLLECTION + "/{userId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_user_updated(event: Event[Change[Optional[DocumentSnapshot]]]) -> None:
    """Notifies an organization when an Administrator changes its status."""
    _handle_document_change(
        USERS_COLLECTION, event.params["userId"], event.data.before, event.data.after
    )


@on_document_created(
    document=SUPPORT_REQUESTS_COLLECTION + "/{supportId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_support_request_created(event: Event[Optional[DocumentSnapshot]]) -> None:
    _handle_document_change(
        SUPPORT_REQUESTS_COLLECTION, event.params["supportId"], None, event.data
    )


@on_document_updated(
    document=SUPPORT_REQUESTS_COLLECTION + "/{supportId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_support_request_updated(
    event: Event[Change[Optional[DocumentSnapshot]]],
) -> None:
    _handle_document_change(
        SUPPORT_REQUESTS_COLLECTION,
        event.params["supportId"],
        event.data.before,
        event.data.after,
    )


@on_document_created(
    document=ISSUES_COLLECTION + "/{issueId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_issue_created(event: Event[Optional[DocumentSnapshot]]) -> None:
    _handle_document_change(ISSUES_COLLECTION, event.params["issueId"], None, event.data)


@on_document_updated(
    document=ISSUES_COLLECTION + "/{issueId}",
    timeout_sec=NOTIFICATION_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def on_issue_updated(event: Event[Change[Optional[DocumentSnapshot]]]) -> None:
    _handle_document_change(
        ISSUES_COLLECTION,
        event.params["issueId"],
        event.data.before,
        event.data.after,
    )
