"""
HTTP routes for the donation backend API.

Every route authenticates through `get_principal` and runs its access checks
through `donation_backend.authz`. Writes to watched collections are passed to
the change trigger adapter so notifications fan out the same way they do under
the deployed Firestore triggers.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query

from donation_backend import authz, triggers
from donation_backend.authz import Principal
from donation_backend.config import Settings, get_settings
from donation_backend.dependencies import (
    get_directory_store,
    get_dispatcher,
    get_identity_provider,
    get_principal,
    get_storage_client,
)
from donation_backend.dispatcher import NotificationDispatcher
from donation_backend.errors import InvalidArgument, NotFound, PermissionDenied
from donation_backend.events import DirectMessage, DropoffReassigned, Event
from donation_backend.identity import IdentityProvider
from donation_backend.schemas import (
    CreatedResponse,
    DonationCreateRequest,
    DonationUpdateRequest,
    DropoffReassignmentRequest,
    ImageUploadRequest,
    ImageUploadResponse,
    IssueCreate,
    MessageResponse,
    ProfilePictureRequest,
    ProfilePictureResponse,
    SendNotificationRequest,
    SendNotificationResponse,
    StarRequest,
    SupportRequestCreate,
    TicketResponseRequest,
    UserCreateRequest,
    UserUpdateRequest,
)
from donation_backend.storage import StorageClient
from donation_backend.store import DirectoryStore, Filter, utcnow
from shared.constants import DONATION_OWNERSHIP_FIELDS, IMAGE_FOLDERS, MAX_IMAGE_BYTES
from shared.firebase_constants import (
    DONATIONS_COLLECTION,
    ISSUES_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    SUPPORT_REQUESTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import (
    DonationStatus,
    IssueStatus,
    Role,
    SupportStatus,
    UserStatus,
    parse_role,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class ChangeEmitter:
    """Feeds route mutations to the trigger adapter when running inline."""

    def __init__(
        self,
        store: DirectoryStore,
        dispatcher: NotificationDispatcher,
        enabled: bool,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.enabled = enabled

    def emit(
        self,
        collection: str,
        doc_id: str,
        before: Optional[dict],
        after: Optional[dict],
    ) -> None:
        if not self.enabled:
            return
        change = triggers.DocumentChange(collection, doc_id, before, after)
        try:
            triggers.handle_change(change, self.store, self.dispatcher)
        except Exception:
            logger.exception(
                "Notification fan-out failed for %s/%s", collection, doc_id
            )


def get_change_emitter(
    store: DirectoryStore = Depends(get_directory_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> ChangeEmitter:
    return ChangeEmitter(store, dispatcher, settings.inline_triggers)


def _notify(dispatcher: NotificationDispatcher, event: Event):
    try:
        return dispatcher.dispatch(event)
    except Exception:
        logger.exception("Notification fan-out failed for %s", type(event).__name__)
        return None


def _decode_image(data: str) -> bytes:
    # Clients sometimes send a data URL rather than bare base64.
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgument("Image data must be valid base64") from e
    if not image_bytes:
        raise InvalidArgument("Image data must not be empty")
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise InvalidArgument("Image exceeds max size")
    return image_bytes


def _image_path(folder: str, uid: str) -> str:
    return f"{folder}/{uid}_{uuid4().hex}.jpg"


# Users


@router.get("/users/{user_id}")
def get_user(
    user_id: str,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    authz.require_self_or_admin(principal, user_id)
    doc = store.get(USERS_COLLECTION, user_id)
    if not doc:
        raise NotFound("User not found")
    return doc.to_json()


@router.post("/users")
def create_user(
    payload: UserCreateRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    if principal.uid != payload.uid:
        raise PermissionDenied("Forbidden: Can only create own user")
    role = parse_role(payload.role)
    if role is None:
        raise InvalidArgument("Invalid role")
    if store.get(USERS_COLLECTION, payload.uid):
        raise InvalidArgument("User already exists")

    user_data = {
        "email": payload.email,
        "role": role.value,
        "status": (
            UserStatus.PENDING.value
            if role == Role.ORGANIZATION
            else UserStatus.APPROVED.value
        ),
        "createdAt": utcnow(),
        "notificationsEnabled": True,
        "emailNotifications": True,
    }
    store.set(USERS_COLLECTION, payload.uid, user_data)
    emitter.emit(USERS_COLLECTION, payload.uid, None, user_data)
    return {"id": payload.uid, **user_data, "message": "User created successfully"}


@router.put("/users/{user_id}", response_model=MessageResponse)
def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    updates = payload.model_dump(exclude_unset=True)
    updates.pop("id", None)
    authz.require_profile_update_allowed(principal, user_id, updates)

    if "status" in updates and updates["status"] not in set(UserStatus):
        raise InvalidArgument(
            "Invalid status. Must be pending, approved, or rejected"
        )
    if "role" in updates and parse_role(updates["role"]) is None:
        raise InvalidArgument("Invalid role")

    before = store.get(USERS_COLLECTION, user_id)
    if not before:
        raise NotFound("User not found")

    updates["updatedAt"] = utcnow()
    store.update(USERS_COLLECTION, user_id, updates)
    emitter.emit(USERS_COLLECTION, user_id, before.data, {**before.data, **updates})
    return MessageResponse(message="Profile updated successfully")


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
):
    authz.require_role(principal, Role.ADMINISTRATOR)
    if not store.get(USERS_COLLECTION, user_id):
        raise NotFound("User not found")
    store.delete(USERS_COLLECTION, user_id)
    identity_provider.delete_user(user_id)
    return MessageResponse(message="User deleted successfully")


@router.post(
    "/users/{user_id}/profile-picture", response_model=ProfilePictureResponse
)
def upload_profile_picture(
    user_id: str,
    payload: ProfilePictureRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    storage: StorageClient = Depends(get_storage_client),
):
    if principal.uid != user_id:
        raise PermissionDenied("Forbidden: Can only upload own profile picture")
    image_bytes = _decode_image(payload.imageBase64)
    if not store.get(USERS_COLLECTION, user_id):
        raise NotFound("User not found")

    url = storage.upload_bytes(
        _image_path(IMAGE_FOLDERS["profile"], user_id), image_bytes, "image/jpeg"
    )
    store.update(USERS_COLLECTION, user_id, {"profileImageUrl": url})
    return ProfilePictureResponse(profileImageUrl=url)


# Donations


@router.get("/donations")
def list_donations(
    orgId: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    filters = authz.donation_filters(principal, orgId)
    if search:
        filters += [
            Filter("item", ">=", search),
            Filter("item", "<=", search + "\uf8ff"),
        ]
    docs = store.query(
        DONATIONS_COLLECTION, filters=filters, order_by="timestamp", descending=True
    )
    return [doc.to_json() for doc in docs]


@router.post("/donations", response_model=CreatedResponse)
def create_donation(
    payload: DonationCreateRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    authz.require_role(principal, Role.DONOR, Role.ORGANIZATION)

    donation = payload.model_dump()
    donation.update(
        {
            "status": DonationStatus.PENDING.value,
            "timestamp": utcnow(),
            "createdBy": principal.email,
        }
    )
    # Exactly one owner field is ever set.
    if principal.role == Role.ORGANIZATION:
        donation["orgId"] = principal.uid
    else:
        donation["userId"] = principal.uid

    donation_id = store.add(DONATIONS_COLLECTION, donation)
    emitter.emit(DONATIONS_COLLECTION, donation_id, None, donation)
    return CreatedResponse(id=donation_id, message="Donation created")


@router.put("/donations/{donation_id}", response_model=MessageResponse)
def update_donation(
    donation_id: str,
    payload: DonationUpdateRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    doc = store.get(DONATIONS_COLLECTION, donation_id)
    if not doc:
        raise NotFound("Donation not found")
    authz.require_owner_or_admin(principal, doc.data)

    updates = payload.model_dump(exclude_unset=True)
    updates.pop("id", None)
    if any(key in updates for key in DONATION_OWNERSHIP_FIELDS):
        raise InvalidArgument("Donation ownership fields cannot be changed")
    if "status" in updates and updates["status"] not in set(DonationStatus):
        raise InvalidArgument("Invalid donation status")
    if not updates:
        raise InvalidArgument("No fields to update")

    updates["lastEditedAt"] = utcnow()
    updates["lastEditedBy"] = principal.email
    store.update(DONATIONS_COLLECTION, donation_id, updates)
    emitter.emit(DONATIONS_COLLECTION, donation_id, doc.data, {**doc.data, **updates})
    return MessageResponse(message="Donation updated successfully")


@router.delete("/donations/{donation_id}", response_model=MessageResponse)
def delete_donation(
    donation_id: str,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    doc = store.get(DONATIONS_COLLECTION, donation_id)
    if not doc:
        raise NotFound("Donation not found")
    authz.require_owner_or_admin(principal, doc.data)
    store.delete(DONATIONS_COLLECTION, donation_id)
    return MessageResponse(message="Donation deleted successfully")


@router.post("/donations/{donation_id}/dropoff", response_model=MessageResponse)
def reassign_dropoff(
    donation_id: str,
    payload: DropoffReassignmentRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Proposes a new drop-off location. The donor is notified and is expected
    to approve or reject it; until then `requiresAction` stays true.
    """
    authz.require_dropoff_reassignment(principal)
    doc = store.get(DONATIONS_COLLECTION, donation_id)
    if not doc:
        raise NotFound("Donation not found")
    donor_id = doc.data.get("userId")
    if not donor_id:
        raise InvalidArgument("Donation has no donor to notify")

    reassignment = {
        "dropoffLocation": payload.dropoffLocation,
        "dropoffCoords": (
            payload.dropoffCoords.model_dump() if payload.dropoffCoords else None
        ),
        "reason": payload.reason,
        "requestedBy": principal.uid,
        "requestedAt": utcnow(),
        "requiresAction": True,
    }
    store.update(
        DONATIONS_COLLECTION,
        donation_id,
        {
            "dropoffReassignment": reassignment,
            "lastEditedAt": utcnow(),
            "lastEditedBy": principal.email,
        },
    )
    _notify(
        dispatcher,
        DropoffReassigned(
            donation_id=donation_id,
            donor_id=donor_id,
            item=doc.data.get("item") or "",
            dropoff_location=payload.dropoffLocation,
        ),
    )
    return MessageResponse(message="Drop-off reassignment sent to donor")


# Support requests and issues


@router.get("/support")
def list_support_requests(
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    docs = store.query(
        SUPPORT_REQUESTS_COLLECTION,
        filters=authz.ticket_filters(principal),
        order_by="timestamp",
        descending=True,
    )
    return [doc.to_json() for doc in docs]


@router.post("/support")
def create_support_request(
    payload: SupportRequestCreate,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    support_request = {
        "name": payload.name,
        "email": payload.email,
        "message": payload.message,
        "userId": principal.uid,
        "timestamp": utcnow(),
        "status": SupportStatus.PENDING.value,
    }
    request_id = store.add(SUPPORT_REQUESTS_COLLECTION, support_request)
    emitter.emit(SUPPORT_REQUESTS_COLLECTION, request_id, None, support_request)
    return {"id": request_id, **support_request}


def _respond_to_ticket(
    collection: str,
    ticket_id: str,
    payload: TicketResponseRequest,
    valid_statuses: set,
    principal: Principal,
    store: DirectoryStore,
    emitter: ChangeEmitter,
    label: str,
) -> MessageResponse:
    authz.require_role(principal, Role.ADMINISTRATOR)
    if not payload.response and not payload.status:
        raise InvalidArgument("Response or status required")
    if payload.status and payload.status not in valid_statuses:
        raise InvalidArgument("Invalid status")

    doc = store.get(collection, ticket_id)
    if not doc:
        raise NotFound(f"{label} not found")

    updates = {}
    if payload.response:
        updates["response"] = payload.response
    if payload.status:
        updates["status"] = payload.status
    updates["updatedAt"] = utcnow()
    store.update(collection, ticket_id, updates)
    emitter.emit(collection, ticket_id, doc.data, {**doc.data, **updates})
    return MessageResponse(message=f"{label} updated")


@router.put("/support/{request_id}/respond", response_model=MessageResponse)
def respond_to_support_request(
    request_id: str,
    payload: TicketResponseRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    return _respond_to_ticket(
        SUPPORT_REQUESTS_COLLECTION,
        request_id,
        payload,
        set(SupportStatus),
        principal,
        store,
        emitter,
        label="Support request",
    )


@router.get("/support/issues")
def list_issues(
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    docs = store.query(
        ISSUES_COLLECTION,
        filters=authz.ticket_filters(principal),
        order_by="timestamp",
        descending=True,
    )
    return [doc.to_json() for doc in docs]


@router.post("/support/issues")
def create_issue(
    payload: IssueCreate,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    issue = {
        "description": payload.description,
        "imageUrl": payload.imageUrl,
        "userId": principal.uid,
        "email": principal.email,
        "timestamp": utcnow(),
        "status": IssueStatus.UNRESOLVED.value,
    }
    issue_id = store.add(ISSUES_COLLECTION, issue)
    emitter.emit(ISSUES_COLLECTION, issue_id, None, issue)
    return {"id": issue_id, **issue}


@router.put("/support/issues/{issue_id}/respond", response_model=MessageResponse)
def respond_to_issue(
    issue_id: str,
    payload: TicketResponseRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    emitter: ChangeEmitter = Depends(get_change_emitter),
):
    return _respond_to_ticket(
        ISSUES_COLLECTION,
        issue_id,
        payload,
        set(IssueStatus),
        principal,
        store,
        emitter,
        label="Issue",
    )


# Notifications


@router.get("/notifications")
def list_notifications(
    recipientId: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    recipient_id = recipientId or principal.uid
    authz.require_notification_read(principal, recipient_id)

    filters = [Filter("recipientId", "==", recipient_id)]
    if startDate:
        if startDate.tzinfo is None:
            startDate = startDate.replace(tzinfo=timezone.utc)
        filters.append(Filter("timestamp", ">=", startDate))
    docs = store.query(
        NOTIFICATIONS_COLLECTION,
        filters=filters,
        order_by="timestamp",
        descending=True,
    )
    return [doc.to_json() for doc in docs]


def _flag_notification(
    notification_id: str,
    updates: dict,
    principal: Principal,
    store: DirectoryStore,
) -> None:
    doc = store.get(NOTIFICATIONS_COLLECTION, notification_id)
    if not doc:
        raise NotFound("Notification not found")
    authz.require_notification_owner(principal, doc.data)
    store.update(NOTIFICATIONS_COLLECTION, notification_id, updates)


@router.put("/notifications/{notification_id}/read", response_model=MessageResponse)
def mark_notification_read(
    notification_id: str,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    _flag_notification(notification_id, {"read": True}, principal, store)
    return MessageResponse(message="Notification marked as read")


@router.put("/notifications/{notification_id}/star", response_model=MessageResponse)
def star_notification(
    notification_id: str,
    payload: StarRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
):
    _flag_notification(notification_id, {"starred": payload.starred}, principal, store)
    return MessageResponse(
        message="Notification starred" if payload.starred else "Notification unstarred"
    )


@router.post("/notifications/send", response_model=SendNotificationResponse)
def send_notification(
    payload: SendNotificationRequest,
    principal: Principal = Depends(get_principal),
    store: DirectoryStore = Depends(get_directory_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    authz.require_role(principal, Role.ADMINISTRATOR)
    if not store.get(USERS_COLLECTION, payload.recipientId):
        raise NotFound("User not found")

    result = _notify(
        dispatcher,
        DirectMessage(
            recipient_id=payload.recipientId, title=payload.title, body=payload.body
        ),
    )
    notification_ids = result.notification_ids if result else []
    return SendNotificationResponse(
        message=(
            "Notification sent and stored"
            if notification_ids
            else "Recipient has notifications disabled or no device token"
        ),
        delivered=bool(result) and payload.recipientId in result.delivered,
        notificationIds=notification_ids,
    )


# Images


@router.post("/upload-image/upload", response_model=ImageUploadResponse)
def upload_image(
    payload: ImageUploadRequest,
    principal: Principal = Depends(get_principal),
    storage: StorageClient = Depends(get_storage_client),
):
    image_bytes = _decode_image(payload.base64Image)
    url = storage.upload_bytes(
        _image_path(IMAGE_FOLDERS[payload.type], principal.uid),
        image_bytes,
        "image/jpeg",
    )
    return ImageUploadResponse(imageUrl=url)
