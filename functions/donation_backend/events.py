"""
Domain events that fan out notifications, and the text rendered for each.

`Event` is a closed union: adding a kind means adding a dataclass here and a
branch to `render` and to `NotificationDispatcher._recipients`, both of which
end in `assert_never` so a missed branch shows up under a type checker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional, Union, assert_never

from shared.constants import PREVIEW_ELLIPSIS, PREVIEW_MAX_LENGTH
from shared.types import NotificationType


class TicketUpdate(StrEnum):
    STATUS = "status"
    RESPONSE = "response"


@dataclass(frozen=True)
class DonationCreated:
    donation_id: str
    donor_email: str
    item: str
    category: str
    quantity: int


@dataclass(frozen=True)
class DonationStatusChanged:
    donation_id: str
    owner_id: str
    category: str
    quantity: int
    status: str


@dataclass(frozen=True)
class SupportRequestCreated:
    request_id: str
    submitter_email: str
    message: str


@dataclass(frozen=True)
class SupportRequestUpdated:
    request_id: str
    submitter_id: str
    update: TicketUpdate
    status: Optional[str] = None
    response: Optional[str] = None


@dataclass(frozen=True)
class IssueCreated:
    issue_id: str
    reporter_email: str
    description: str


@dataclass(frozen=True)
class IssueUpdated:
    issue_id: str
    submitter_id: str
    update: TicketUpdate
    status: Optional[str] = None
    response: Optional[str] = None


@dataclass(frozen=True)
class OrganizationRegistered:
    user_id: str
    email: str


@dataclass(frozen=True)
class OrganizationStatusChanged:
    user_id: str
    status: str


@dataclass(frozen=True)
class DropoffReassigned:
    donation_id: str
    donor_id: str
    item: str
    dropoff_location: str


@dataclass(frozen=True)
class DirectMessage:
    recipient_id: str
    title: str
    body: str


Event = Union[
    DonationCreated,
    DonationStatusChanged,
    SupportRequestCreated,
    SupportRequestUpdated,
    IssueCreated,
    IssueUpdated,
    OrganizationRegistered,
    OrganizationStatusChanged,
    DropoffReassigned,
    DirectMessage,
]


@dataclass(frozen=True)
class RenderedNotification:
    type: NotificationType
    title: str
    body: str
    data: dict = field(default_factory=dict)


def preview(text: Optional[str]) -> str:
    text = text or ""
    if len(text) <= PREVIEW_MAX_LENGTH:
        return text
    return text[:PREVIEW_MAX_LENGTH] + PREVIEW_ELLIPSIS


def render(event: Event) -> RenderedNotification:
    match event:
        case DonationCreated():
            return RenderedNotification(
                type=NotificationType.DONATION_REQUEST,
                title="New Donation Request",
                body=(
                    f"{event.donor_email} created a donation request for "
                    f"{event.item} ({event.category})."
                ),
                data={
                    "donationId": event.donation_id,
                    "donorEmail": event.donor_email,
                    "category": event.category,
                    "quantity": event.quantity,
                },
            )
        case DonationStatusChanged():
            return RenderedNotification(
                type=NotificationType.DONATION_STATUS_CHANGE,
                title="Donation Status Updated",
                body=(
                    f"Your donation of {event.quantity} {event.category} "
                    f"has been {event.status}."
                ),
                data={"donationId": event.donation_id, "status": event.status},
            )
        case SupportRequestCreated():
            return RenderedNotification(
                type=NotificationType.SUPPORT_REQUEST,
                title="New Support Request",
                body=(
                    f"Support request from {event.submitter_email}: "
                    f"{preview(event.message)}"
                ),
                data={"supportRequestId": event.request_id},
            )
        case SupportRequestUpdated(update=TicketUpdate.STATUS):
            return RenderedNotification(
                type=NotificationType.SUPPORT_STATUS_CHANGE,
                title="Support Request Updated",
                body=f"Your support request status changed to {event.status}.",
                data={"supportRequestId": event.request_id, "status": event.status},
            )
        case SupportRequestUpdated():
            return RenderedNotification(
                type=NotificationType.SUPPORT_RESPONSE,
                title="New Support Response",
                body=(
                    "Admin responded to your support request: "
                    f"{preview(event.response)}"
                ),
                data={"supportRequestId": event.request_id},
            )
        case IssueCreated():
            return RenderedNotification(
                type=NotificationType.ISSUE_REPORT,
                title="New Problem Report",
                body=(
                    f"Problem reported by {event.reporter_email}: "
                    f"{preview(event.description)}"
                ),
                data={"issueId": event.issue_id},
            )
        case IssueUpdated(update=TicketUpdate.STATUS):
            return RenderedNotification(
                type=NotificationType.ISSUE_STATUS_CHANGE,
                title="Issue Status Updated",
                body=f"Your reported issue status changed to {event.status}.",
                data={"issueId": event.issue_id, "status": event.status},
            )
        case IssueUpdated():
            return RenderedNotification(
                type=NotificationType.ISSUE_RESPONSE,
                title="New Issue Response",
                body=f"Admin responded to your issue: {preview(event.response)}",
                data={"issueId": event.issue_id},
            )
        case OrganizationRegistered():
            return RenderedNotification(
                type=NotificationType.USER_REGISTRATION,
                title="New Organization Registration",
                body=(
                    f"Organization {event.email} has registered and is "
                    "pending approval."
                ),
                data={"userId": event.user_id},
            )
        case OrganizationStatusChanged():
            return RenderedNotification(
                type=NotificationType.ORG_REGISTRATION,
                title="Organization Status Updated",
                body=f"Your organization has been {event.status}.",
                data={"userId": event.user_id, "status": event.status},
            )
        case DropoffReassigned():
            return RenderedNotification(
                type=NotificationType.DROPOFF_REASSIGNMENT,
                title="Drop-off Location Changed",
                body=(
                    f"The drop-off location for your donation of {event.item} "
                    f"was changed to {event.dropoff_location}. "
                    "Please approve or reject the change."
                ),
                data={
                    "donationId": event.donation_id,
                    "dropoffLocation": event.dropoff_location,
                    "requiresAction": True,
                },
            )
        case DirectMessage():
            return RenderedNotification(
                type=NotificationType.MESSAGE,
                title=event.title,
                body=event.body,
            )
        case _:
            assert_never(event)
