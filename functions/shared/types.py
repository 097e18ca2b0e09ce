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

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Optional


class Role(StrEnum):
    DONOR = "Donor"
    ORGANIZATION = "Organization"
    ADMINISTRATOR = "Administrator"


class UserStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DonationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked up"
    DELIVERED = "delivered"
    REJECTED = "rejected"


class SupportStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in progress"
    RESOLVED = "resolved"


class IssueStatus(StrEnum):
    UNRESOLVED = "unresolved"
    IN_PROGRESS = "in progress"
    RESOLVED = "resolved"


class NotificationType(StrEnum):
    DONATION_REQUEST = "donation_request"
    DONATION_STATUS_CHANGE = "donation_status_change"
    SUPPORT_REQUEST = "support_request"
    SUPPORT_STATUS_CHANGE = "support_status_change"
    SUPPORT_RESPONSE = "support_response"
    ISSUE_REPORT = "issue_report"
    ISSUE_STATUS_CHANGE = "issue_status_change"
    ISSUE_RESPONSE = "issue_response"
    USER_REGISTRATION = "user_registration"
    ORG_REGISTRATION = "org_registration"
    DROPOFF_REASSIGNMENT = "dropoff_reassignment"
    MESSAGE = "message"


def parse_role(value: Any) -> Optional[Role]:
    """Returns the Role for a stored role string, or None if unset/unknown."""
    try:
        return Role(value)
    except ValueError:
        return None


@dataclass
class User:
    """A document in the `users` collection, keyed by the auth uid."""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    notifications_enabled: bool = False
    fcm_token: Optional[str] = None
    created_at: Any = None
    profile_image_url: Optional[str] = None


@dataclass
class NotificationRecord:
    """Schema for in-app notifications stored in Firestore."""

    recipient_id: str
    title: str
    message: str
    type: str
    timestamp: Any  # datetime, or a Firestore timestamp once read back
    read: bool = False
    starred: bool = False
