"""
Pydantic schemas for the donation backend. Field names follow the camelCase
JSON the mobile app sends and reads.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import (
    MAX_ISSUE_DESCRIPTION_LENGTH,
    MAX_NOTIFICATION_BODY_LENGTH,
    MAX_NOTIFICATION_TITLE_LENGTH,
    MAX_RESPONSE_LENGTH,
    MAX_SUPPORT_MESSAGE_LENGTH,
)


class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class MessageResponse(BaseModel):
    message: str


class CreatedResponse(BaseModel):
    id: str
    message: str


class UserCreateRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)


class UserUpdateRequest(BaseModel):
    """Partial profile update. Unknown fields are merged as-is."""

    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    notificationsEnabled: Optional[bool] = None
    emailNotifications: Optional[bool] = None
    fcmToken: Optional[str] = None
    location: Optional[GeoPoint] = None


class ProfilePictureRequest(BaseModel):
    imageBase64: str = Field(..., min_length=1)


class ProfilePictureResponse(BaseModel):
    profileImageUrl: str


class DonationCreateRequest(BaseModel):
    item: str = Field(..., min_length=1)
    category: str = "Other"
    quantity: int = Field(default=1, ge=1)
    deliveryOption: str = "Pickup"
    description: str = ""
    locationName: str = "Unknown"
    locationCoords: Optional[GeoPoint] = None
    location: Optional[GeoPoint] = None
    imageUrl: Optional[str] = None


class DonationUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    item: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    deliveryOption: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    locationName: Optional[str] = None
    locationCoords: Optional[GeoPoint] = None
    location: Optional[GeoPoint] = None
    imageUrl: Optional[str] = None


class DropoffReassignmentRequest(BaseModel):
    dropoffLocation: str = Field(..., min_length=1)
    dropoffCoords: Optional[GeoPoint] = None
    reason: Optional[str] = None


class SupportRequestCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=MAX_SUPPORT_MESSAGE_LENGTH)


class IssueCreate(BaseModel):
    description: str = Field(
        ..., min_length=1, max_length=MAX_ISSUE_DESCRIPTION_LENGTH
    )
    imageUrl: str = ""


class TicketResponseRequest(BaseModel):
    response: Optional[str] = Field(default=None, max_length=MAX_RESPONSE_LENGTH)
    status: Optional[str] = None


class StarRequest(BaseModel):
    starred: bool


class SendNotificationRequest(BaseModel):
    recipientId: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=MAX_NOTIFICATION_TITLE_LENGTH)
    body: str = Field(..., min_length=1, max_length=MAX_NOTIFICATION_BODY_LENGTH)


class SendNotificationResponse(BaseModel):
    message: str
    delivered: bool
    notificationIds: list[str]


class ImageUploadRequest(BaseModel):
    base64Image: str = Field(..., min_length=1)
    type: Literal["profile", "donation"]


class ImageUploadResponse(BaseModel):
    imageUrl: str
