"""
Notification data models.

A notification is addressed to one user, carries a type from a closed
set, and fans out over one or more delivery channels. Documents are
stored with camelCase keys; the API speaks snake_case.

Typical usage:
    request = NotificationCreate(
        user_id="u1",
        type=NotificationType.APPOINTMENT_ACCEPTED,
        title="Appointment Accepted",
        message="Dr. Lee accepted your appointment",
        channels=[NotificationChannel.EMAIL, NotificationChannel.IN_APP],
    )
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class NotificationType(str, Enum):
    """Every kind of notification the platform sends."""
    APPOINTMENT_BOOKED = "APPOINTMENT_BOOKED"
    APPOINTMENT_ACCEPTED = "APPOINTMENT_ACCEPTED"
    APPOINTMENT_REJECTED = "APPOINTMENT_REJECTED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    APPOINTMENT_RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    MEETING_LINK_READY = "MEETING_LINK_READY"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    DOCTOR_VERIFIED = "DOCTOR_VERIFIED"
    DOCTOR_REJECTED = "DOCTOR_REJECTED"
    SYSTEM_ANNOUNCEMENT = "SYSTEM_ANNOUNCEMENT"


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    IN_APP = "IN_APP"
    PUSH = "PUSH"


class NotificationStatus(str, Enum):
    """PENDING waits for scheduledAt; SENT means delivery is under way.

    DELIVERED and FAILED are terminal.
    """
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


def _dedupe_channels(channels: List[NotificationChannel]) -> List[NotificationChannel]:
    """Drop repeated channels, keeping request order."""
    seen: List[NotificationChannel] = []
    for channel in channels:
        if channel not in seen:
            seen.append(channel)
    return seen


class NotificationCreate(BaseModel):
    """Request to create a notification for one user.

    Args:
        user_id: Recipient user id.
        type: Notification type (selects the template and category).
        title: Short title shown in-app and used as the fallback subject.
        message: Plain text message.
        data: Template context (patientName, doctorName, ...).
        channels: Channels to attempt, at least one.
        scheduled_at: Deliver at this time instead of immediately.
    """
    user_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[NotificationChannel] = Field(..., min_length=1)
    scheduled_at: Optional[datetime] = None

    @field_validator("channels")
    @classmethod
    def unique_channels(cls, v: List[NotificationChannel]) -> List[NotificationChannel]:
        return _dedupe_channels(v)


class BulkNotificationCreate(BaseModel):
    """Same notification fanned out to many users."""
    user_ids: List[str] = Field(..., min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[NotificationChannel] = Field(..., min_length=1)
    scheduled_at: Optional[datetime] = None

    @field_validator("channels")
    @classmethod
    def unique_channels(cls, v: List[NotificationChannel]) -> List[NotificationChannel]:
        return _dedupe_channels(v)

    def for_user(self, user_id: str) -> NotificationCreate:
        """Build the single-user request for one recipient."""
        return NotificationCreate(
            user_id=user_id,
            type=self.type,
            title=self.title,
            message=self.message,
            data=self.data,
            channels=self.channels,
            scheduled_at=self.scheduled_at,
        )


class ChannelResult(BaseModel):
    """Outcome of one channel attempt.

    A skipped (ineligible) channel has success=False and no error.
    """
    channel: NotificationChannel
    success: bool
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None


class Notification(BaseModel):
    """Notification as stored in the notifications collection."""
    id: str = Field(..., alias="_id")
    user_id: str = Field(..., alias="userId")
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[NotificationChannel]
    status: NotificationStatus
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")
    sent_at: Optional[datetime] = Field(None, alias="sentAt")
    read_at: Optional[datetime] = Field(None, alias="readAt")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    channel_results: List[ChannelResult] = Field(default_factory=list, alias="channelResults")

    class Config:
        populate_by_name = True


class NotificationFilters(BaseModel):
    """Filters for listing a user's notifications."""
    user_id: str
    type: Optional[NotificationType] = None
    status: Optional[NotificationStatus] = None
    unread_only: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class NotificationPage(BaseModel):
    """One page of notifications plus pagination info."""
    notifications: List[Notification]
    total: int
    page: int
    limit: int
    total_pages: int


# Document schema (camelCase in the store, snake_case in Python)
# {
#   "userId": str,
#   "type": NotificationType,
#   "title": str,
#   "message": str,
#   "data": dict,
#   "channels": [NotificationChannel],
#   "status": "PENDING" | "SENT" | "DELIVERED" | "FAILED",
#   "scheduledAt": datetime | null,
#   "sentAt": datetime | null,
#   "readAt": datetime | null,
#   "createdAt": datetime,
#   "updatedAt": datetime,
#   "channelResults": [ChannelResult],
# }
