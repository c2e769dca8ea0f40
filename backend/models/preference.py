"""
Notification preference models.

One record per user: which channels may be used and which categories of
notification the user accepts.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class NotificationPreference(BaseModel):
    """Preference record as stored in notification_preferences."""
    user_id: str = Field(..., alias="userId")

    # Channels
    email_enabled: bool = Field(True, alias="emailEnabled")
    push_enabled: bool = Field(True, alias="pushEnabled")
    in_app_enabled: bool = Field(True, alias="inAppEnabled")

    # Categories
    appointment_updates: bool = Field(True, alias="appointmentUpdates")
    appointment_reminders: bool = Field(True, alias="appointmentReminders")
    payment_notifications: bool = Field(True, alias="paymentNotifications")
    marketing_emails: bool = Field(False, alias="marketingEmails")

    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True


class PreferenceUpdate(BaseModel):
    """Partial preference update. Only fields that are set are written."""
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    appointment_updates: Optional[bool] = None
    appointment_reminders: Optional[bool] = None
    payment_notifications: Optional[bool] = None
    marketing_emails: Optional[bool] = None
