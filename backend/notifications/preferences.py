"""
Per-user notification preferences.

Each user has exactly one preference record. It is created with defaults
the first time it is read, so callers never have to handle a missing
record.

Category eligibility uses an explicit table covering every
NotificationType; adding a type without classifying it fails at import.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from models.notification import NotificationChannel, NotificationType
from models.preference import NotificationPreference, PreferenceUpdate
from notifications.errors import wrap_persistence

logger = logging.getLogger(__name__)


class NotificationCategory(str, Enum):
    APPOINTMENT_UPDATES = "appointmentUpdates"
    APPOINTMENT_REMINDERS = "appointmentReminders"
    PAYMENT_NOTIFICATIONS = "paymentNotifications"
    MARKETING = "marketingEmails"


# None = not subject to a category switch (always eligible)
CATEGORY_BY_TYPE: Dict[NotificationType, Optional[NotificationCategory]] = {
    NotificationType.APPOINTMENT_BOOKED: NotificationCategory.APPOINTMENT_UPDATES,
    NotificationType.APPOINTMENT_ACCEPTED: NotificationCategory.APPOINTMENT_UPDATES,
    NotificationType.APPOINTMENT_REJECTED: NotificationCategory.APPOINTMENT_UPDATES,
    NotificationType.APPOINTMENT_CANCELLED: NotificationCategory.APPOINTMENT_UPDATES,
    NotificationType.APPOINTMENT_RESCHEDULED: NotificationCategory.APPOINTMENT_UPDATES,
    NotificationType.APPOINTMENT_REMINDER: NotificationCategory.APPOINTMENT_REMINDERS,
    NotificationType.MEETING_LINK_READY: NotificationCategory.APPOINTMENT_REMINDERS,
    NotificationType.PAYMENT_CONFIRMED: NotificationCategory.PAYMENT_NOTIFICATIONS,
    NotificationType.SYSTEM_ANNOUNCEMENT: NotificationCategory.MARKETING,
    NotificationType.DOCTOR_VERIFIED: None,
    NotificationType.DOCTOR_REJECTED: None,
}

_unclassified = set(NotificationType) - set(CATEGORY_BY_TYPE)
if _unclassified:
    raise RuntimeError(
        f"Notification types missing a category: {sorted(t.value for t in _unclassified)}"
    )

_CATEGORY_FIELDS = {
    NotificationCategory.APPOINTMENT_UPDATES: "appointment_updates",
    NotificationCategory.APPOINTMENT_REMINDERS: "appointment_reminders",
    NotificationCategory.PAYMENT_NOTIFICATIONS: "payment_notifications",
    NotificationCategory.MARKETING: "marketing_emails",
}

_CHANNEL_FIELDS = {
    NotificationChannel.EMAIL: "email_enabled",
    NotificationChannel.IN_APP: "in_app_enabled",
    NotificationChannel.PUSH: "push_enabled",
}


def default_preference_fields() -> Dict[str, bool]:
    """Default switches, keyed by their stored (camelCase) names."""
    defaults = NotificationPreference(user_id="_")
    return defaults.model_dump(
        by_alias=True, exclude={"user_id", "created_at", "updated_at"}
    )


def is_channel_eligible(preference: NotificationPreference,
                        channel: NotificationChannel) -> bool:
    """True if the user has the channel switched on."""
    return bool(getattr(preference, _CHANNEL_FIELDS[NotificationChannel(channel)]))


def is_category_eligible(preference: NotificationPreference,
                         notification_type: NotificationType) -> bool:
    """True if the user accepts this type of notification."""
    category = CATEGORY_BY_TYPE[NotificationType(notification_type)]
    if category is None:
        return True
    return bool(getattr(preference, _CATEGORY_FIELDS[category]))


class PreferenceStore:
    """Reads and writes notification_preferences documents.

    Args:
        db: Connected SQLiteDatabase.
    """

    def __init__(self, db):
        self.db = db

    async def get(self, user_id: str) -> NotificationPreference:
        """Return the user's preferences, creating the default record if needed."""
        now = datetime.now(timezone.utc)
        with wrap_persistence(f"Failed to load preferences for user {user_id}"):
            doc = await self.db.notification_preferences.find_one_and_update(
                {"userId": user_id},
                {"$setOnInsert": {**default_preference_fields(),
                                  "createdAt": now, "updatedAt": now}},
                upsert=True,
                return_document=True,
            )
        return NotificationPreference.model_validate(doc)

    async def update(
        self,
        user_id: str,
        changes: Union[PreferenceUpdate, Dict[str, Any]],
    ) -> NotificationPreference:
        """Apply a partial update, creating the record if it doesn't exist.

        Args:
            user_id: Owner of the preferences.
            changes: Fields to change; unset fields are left alone.

        Returns:
            The preferences after the update.
        """
        if isinstance(changes, dict):
            changes = PreferenceUpdate.model_validate(changes)
        updates = changes.model_dump(exclude_none=True)

        # snake_case → stored camelCase
        fields = NotificationPreference.model_fields
        to_set = {fields[name].alias: value for name, value in updates.items()}

        now = datetime.now(timezone.utc)
        on_insert = {
            k: v for k, v in default_preference_fields().items() if k not in to_set
        }
        on_insert["createdAt"] = now

        with wrap_persistence(f"Failed to update preferences for user {user_id}"):
            doc = await self.db.notification_preferences.find_one_and_update(
                {"userId": user_id},
                {"$set": {**to_set, "updatedAt": now}, "$setOnInsert": on_insert},
                upsert=True,
                return_document=True,
            )

        logger.info(f"Preferences updated for user {user_id}: {sorted(to_set)}")
        return NotificationPreference.model_validate(doc)

    is_channel_eligible = staticmethod(is_channel_eligible)
    is_category_eligible = staticmethod(is_category_eligible)
