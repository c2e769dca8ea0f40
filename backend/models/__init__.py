"""
Pydantic models package.
Each module contains models for a specific domain.
"""

from models.notification import (
    Notification, NotificationCreate, BulkNotificationCreate, NotificationFilters,
    NotificationPage, ChannelResult, NotificationType, NotificationChannel,
    NotificationStatus,
)
from models.preference import NotificationPreference, PreferenceUpdate
from models.scheduled_job import ScheduledJob, ReminderJobData, JobStatus, JobType, ReminderType
from models.appointment import Appointment, AppointmentStatus

__all__ = [
    "Notification", "NotificationCreate", "BulkNotificationCreate", "NotificationFilters",
    "NotificationPage", "ChannelResult", "NotificationType", "NotificationChannel",
    "NotificationStatus",
    "NotificationPreference", "PreferenceUpdate",
    "ScheduledJob", "ReminderJobData", "JobStatus", "JobType", "ReminderType",
    "Appointment", "AppointmentStatus",
]
