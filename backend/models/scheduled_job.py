"""
Scheduled job models.

A scheduled job is a unit of deferred work, currently only appointment
reminders. Jobs move pending → processing → completed/failed, or
pending → cancelled.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobType(str, Enum):
    APPOINTMENT_REMINDER = "appointment_reminder"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class ReminderType(str, Enum):
    ONE_HOUR = "one_hour"
    TEN_MINUTES = "ten_minutes"


class ReminderJobData(BaseModel):
    """Payload of an appointment_reminder job.

    notification_data is a snapshot of the appointment taken when the job
    was created (patientName, doctorName, appointmentDateTime, ...).
    """
    appointment_id: str = Field(..., alias="appointmentId")
    user_id: str = Field(..., alias="userId")
    reminder_type: str = Field(..., alias="reminderType")
    offset_minutes: int = Field(..., alias="offsetMinutes")
    notification_data: Dict[str, Any] = Field(default_factory=dict, alias="notificationData")

    class Config:
        populate_by_name = True


class ScheduledJob(BaseModel):
    """Job as stored in the scheduled_jobs collection."""
    id: str = Field(..., alias="_id")
    type: JobType
    entity_id: str = Field(..., alias="entityId")
    scheduled_at: datetime = Field(..., alias="scheduledAt")
    status: JobStatus
    data: ReminderJobData
    error: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        populate_by_name = True
