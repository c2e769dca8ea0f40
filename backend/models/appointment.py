"""
Appointment models.

Appointments are owned by the booking service; this package only reads
them to compute reminder times and fill notification templates.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    AWAITING_ACCEPTANCE = "AWAITING_ACCEPTANCE"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class AppointmentPatient(BaseModel):
    name: str
    user_id: str = Field(..., alias="userId")

    class Config:
        populate_by_name = True


class AppointmentDoctor(BaseModel):
    name: str
    clinic_name: Optional[str] = Field(None, alias="clinicName")
    clinic_address: Optional[str] = Field(None, alias="clinicAddress")

    class Config:
        populate_by_name = True


class Appointment(BaseModel):
    """Appointment as read from the appointments collection."""
    id: str = Field(..., alias="_id")
    scheduled_date_time: datetime = Field(..., alias="scheduledDateTime")
    status: AppointmentStatus
    type: str = "PHYSICAL"
    patient: AppointmentPatient
    doctor: AppointmentDoctor
    meeting_link: Optional[str] = Field(None, alias="meetingLink")

    class Config:
        populate_by_name = True

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED
