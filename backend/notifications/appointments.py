"""
Read access to appointments.

Appointments belong to the booking service. The reminder scheduler and
the job processor only need to look one up by id, so they depend on the
small AppointmentSource interface; the default reads the appointments
collection of the shared store.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import ValidationError

from models.appointment import Appointment
from notifications.errors import wrap_persistence

logger = logging.getLogger(__name__)


class AppointmentSource(ABC):
    """Looks up appointments by id."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        """Return the appointment, or None if it doesn't exist."""
        pass


class StoreAppointmentSource(AppointmentSource):
    """Reads appointments from the document store.

    Args:
        db: Connected SQLiteDatabase.
    """

    def __init__(self, db):
        self.db = db

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        with wrap_persistence(f"Failed to load appointment {appointment_id}"):
            doc = await self.db.appointments.find_one({"_id": appointment_id})
        if doc is None:
            return None
        try:
            return Appointment.model_validate(doc)
        except ValidationError as e:
            raise ValueError(f"Appointment {appointment_id} is malformed: {e}") from e
