"""
Appointment reminder scheduling.

For each appointment the scheduler creates one scheduled job per
reminder offset (by default 60 and 10 minutes before the start). Offsets
whose firing time is not strictly in the future are skipped, so an
appointment 30 minutes away only gets the 10-minute reminder.

Each job carries a snapshot of the appointment taken at creation time;
the job processor renders the reminder from that snapshot.

Typical usage:
    scheduler = ReminderScheduler(db, StoreAppointmentSource(db))
    jobs = await scheduler.create_appointment_reminders(appointment_id)
    await scheduler.update_appointment_reminders(appointment_id)  # after a reschedule
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from models.appointment import Appointment
from models.scheduled_job import JobStatus, JobType, ReminderType, ScheduledJob
from notifications.appointments import AppointmentSource
from notifications.errors import NotFoundError, wrap_persistence
from sqlite_db import ObjectId, to_utc

logger = logging.getLogger(__name__)

DEFAULT_OFFSETS_MINUTES = (60, 10)

_NAMED_REMINDERS = {
    60: ReminderType.ONE_HOUR.value,
    10: ReminderType.TEN_MINUTES.value,
}


def reminder_type_for(offset_minutes: int) -> str:
    """Name stored on the job: "one_hour", "ten_minutes" or "<n>_minutes"."""
    return _NAMED_REMINDERS.get(offset_minutes, f"{offset_minutes}_minutes")


def describe_offset(offset_minutes: int) -> str:
    """Human text for an offset: 60 → "1 hour", 10 → "10 minutes"."""
    if offset_minutes % 60 == 0:
        hours = offset_minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return "1 minute" if offset_minutes == 1 else f"{offset_minutes} minutes"


def appointment_snapshot(appointment: Appointment) -> Dict[str, Any]:
    """Template context frozen into a reminder job. Absent fields are omitted."""
    snapshot = {
        "patientName": appointment.patient.name,
        "doctorName": appointment.doctor.name,
        "appointmentDateTime": to_utc(appointment.scheduled_date_time).isoformat(),
        "appointmentType": appointment.type,
        "clinicName": appointment.doctor.clinic_name,
        "clinicAddress": appointment.doctor.clinic_address,
        "meetingLink": appointment.meeting_link,
    }
    return {k: v for k, v in snapshot.items() if v is not None}


class ReminderScheduler:
    """Creates, cancels and lists reminder jobs for appointments.

    Args:
        db: Connected SQLiteDatabase.
        appointments: Where appointments are looked up.
        offsets_minutes: Minutes before the appointment to remind at.
    """

    def __init__(self, db, appointments: AppointmentSource,
                 offsets_minutes: Sequence[int] = DEFAULT_OFFSETS_MINUTES):
        if not offsets_minutes or any(m <= 0 for m in offsets_minutes):
            raise ValueError(f"Reminder offsets must be positive minutes: {offsets_minutes}")
        self.db = db
        self.appointments = appointments
        # Largest offset first, so jobs are created in firing order
        self.offsets_minutes = sorted(set(offsets_minutes), reverse=True)

    async def create_appointment_reminders(self, appointment_id: str,
                                           now: Optional[datetime] = None) -> List[ScheduledJob]:
        """Create a reminder job for every offset still in the future.

        Args:
            appointment_id: Appointment to remind about.
            now: Current time (defaults to the wall clock).

        Returns:
            The created jobs, earliest first.

        Raises:
            NotFoundError: If the appointment doesn't exist.
            PersistenceError: If a job can't be stored.
        """
        now = to_utc(now) if now else datetime.now(timezone.utc)
        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        if appointment.is_cancelled:
            logger.info(f"Appointment {appointment_id} is cancelled, no reminders created")
            return []

        starts_at = to_utc(appointment.scheduled_date_time)
        snapshot = appointment_snapshot(appointment)
        jobs: List[ScheduledJob] = []

        for offset in self.offsets_minutes:
            fire_at = starts_at - timedelta(minutes=offset)
            if fire_at <= now:
                logger.debug(
                    f"Skipping {offset}-minute reminder for appointment "
                    f"{appointment_id}: {fire_at.isoformat()} already passed"
                )
                continue

            doc = {
                "_id": str(ObjectId()),
                "type": JobType.APPOINTMENT_REMINDER.value,
                "entityId": appointment_id,
                "scheduledAt": fire_at,
                "status": JobStatus.PENDING.value,
                "data": {
                    "appointmentId": appointment_id,
                    "userId": appointment.patient.user_id,
                    "reminderType": reminder_type_for(offset),
                    "offsetMinutes": offset,
                    "notificationData": snapshot,
                },
                "error": None,
                "createdAt": now,
                "updatedAt": now,
            }
            with wrap_persistence("Failed to create reminder job"):
                await self.db.scheduled_jobs.insert_one(doc)
            jobs.append(ScheduledJob.model_validate(doc))

        logger.info(f"Created {len(jobs)} reminder job(s) for appointment {appointment_id}")
        return jobs

    async def cancel_appointment_reminders(self, appointment_id: str,
                                           now: Optional[datetime] = None) -> int:
        """Cancel every pending reminder of an appointment.

        Jobs already claimed by the processor are not affected.

        Returns:
            Number of jobs cancelled.
        """
        now = to_utc(now) if now else datetime.now(timezone.utc)
        with wrap_persistence("Failed to cancel reminder jobs"):
            result = await self.db.scheduled_jobs.update_many(
                {
                    "type": JobType.APPOINTMENT_REMINDER.value,
                    "entityId": appointment_id,
                    "status": JobStatus.PENDING.value,
                },
                {"$set": {"status": JobStatus.CANCELLED.value, "updatedAt": now}},
            )
        logger.info(f"Cancelled {result.modified_count} reminder job(s) for appointment {appointment_id}")
        return result.modified_count

    async def update_appointment_reminders(self, appointment_id: str,
                                           now: Optional[datetime] = None) -> List[ScheduledJob]:
        """Replace the reminders of a rescheduled appointment."""
        await self.cancel_appointment_reminders(appointment_id, now=now)
        return await self.create_appointment_reminders(appointment_id, now=now)

    async def get_appointment_reminders(self, appointment_id: str) -> List[ScheduledJob]:
        """Pending reminder jobs of an appointment, earliest first."""
        with wrap_persistence("Failed to load reminder jobs"):
            docs = await self.db.scheduled_jobs.find({
                "type": JobType.APPOINTMENT_REMINDER.value,
                "entityId": appointment_id,
                "status": JobStatus.PENDING.value,
            }).sort("scheduledAt", 1).to_list()
        return [ScheduledJob.model_validate(d) for d in docs]
