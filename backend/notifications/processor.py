"""
Job processor.

One poll cycle delivers scheduled notifications that have come due and
executes due reminder jobs. Safe to run repeatedly and from more than
one invoker (API endpoint, CLI runner, in-process loop):

  - Only PENDING notifications and pending jobs are selected.
  - A job is claimed (pending → processing) with an update guarded on
    the status and updatedAt that were read; a lost claim is skipped.
  - A job left in processing for longer than the claim timeout (the
    invoker died mid-job) becomes due again.

Job outcomes are recorded on the job (completed / failed + error); a
failing job never stops the rest of the batch. Failed jobs are not
retried.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from models.notification import NotificationChannel, NotificationCreate, NotificationType
from models.scheduled_job import JobStatus, JobType, ScheduledJob, TERMINAL_JOB_STATUSES
from notifications.appointments import AppointmentSource
from notifications.engine import NotificationEngine
from notifications.errors import JobExecutionError, PersistenceError, wrap_persistence
from notifications.reminders import describe_offset
from sqlite_db import to_utc

logger = logging.getLogger(__name__)

REMINDER_CHANNELS = [
    NotificationChannel.EMAIL,
    NotificationChannel.IN_APP,
    NotificationChannel.PUSH,
]


class JobProcessor:
    """Executes due work.

    Args:
        db: Connected SQLiteDatabase.
        engine: Creates and delivers the reminder notifications.
        appointments: Source used to re-check appointment status.
        claim_timeout_minutes: Age after which a processing job is reclaimed.
    """

    def __init__(self, db, engine: NotificationEngine, appointments: AppointmentSource,
                 claim_timeout_minutes: int = 15):
        self.db = db
        self.engine = engine
        self.appointments = appointments
        self.claim_timeout = timedelta(minutes=claim_timeout_minutes)

    # ============================================================
    # Reminder jobs
    # ============================================================

    async def process_due_reminders(self, now: Optional[datetime] = None) -> int:
        """Execute every reminder job that is due.

        Returns:
            Number of jobs completed in this call.
        """
        now = to_utc(now) if now else datetime.now(timezone.utc)
        with wrap_persistence("Failed to load due reminder jobs"):
            due = await self.db.scheduled_jobs.find({
                "type": JobType.APPOINTMENT_REMINDER.value,
                "$or": [
                    {"status": JobStatus.PENDING.value, "scheduledAt": {"$lte": now}},
                    {"status": JobStatus.PROCESSING.value,
                     "updatedAt": {"$lte": now - self.claim_timeout}},
                ],
            }).sort("scheduledAt", 1).to_list()

        completed = 0
        for doc in due:
            if not await self._claim(doc, now):
                logger.info(f"Job {doc['_id']} claimed elsewhere, skipping")
                continue

            job = ScheduledJob.model_validate(doc)
            try:
                await self._execute_reminder(job, now)
            except Exception as e:
                error = JobExecutionError(job.id, str(e) or type(e).__name__)
                logger.error(f"Reminder job {job.id} failed: {error}", exc_info=True)
                try:
                    await self._finish(job.id, JobStatus.FAILED, now, error=str(error))
                except PersistenceError as pe:
                    # stays in processing; reclaimed after the claim timeout
                    logger.error(f"Could not mark job {job.id} failed: {pe}")
                continue

            completed += 1

        if due:
            logger.info(f"Processed {len(due)} due reminder job(s), {completed} completed")
        return completed

    async def _claim(self, doc: Dict, now: datetime) -> bool:
        with wrap_persistence(f"Failed to claim job {doc['_id']}"):
            result = await self.db.scheduled_jobs.update_one(
                {"_id": doc["_id"], "status": doc["status"], "updatedAt": doc["updatedAt"]},
                {"$set": {"status": JobStatus.PROCESSING.value, "updatedAt": now}},
            )
        if result.matched_count == 0:
            return False
        if doc["status"] == JobStatus.PROCESSING.value:
            logger.warning(f"Reclaimed job {doc['_id']} stuck in processing since {doc['updatedAt']}")
        doc["status"] = JobStatus.PROCESSING.value
        doc["updatedAt"] = now
        return True

    async def _execute_reminder(self, job: ScheduledJob, now: datetime) -> None:
        appointment = await self.appointments.get(job.data.appointment_id)
        if appointment is None or appointment.is_cancelled:
            reason = "missing" if appointment is None else "cancelled"
            logger.info(f"Appointment {job.data.appointment_id} {reason}, reminder {job.id} not sent")
            await self._finish(job.id, JobStatus.COMPLETED, now)
            return

        snapshot = job.data.notification_data
        time_text = describe_offset(job.data.offset_minutes)
        request = NotificationCreate(
            user_id=job.data.user_id,
            type=NotificationType.APPOINTMENT_REMINDER,
            title=f"Appointment Reminder - {time_text}",
            message=(
                f"Your appointment with Dr. {snapshot.get('doctorName', 'your doctor')} "
                f"is in {time_text}."
            ),
            data={
                **snapshot,
                "appointmentId": job.data.appointment_id,
                "reminderType": job.data.reminder_type,
                "timeText": time_text,
            },
            channels=REMINDER_CHANNELS,
        )
        notification = await self.engine.create_notification(request, now=now)
        await self._finish(job.id, JobStatus.COMPLETED, now, notification_id=notification.id)
        logger.info(
            f"Reminder job {job.id} ({job.data.reminder_type}) completed, "
            f"notification {notification.id} is {notification.status.value}"
        )

    async def _finish(self, job_id: str, status: JobStatus, now: datetime,
                      error: Optional[str] = None,
                      notification_id: Optional[str] = None) -> None:
        fields = {"status": status.value, "updatedAt": now, "error": error}
        if notification_id:
            fields["notificationId"] = notification_id
        with wrap_persistence(f"Failed to update job {job_id}"):
            await self.db.scheduled_jobs.update_one(
                {"_id": job_id, "status": JobStatus.PROCESSING.value},
                {"$set": fields},
            )

    # ============================================================
    # Cycle & housekeeping
    # ============================================================

    async def process_scheduled_notifications(self, now: Optional[datetime] = None) -> int:
        """Deliver due scheduled notifications (see NotificationEngine)."""
        return await self.engine.process_scheduled_notifications(now=now)

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """One poll cycle: scheduled notifications first, then reminders.

        Returns:
            {"notifications": processed, "reminders": completed}
        """
        now = to_utc(now) if now else datetime.now(timezone.utc)
        notifications = await self.process_scheduled_notifications(now=now)
        reminders = await self.process_due_reminders(now=now)
        return {"notifications": notifications, "reminders": reminders}

    async def cleanup_old_jobs(self, retention_days: int = 30,
                               now: Optional[datetime] = None) -> int:
        """Delete finished jobs last touched more than `retention_days` ago.

        Pending and processing jobs are never deleted.

        Returns:
            Number of jobs deleted.

        Raises:
            ValueError: If retention_days is less than 1.
        """
        if retention_days < 1:
            raise ValueError(f"retention_days must be at least 1, got {retention_days}")

        now = to_utc(now) if now else datetime.now(timezone.utc)
        cutoff = now - timedelta(days=retention_days)
        with wrap_persistence("Failed to clean up old jobs"):
            result = await self.db.scheduled_jobs.delete_many({
                "status": {"$in": [s.value for s in TERMINAL_JOB_STATUSES]},
                "updatedAt": {"$lt": cutoff},
            })
        logger.info(f"Cleaned up {result.deleted_count} job(s) older than {retention_days} days")
        return result.deleted_count
