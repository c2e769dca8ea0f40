from datetime import timedelta

import pytest

from models.scheduled_job import JobStatus
from notifications.appointments import StoreAppointmentSource
from notifications.errors import NotFoundError
from notifications.reminders import ReminderScheduler, describe_offset, reminder_type_for
from tests.conftest import NOW, PATIENT_ID, seed_appointment


@pytest.mark.asyncio
async def test_both_reminders_for_appointment_ninety_minutes_out(db, services):
    await seed_appointment(db, starts_in=timedelta(minutes=90))

    jobs = await services.reminders.create_appointment_reminders("appt-1", now=NOW)

    assert [j.data.reminder_type for j in jobs] == ["one_hour", "ten_minutes"]
    assert [j.scheduled_at for j in jobs] == [NOW + timedelta(minutes=30), NOW + timedelta(minutes=80)]
    assert all(j.status == JobStatus.PENDING for j in jobs)
    assert all(j.entity_id == "appt-1" for j in jobs)
    assert jobs[0].data.user_id == PATIENT_ID
    assert jobs[0].data.notification_data["doctorName"] == "Lee"


@pytest.mark.asyncio
async def test_only_ten_minute_reminder_when_under_an_hour(db, services):
    await seed_appointment(db, starts_in=timedelta(minutes=30))

    jobs = await services.reminders.create_appointment_reminders("appt-1", now=NOW)

    assert [j.data.reminder_type for j in jobs] == ["ten_minutes"]


@pytest.mark.asyncio
async def test_no_reminders_when_too_close(db, services):
    await seed_appointment(db, starts_in=timedelta(minutes=5))

    assert await services.reminders.create_appointment_reminders("appt-1", now=NOW) == []
    assert await db.scheduled_jobs.count_documents({}) == 0


@pytest.mark.asyncio
async def test_reminder_exactly_at_now_is_skipped(db, services):
    await seed_appointment(db, starts_in=timedelta(minutes=60))

    jobs = await services.reminders.create_appointment_reminders("appt-1", now=NOW)

    assert [j.data.reminder_type for j in jobs] == ["ten_minutes"]


@pytest.mark.asyncio
async def test_unknown_appointment_raises(services):
    with pytest.raises(NotFoundError):
        await services.reminders.create_appointment_reminders("missing", now=NOW)


@pytest.mark.asyncio
async def test_cancelled_appointment_gets_no_reminders(db, services):
    await seed_appointment(db, status="CANCELLED")

    assert await services.reminders.create_appointment_reminders("appt-1", now=NOW) == []


@pytest.mark.asyncio
async def test_snapshot_only_carries_present_fields(db, services):
    await seed_appointment(db, clinic_name=None, meeting_link="https://meet.example.com/x")

    jobs = await services.reminders.create_appointment_reminders("appt-1", now=NOW)

    snapshot = jobs[0].data.notification_data
    assert snapshot["meetingLink"] == "https://meet.example.com/x"
    assert "clinicName" not in snapshot


@pytest.mark.asyncio
async def test_cancel_only_touches_pending_jobs(db, services):
    await seed_appointment(db)
    jobs = await services.reminders.create_appointment_reminders("appt-1", now=NOW)
    await db.scheduled_jobs.update_one({"_id": jobs[0].id}, {"$set": {"status": "completed"}})

    cancelled = await services.reminders.cancel_appointment_reminders("appt-1", now=NOW)

    assert cancelled == 1
    assert await services.reminders.get_appointment_reminders("appt-1") == []
    assert await services.reminders.cancel_appointment_reminders("appt-1", now=NOW) == 0


@pytest.mark.asyncio
async def test_update_replaces_reminders_after_reschedule(db, services):
    await seed_appointment(db, starts_in=timedelta(minutes=90))
    await services.reminders.create_appointment_reminders("appt-1", now=NOW)
    await db.appointments.update_one(
        {"_id": "appt-1"}, {"$set": {"scheduledDateTime": NOW + timedelta(hours=5)}}
    )

    jobs = await services.reminders.update_appointment_reminders("appt-1", now=NOW)

    pending = await services.reminders.get_appointment_reminders("appt-1")
    assert [j.id for j in pending] == [j.id for j in jobs]
    assert pending[0].scheduled_at == NOW + timedelta(hours=4)
    assert await db.scheduled_jobs.count_documents({"status": "cancelled"}) == 2


@pytest.mark.asyncio
async def test_custom_offsets(db):
    await seed_appointment(db, starts_in=timedelta(days=2))
    scheduler = ReminderScheduler(db, StoreAppointmentSource(db), offsets_minutes=[10, 1440])

    jobs = await scheduler.create_appointment_reminders("appt-1", now=NOW)

    assert [j.data.reminder_type for j in jobs] == ["1440_minutes", "ten_minutes"]


def test_offsets_must_be_positive():
    with pytest.raises(ValueError):
        ReminderScheduler(None, StoreAppointmentSource(None), offsets_minutes=[60, 0])


def test_offset_names_and_descriptions():
    assert reminder_type_for(60) == "one_hour"
    assert reminder_type_for(30) == "30_minutes"
    assert describe_offset(60) == "1 hour"
    assert describe_offset(10) == "10 minutes"
    assert describe_offset(120) == "2 hours"
