from datetime import datetime, timezone

import pytest

from models.notification import Notification, NotificationChannel, NotificationType
from models.preference import NotificationPreference
from notifications.dispatcher import ChannelDispatcher
from tests.conftest import NOW, PATIENT_ID


def make_notification(channels, notification_type=NotificationType.APPOINTMENT_ACCEPTED,
                      user_id=PATIENT_ID) -> Notification:
    return Notification.model_validate({
        "_id": "n1",
        "userId": user_id,
        "type": notification_type,
        "title": "Appointment Accepted",
        "message": "Dr. Lee accepted your appointment",
        "data": {"patientName": "Ann", "doctorName": "Lee"},
        "channels": channels,
        "status": "SENT",
        "createdAt": NOW,
        "updatedAt": NOW,
    })


@pytest.mark.asyncio
async def test_all_channels_delivered(db, email):
    dispatcher = ChannelDispatcher(db, email)
    notification = make_notification([NotificationChannel.EMAIL, NotificationChannel.IN_APP])

    results = await dispatcher.dispatch(notification, NotificationPreference(user_id=PATIENT_ID))

    assert [r.channel for r in results] == [NotificationChannel.EMAIL, NotificationChannel.IN_APP]
    assert all(r.success for r in results)
    assert all(r.delivered_at is not None for r in results)
    assert len(email.sent) == 1
    assert email.sent[0]["to"] == "ann@example.com"
    assert email.sent[0]["subject"] == "Appointment Accepted"


@pytest.mark.asyncio
async def test_disabled_channel_is_skipped_not_attempted(db, email):
    dispatcher = ChannelDispatcher(db, email)
    notification = make_notification([NotificationChannel.EMAIL, NotificationChannel.IN_APP])
    preference = NotificationPreference(user_id=PATIENT_ID, email_enabled=False)

    results = await dispatcher.dispatch(notification, preference)

    assert results[0].success is False
    assert results[0].error is None
    assert results[1].success is True
    assert email.sent == []


@pytest.mark.asyncio
async def test_declined_category_skips_email_only(db, email):
    dispatcher = ChannelDispatcher(db, email)
    notification = make_notification(
        [NotificationChannel.EMAIL, NotificationChannel.PUSH],
        notification_type=NotificationType.APPOINTMENT_REMINDER,
    )
    preference = NotificationPreference(user_id=PATIENT_ID, appointment_reminders=False)

    results = await dispatcher.dispatch(notification, preference)

    assert [r.success for r in results] == [False, True]
    assert email.sent == []


@pytest.mark.asyncio
async def test_transport_error_becomes_failed_result(db, email):
    email.fail_with = "SMTP connection refused"
    dispatcher = ChannelDispatcher(db, email)
    notification = make_notification([NotificationChannel.EMAIL, NotificationChannel.IN_APP])

    results = await dispatcher.dispatch(notification, NotificationPreference(user_id=PATIENT_ID))

    assert results[0].success is False
    assert results[0].error == "SMTP connection refused"
    assert results[1].success is True


@pytest.mark.asyncio
async def test_missing_email_address_fails_email(db, email):
    await db.users.insert_one({"_id": "no-mail", "role": "PATIENT"})
    dispatcher = ChannelDispatcher(db, email)
    notification = make_notification([NotificationChannel.EMAIL], user_id="no-mail")

    results = await dispatcher.dispatch(notification, NotificationPreference(user_id="no-mail"))

    assert results[0].success is False
    assert "No email address" in results[0].error
    assert email.sent == []
