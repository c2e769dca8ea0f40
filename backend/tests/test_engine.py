from datetime import timedelta

import pytest

from models.notification import (
    BulkNotificationCreate,
    NotificationChannel,
    NotificationCreate,
    NotificationFilters,
    NotificationStatus,
    NotificationType,
)
from notifications.dispatcher import ChannelDispatcher
from notifications.engine import NotificationEngine
from notifications.errors import NotFoundError, PersistenceError
from notifications.preferences import PreferenceStore
from tests.conftest import NOW, OTHER_PATIENT_ID, PATIENT_ID


def make_request(user_id=PATIENT_ID, scheduled_at=None,
                 notification_type=NotificationType.APPOINTMENT_ACCEPTED,
                 channels=(NotificationChannel.EMAIL, NotificationChannel.IN_APP)):
    return NotificationCreate(
        user_id=user_id,
        type=notification_type,
        title="Appointment Accepted",
        message="Dr. Lee accepted your appointment",
        data={"patientName": "Ann", "doctorName": "Lee"},
        channels=list(channels),
        scheduled_at=scheduled_at,
    )


@pytest.mark.asyncio
async def test_immediate_notification_is_delivered(services, email):
    notification = await services.engine.create_notification(make_request(), now=NOW)

    assert notification.status == NotificationStatus.DELIVERED
    assert notification.sent_at == NOW
    assert [r.success for r in notification.channel_results] == [True, True]
    assert len(email.sent) == 1


@pytest.mark.asyncio
async def test_partial_channel_failure_marks_notification_failed(services, email):
    email.fail_with = "mailbox unavailable"

    notification = await services.engine.create_notification(make_request(), now=NOW)

    assert notification.status == NotificationStatus.FAILED
    assert notification.sent_at == NOW
    assert notification.channel_results[0].error == "mailbox unavailable"
    assert notification.channel_results[1].success is True


@pytest.mark.asyncio
async def test_skipped_channel_counts_as_failure(services, email):
    await services.preferences.update(PATIENT_ID, {"email_enabled": False})

    notification = await services.engine.create_notification(make_request(), now=NOW)

    assert notification.status == NotificationStatus.FAILED
    assert email.sent == []


@pytest.mark.asyncio
async def test_email_only_with_email_disabled_fails_without_sending(services, email):
    await services.preferences.update(PATIENT_ID, {"email_enabled": False})

    notification = await services.engine.create_notification(
        make_request(channels=[NotificationChannel.EMAIL]), now=NOW
    )

    assert notification.status == NotificationStatus.FAILED
    assert email.sent == []


@pytest.mark.asyncio
async def test_in_app_only_is_delivered_without_email(services, email):
    await services.preferences.update(PATIENT_ID, {"email_enabled": False, "push_enabled": False})

    notification = await services.engine.create_notification(
        make_request(channels=[NotificationChannel.IN_APP]), now=NOW
    )

    assert notification.status == NotificationStatus.DELIVERED
    assert email.sent == []


@pytest.mark.asyncio
async def test_past_scheduled_at_is_delivered_immediately(services):
    notification = await services.engine.create_notification(
        make_request(scheduled_at=NOW - timedelta(minutes=1)), now=NOW
    )

    assert notification.status == NotificationStatus.DELIVERED


@pytest.mark.asyncio
async def test_scheduled_notification_waits_until_due(services, email):
    due_at = NOW + timedelta(hours=2)
    created = await services.engine.create_notification(make_request(scheduled_at=due_at), now=NOW)

    assert created.status == NotificationStatus.PENDING
    assert created.sent_at is None
    assert email.sent == []

    early = await services.engine.process_scheduled_notifications(now=due_at - timedelta(seconds=1))
    on_time = await services.engine.process_scheduled_notifications(now=due_at)
    again = await services.engine.process_scheduled_notifications(now=due_at + timedelta(minutes=5))

    assert (early, on_time, again) == (0, 1, 0)
    delivered = await services.engine.get_notification(created.id)
    assert delivered.status == NotificationStatus.DELIVERED
    assert delivered.sent_at == due_at
    assert len(email.sent) == 1


@pytest.mark.asyncio
async def test_scheduled_delivery_failure_is_recorded(services, email):
    due_at = NOW + timedelta(minutes=5)
    created = await services.engine.create_notification(make_request(scheduled_at=due_at), now=NOW)
    email.fail_with = "SMTP down"

    processed = await services.engine.process_scheduled_notifications(now=due_at)

    assert processed == 1
    failed = await services.engine.get_notification(created.id)
    assert failed.status == NotificationStatus.FAILED
    assert failed.sent_at == due_at


@pytest.mark.asyncio
async def test_finalized_notification_is_not_overwritten(services, email):
    notification = await services.engine.create_notification(make_request(), now=NOW)
    email.fail_with = "late failure"

    await services.engine.deliver_notification(notification, now=NOW + timedelta(minutes=1))

    stored = await services.engine.get_notification(notification.id)
    assert stored.status == NotificationStatus.DELIVERED
    assert stored.sent_at == NOW


class FlakyPreferences(PreferenceStore):
    def __init__(self, db, broken_user):
        super().__init__(db)
        self.broken_user = broken_user

    async def get(self, user_id):
        if user_id == self.broken_user:
            raise PersistenceError("Failed to load preferences: disk I/O error")
        return await super().get(user_id)


@pytest.mark.asyncio
async def test_bulk_skips_failing_user_and_keeps_the_rest(db, email):
    engine = NotificationEngine(db, ChannelDispatcher(db, email), FlakyPreferences(db, OTHER_PATIENT_ID))
    request = BulkNotificationCreate(
        user_ids=[PATIENT_ID, OTHER_PATIENT_ID, "admin-1"],
        type=NotificationType.SYSTEM_ANNOUNCEMENT,
        title="Planned maintenance",
        message="We will be offline on Sunday.",
        channels=[NotificationChannel.IN_APP],
    )

    created = await engine.send_bulk_notification(request, now=NOW)

    assert [n.user_id for n in created] == [PATIENT_ID, "admin-1"]
    assert all(n.status == NotificationStatus.DELIVERED for n in created)

    orphan = await db.notifications.find_one({"userId": OTHER_PATIENT_ID})
    assert orphan["status"] == NotificationStatus.FAILED.value
    assert orphan["sentAt"] is not None
    assert await engine.process_scheduled_notifications(now=NOW + timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_immediate_delivery_error_leaves_notification_failed(db, email):
    engine = NotificationEngine(db, ChannelDispatcher(db, email), FlakyPreferences(db, PATIENT_ID))

    with pytest.raises(PersistenceError):
        await engine.create_notification(make_request(), now=NOW)

    stored = await db.notifications.find_one({"userId": PATIENT_ID})
    assert stored["status"] == NotificationStatus.FAILED.value
    assert email.sent == []


@pytest.mark.asyncio
async def test_listing_filters_and_paginates(services):
    engine = services.engine
    for i in range(5):
        await engine.create_notification(
            make_request(channels=[NotificationChannel.IN_APP]), now=NOW + timedelta(minutes=i)
        )
    await engine.create_notification(
        make_request(notification_type=NotificationType.PAYMENT_CONFIRMED,
                     channels=[NotificationChannel.IN_APP]),
        now=NOW + timedelta(minutes=10),
    )
    await engine.create_notification(make_request(user_id=OTHER_PATIENT_ID), now=NOW)

    first = await engine.get_user_notifications(NotificationFilters(user_id=PATIENT_ID, limit=4))
    second = await engine.get_user_notifications(
        NotificationFilters(user_id=PATIENT_ID, limit=4, page=2)
    )
    payments = await engine.get_user_notifications(
        NotificationFilters(user_id=PATIENT_ID, type=NotificationType.PAYMENT_CONFIRMED)
    )
    window = await engine.get_user_notifications(NotificationFilters(
        user_id=PATIENT_ID,
        start_date=NOW + timedelta(minutes=1),
        end_date=NOW + timedelta(minutes=3),
    ))

    assert (first.total, first.total_pages, len(first.notifications)) == (6, 2, 4)
    assert first.notifications[0].type == NotificationType.PAYMENT_CONFIRMED
    created = [n.created_at for n in first.notifications + second.notifications]
    assert created == sorted(created, reverse=True)
    assert len(second.notifications) == 2
    assert payments.total == 1
    assert window.total == 3


@pytest.mark.asyncio
async def test_mark_as_read_and_unread_count(services):
    engine = services.engine
    first = await engine.create_notification(make_request(), now=NOW)
    await engine.create_notification(make_request(), now=NOW)

    read = await engine.mark_as_read(first.id, PATIENT_ID, now=NOW + timedelta(minutes=1))
    again = await engine.mark_as_read(first.id, PATIENT_ID, now=NOW + timedelta(minutes=9))

    assert read.read_at == NOW + timedelta(minutes=1)
    assert again.read_at == read.read_at
    assert await engine.get_unread_count(PATIENT_ID) == 1
    unread = await engine.get_user_notifications(
        NotificationFilters(user_id=PATIENT_ID, unread_only=True)
    )
    assert unread.total == 1


@pytest.mark.asyncio
async def test_mark_as_read_rejects_other_users(services):
    notification = await services.engine.create_notification(make_request(), now=NOW)

    with pytest.raises(NotFoundError):
        await services.engine.mark_as_read(notification.id, OTHER_PATIENT_ID)
    with pytest.raises(NotFoundError):
        await services.engine.mark_as_read("does-not-exist", PATIENT_ID)


@pytest.mark.asyncio
async def test_mark_all_as_read(services):
    for _ in range(3):
        await services.engine.create_notification(make_request(), now=NOW)

    assert await services.engine.mark_all_as_read(PATIENT_ID, now=NOW) == 3
    assert await services.engine.mark_all_as_read(PATIENT_ID, now=NOW) == 0
    assert await services.engine.get_unread_count(PATIENT_ID) == 0


@pytest.mark.asyncio
async def test_only_delivered_notifications_can_be_read(services, email):
    engine = services.engine
    pending = await engine.create_notification(make_request(scheduled_at=NOW + timedelta(days=1)), now=NOW)
    email.fail_with = "mailbox unavailable"
    failed = await engine.create_notification(make_request(), now=NOW)
    email.fail_with = None
    delivered = await engine.create_notification(make_request(), now=NOW)

    still_pending = await engine.mark_as_read(pending.id, PATIENT_ID, now=NOW)
    marked = await engine.mark_all_as_read(PATIENT_ID, now=NOW)

    assert still_pending.status == NotificationStatus.PENDING
    assert still_pending.read_at is None
    assert marked == 1
    assert (await engine.get_notification(failed.id)).read_at is None
    assert (await engine.get_notification(delivered.id)).read_at == NOW


@pytest.mark.asyncio
async def test_stats_group_by_type_and_status(services, email):
    engine = services.engine
    await engine.create_notification(make_request(), now=NOW)
    await engine.create_notification(
        make_request(notification_type=NotificationType.PAYMENT_CONFIRMED), now=NOW
    )
    await engine.create_notification(make_request(scheduled_at=NOW + timedelta(days=1)), now=NOW)

    stats = await engine.get_notification_stats(PATIENT_ID)

    assert stats["total"] == 3
    assert stats["unread"] == 3
    assert stats["byType"] == {"APPOINTMENT_ACCEPTED": 2, "PAYMENT_CONFIRMED": 1}
    assert stats["byStatus"] == {"DELIVERED": 2, "PENDING": 1}
