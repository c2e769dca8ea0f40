"""
Notification engine.

Owns the notification lifecycle: creation, the immediate-vs-deferred
decision, delivery through the ChannelDispatcher and the all-or-nothing
aggregation of channel results. Also serves the read side (listing,
unread counts, stats, mark-as-read).

Status flow:
    created with scheduledAt in the future → PENDING
    created otherwise                      → SENT, delivered right away
    delivered                              → DELIVERED if every channel
                                             succeeded, else FAILED

DELIVERED and FAILED are terminal. Writes that finalize a notification
are guarded on its current status, so a notification that was already
finalized by another caller is left alone.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.notification import (
    BulkNotificationCreate,
    ChannelResult,
    Notification,
    NotificationCreate,
    NotificationFilters,
    NotificationPage,
    NotificationStatus,
)
from notifications.dispatcher import ChannelDispatcher
from notifications.errors import NotFoundError, NotificationError, wrap_persistence
from notifications.preferences import PreferenceStore
from sqlite_db import ObjectId, to_utc

logger = logging.getLogger(__name__)

_OPEN_STATUSES = [NotificationStatus.PENDING.value, NotificationStatus.SENT.value]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEngine:
    """Creates, delivers and queries notifications.

    Args:
        db: Connected SQLiteDatabase.
        dispatcher: Sends a notification over its channels.
        preferences: Source of per-user preferences.
    """

    def __init__(self, db, dispatcher: ChannelDispatcher, preferences: PreferenceStore):
        self.db = db
        self.dispatcher = dispatcher
        self.preferences = preferences

    # ============================================================
    # Write side
    # ============================================================

    async def create_notification(self, request: NotificationCreate,
                                  now: Optional[datetime] = None) -> Notification:
        """Persist a notification and deliver it unless it is deferred.

        Args:
            request: What to send, to whom, on which channels.
            now: Current time (defaults to the wall clock).

        Returns:
            The stored notification, after delivery when it was immediate.

        Raises:
            ValueError: If no channels were requested.
            PersistenceError: If the store rejects the insert.
            NotificationError: If immediate delivery raised; the
                notification is left FAILED.
        """
        if not request.channels:
            raise ValueError("At least one channel is required")

        now = to_utc(now) if now else _utcnow()
        scheduled_at = to_utc(request.scheduled_at) if request.scheduled_at else None
        deferred = scheduled_at is not None and scheduled_at > now

        doc: Dict[str, Any] = {
            "_id": str(ObjectId()),
            "userId": request.user_id,
            "type": request.type.value,
            "title": request.title,
            "message": request.message,
            "data": request.data,
            "channels": [c.value for c in request.channels],
            "status": (NotificationStatus.PENDING if deferred else NotificationStatus.SENT).value,
            "scheduledAt": scheduled_at,
            "sentAt": None,
            "readAt": None,
            "createdAt": now,
            "updatedAt": now,
        }
        with wrap_persistence("Failed to create notification"):
            await self.db.notifications.insert_one(doc)

        notification = Notification.model_validate(doc)
        if deferred:
            logger.info(
                f"Notification {notification.id} ({request.type.value}) scheduled "
                f"for user {request.user_id} at {scheduled_at.isoformat()}"
            )
            return notification

        try:
            await self.deliver_notification(notification, now=now)
        except NotificationError as e:
            logger.error(f"Delivery of notification {notification.id} failed: {e}", exc_info=True)
            await self._mark_failed(notification.id, now)
            raise
        return await self.get_notification(notification.id)

    async def deliver_notification(self, notification: Notification,
                                   now: Optional[datetime] = None) -> List[ChannelResult]:
        """Dispatch on every channel and record the aggregate outcome.

        sentAt is stamped whether or not delivery succeeded. The write is
        skipped if the notification is already DELIVERED or FAILED.

        Returns:
            Per-channel results, in request order.
        """
        now = to_utc(now) if now else _utcnow()
        preference = await self.preferences.get(notification.user_id)
        results = await self.dispatcher.dispatch(notification, preference)

        succeeded = bool(results) and all(r.success for r in results)
        status = NotificationStatus.DELIVERED if succeeded else NotificationStatus.FAILED

        with wrap_persistence(f"Failed to update notification {notification.id}"):
            update = await self.db.notifications.update_one(
                {"_id": notification.id, "status": {"$in": _OPEN_STATUSES}},
                {"$set": {
                    "status": status.value,
                    "sentAt": now,
                    "updatedAt": now,
                    "channelResults": [r.model_dump(mode="json") for r in results],
                }},
            )

        if update.matched_count == 0:
            logger.warning(f"Notification {notification.id} was already finalized, result discarded")
        elif succeeded:
            logger.info(f"Notification {notification.id} delivered via "
                        f"{[r.channel.value for r in results]}")
        else:
            failed = [r.channel.value for r in results if not r.success]
            logger.warning(f"Notification {notification.id} failed on {failed}")

        return results

    async def send_bulk_notification(self, request: BulkNotificationCreate,
                                     now: Optional[datetime] = None) -> List[Notification]:
        """Create the same notification for each user, one after another.

        A failure for one user is logged and skipped; notifications
        already created for other users are kept.

        Returns:
            The notifications that were created.
        """
        created: List[Notification] = []
        for user_id in request.user_ids:
            try:
                created.append(await self.create_notification(request.for_user(user_id), now=now))
            except (NotificationError, ValueError) as e:
                logger.warning(f"Bulk notification skipped user {user_id}: {e}")

        logger.info(f"Bulk notification sent to {len(created)}/{len(request.user_ids)} users")
        return created

    async def process_scheduled_notifications(self, now: Optional[datetime] = None) -> int:
        """Deliver every PENDING notification whose scheduledAt has passed.

        Each notification is first claimed (PENDING → SENT) with a
        status-guarded update; one that another poller claimed first is
        skipped. Calling this again with nothing newly due returns 0.

        Returns:
            Number of notifications processed.
        """
        now = to_utc(now) if now else _utcnow()
        with wrap_persistence("Failed to load scheduled notifications"):
            due = await self.db.notifications.find({
                "status": NotificationStatus.PENDING.value,
                "scheduledAt": {"$lte": now},
            }).sort("scheduledAt", 1).to_list()

        processed = 0
        for doc in due:
            notification_id = doc["_id"]
            with wrap_persistence(f"Failed to claim notification {notification_id}"):
                claim = await self.db.notifications.update_one(
                    {"_id": notification_id, "status": NotificationStatus.PENDING.value},
                    {"$set": {"status": NotificationStatus.SENT.value, "updatedAt": now}},
                )
            if claim.matched_count == 0:
                logger.info(f"Notification {notification_id} claimed elsewhere, skipping")
                continue

            doc["status"] = NotificationStatus.SENT.value
            try:
                await self.deliver_notification(Notification.model_validate(doc), now=now)
            except NotificationError as e:
                logger.error(f"Delivery of notification {notification_id} failed: {e}", exc_info=True)
                await self._mark_failed(notification_id, now)
            processed += 1

        if processed:
            logger.info(f"Processed {processed} scheduled notification(s)")
        return processed

    async def _mark_failed(self, notification_id: str, now: datetime) -> None:
        with wrap_persistence(f"Failed to update notification {notification_id}"):
            await self.db.notifications.update_one(
                {"_id": notification_id, "status": {"$in": _OPEN_STATUSES}},
                {"$set": {"status": NotificationStatus.FAILED.value,
                          "sentAt": now, "updatedAt": now}},
            )

    # ============================================================
    # Read side
    # ============================================================

    async def get_notification(self, notification_id: str) -> Notification:
        """Fetch one notification.

        Raises:
            NotFoundError: If it does not exist.
        """
        with wrap_persistence(f"Failed to load notification {notification_id}"):
            doc = await self.db.notifications.find_one({"_id": notification_id})
        if doc is None:
            raise NotFoundError("Notification", notification_id)
        return Notification.model_validate(doc)

    async def get_user_notifications(self, filters: NotificationFilters) -> NotificationPage:
        """List a user's notifications, newest first, one page at a time."""
        query: Dict[str, Any] = {"userId": filters.user_id}
        if filters.type:
            query["type"] = filters.type.value
        if filters.status:
            query["status"] = filters.status.value
        if filters.unread_only:
            query["readAt"] = None
        created_range: Dict[str, datetime] = {}
        if filters.start_date:
            created_range["$gte"] = to_utc(filters.start_date)
        if filters.end_date:
            created_range["$lte"] = to_utc(filters.end_date)
        if created_range:
            query["createdAt"] = created_range

        skip = (filters.page - 1) * filters.limit
        with wrap_persistence(f"Failed to list notifications for user {filters.user_id}"):
            total = await self.db.notifications.count_documents(query)
            docs = await (
                self.db.notifications.find(query)
                .sort("createdAt", -1)
                .skip(skip)
                .limit(filters.limit)
                .to_list()
            )

        return NotificationPage(
            notifications=[Notification.model_validate(d) for d in docs],
            total=total,
            page=filters.page,
            limit=filters.limit,
            total_pages=math.ceil(total / filters.limit) if total else 0,
        )

    async def get_unread_count(self, user_id: str) -> int:
        with wrap_persistence(f"Failed to count notifications for user {user_id}"):
            return await self.db.notifications.count_documents(
                {"userId": user_id, "readAt": None}
            )

    async def get_notification_stats(self, user_id: str) -> Dict[str, Any]:
        """Totals for a user's notifications.

        Returns:
            {"total": int, "unread": int, "byType": {type: n}, "byStatus": {status: n}}
        """
        match = {"$match": {"userId": user_id}}
        with wrap_persistence(f"Failed to compute stats for user {user_id}"):
            total = await self.db.notifications.count_documents({"userId": user_id})
            unread = await self.get_unread_count(user_id)
            by_type = await self.db.notifications.aggregate([
                match, {"$group": {"_id": "$type", "count": {"$sum": 1}}},
            ])
            by_status = await self.db.notifications.aggregate([
                match, {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ])

        return {
            "total": total,
            "unread": unread,
            "byType": {g["_id"]: g["count"] for g in by_type},
            "byStatus": {g["_id"]: g["count"] for g in by_status},
        }

    async def mark_as_read(self, notification_id: str, user_id: str,
                           now: Optional[datetime] = None) -> Notification:
        """Set readAt on a notification the user owns.

        Only DELIVERED notifications can be read; any other one is
        returned unchanged. Marking an already-read notification keeps the
        original readAt.

        Raises:
            NotFoundError: If the notification doesn't exist or belongs to
                someone else.
        """
        now = to_utc(now) if now else _utcnow()
        owned = {"_id": notification_id, "userId": user_id}
        with wrap_persistence(f"Failed to mark notification {notification_id} as read"):
            if await self.db.notifications.count_documents(owned) == 0:
                raise NotFoundError("Notification", notification_id)
            await self.db.notifications.update_one(
                {**owned, "status": NotificationStatus.DELIVERED.value, "readAt": None},
                {"$set": {"readAt": now, "updatedAt": now}},
            )
        return await self.get_notification(notification_id)

    async def mark_all_as_read(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Mark every unread DELIVERED notification of a user as read.

        Returns:
            Number of notifications marked.
        """
        now = to_utc(now) if now else _utcnow()
        with wrap_persistence(f"Failed to mark notifications read for user {user_id}"):
            result = await self.db.notifications.update_many(
                {"userId": user_id, "status": NotificationStatus.DELIVERED.value, "readAt": None},
                {"$set": {"readAt": now, "updatedAt": now}},
            )
        logger.info(f"Marked {result.modified_count} notification(s) read for user {user_id}")
        return result.modified_count
