"""
Notification router.

User endpoints are scoped to the authenticated user: list (with
filters), unread count, stats, mark read and preferences. Admins can
create single or bulk notifications and purge old jobs. The process-*
endpoints are meant for cron and require the internal API key.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from database import get_database
from models.notification import (
    BulkNotificationCreate,
    Notification,
    NotificationCreate,
    NotificationFilters,
    NotificationStatus,
    NotificationType,
)
from models.preference import NotificationPreference, PreferenceUpdate
from notifications import NotificationServices, build_services
from notifications.errors import NotFoundError
from routers.auth import get_current_user, require_admin, require_internal_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_services() -> NotificationServices:
    """Dependency: notification components bound to the current database."""
    return build_services(get_database())


def _serialize_notification(notification: Notification) -> dict:
    """Convert a Notification to an API-friendly dict (snake_case keys)."""
    return notification.model_dump(mode="json")


def _serialize_preference(preference: NotificationPreference) -> dict:
    return preference.model_dump(mode="json")


# ============================================================
# User endpoints
# ============================================================

@router.get("")
async def list_notifications(
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    status: Optional[NotificationStatus] = Query(None),
    unread_only: bool = Query(False, alias="unreadOnly"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """List notifications for the current user, newest first.

    Returns:
        Dict with notifications and pagination info.
    """
    result = await services.engine.get_user_notifications(NotificationFilters(
        user_id=current_user["id"],
        type=notification_type,
        status=status,
        unread_only=unread_only,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    ))
    return {
        "notifications": [_serialize_notification(n) for n in result.notifications],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "totalPages": result.total_pages,
        },
    }


@router.get("/unread-count")
async def get_unread_count(
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Get the count of unread notifications."""
    return {"unread": await services.engine.get_unread_count(current_user["id"])}


@router.get("/stats")
async def get_stats(
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Totals by type and status for the current user."""
    return await services.engine.get_notification_stats(current_user["id"])


@router.get("/preferences")
async def get_preferences(
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Current user's preferences (created with defaults on first read)."""
    return _serialize_preference(await services.preferences.get(current_user["id"]))


@router.put("/preferences")
async def update_preferences(
    changes: PreferenceUpdate,
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Partially update the current user's preferences."""
    preference = await services.preferences.update(current_user["id"], changes)
    return _serialize_preference(preference)


@router.put("/read-all")
async def mark_all_as_read(
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Mark all notifications as read for the current user.

    Returns:
        Dict with count of notifications marked as read.
    """
    marked = await services.engine.mark_all_as_read(current_user["id"])
    return {"success": True, "marked": marked}


# ============================================================
# Admin endpoints
# ============================================================

@router.post("", status_code=201)
async def create_notification(
    request: NotificationCreate,
    admin: dict = Depends(require_admin),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Create a notification; delivered now unless scheduled_at is in the future."""
    notification = await services.engine.create_notification(request)
    logger.info(f"Notification {notification.id} created by admin {admin['id']}")
    return _serialize_notification(notification)


@router.post("/bulk", status_code=201)
async def create_bulk_notification(
    request: BulkNotificationCreate,
    admin: dict = Depends(require_admin),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Send the same notification to many users.

    Returns:
        Dict with the created notifications and how many users were skipped.
    """
    created = await services.engine.send_bulk_notification(request)
    return {
        "notifications": [_serialize_notification(n) for n in created],
        "created": len(created),
        "skipped": len(request.user_ids) - len(created),
    }


@router.post("/cleanup-jobs")
async def cleanup_jobs(
    days_old: int = Query(30, alias="daysOld"),
    admin: dict = Depends(require_admin),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Delete finished scheduled jobs older than daysOld days."""
    deleted = await services.processor.cleanup_old_jobs(days_old)
    return {"deleted": deleted}


# ============================================================
# System endpoints (cron)
# ============================================================

@router.post("/process-scheduled", dependencies=[Depends(require_internal_key)])
async def process_scheduled(
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Deliver scheduled notifications that have come due."""
    return {"processed": await services.processor.process_scheduled_notifications()}


@router.post("/process-reminders", dependencies=[Depends(require_internal_key)])
async def process_reminders(
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Execute due appointment reminder jobs."""
    return {"processed": await services.processor.process_due_reminders()}


# ============================================================
# Single notification (keep after the fixed paths)
# ============================================================

@router.get("/{notification_id}")
async def get_notification(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Fetch one of the current user's notifications."""
    notification = await services.engine.get_notification(notification_id)
    if notification.user_id != current_user["id"]:
        raise NotFoundError("Notification", notification_id)
    return _serialize_notification(notification)


@router.put("/{notification_id}/read")
async def mark_as_read(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Mark a notification as read.

    Raises:
        NotFoundError: If it doesn't exist or isn't the user's (404).
    """
    notification = await services.engine.mark_as_read(notification_id, current_user["id"])
    return _serialize_notification(notification)
