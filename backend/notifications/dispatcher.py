"""
Channel dispatcher.

Attempts delivery of one notification on each of its requested channels,
in request order, and reports a ChannelResult per channel. Eligibility
comes from the recipient's preferences; a channel the user has switched
off (or whose category they declined) is skipped, not attempted.

Transport failures never escape dispatch(): they become failed results
carrying the error text.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from models.notification import ChannelResult, Notification, NotificationChannel
from models.preference import NotificationPreference
from notifications.email_service import EmailTransport
from notifications.errors import ChannelDeliveryError
from notifications.preferences import is_category_eligible, is_channel_eligible
from notifications.templates import TemplateRenderer

logger = logging.getLogger(__name__)


class ChannelDispatcher:
    """Sends a notification over EMAIL, IN_APP and PUSH.

    Args:
        db: Connected SQLiteDatabase (users collection supplies emails).
        email_transport: Transport used for EMAIL.
        renderer: Template renderer for email content.
    """

    def __init__(self, db, email_transport: EmailTransport,
                 renderer: Optional[TemplateRenderer] = None):
        self.db = db
        self.email_transport = email_transport
        self.renderer = renderer or TemplateRenderer()

    def is_eligible(self, notification: Notification,
                    preference: NotificationPreference,
                    channel: NotificationChannel) -> bool:
        """Whether `channel` may be used for this notification.

        EMAIL additionally honours the category switches; IN_APP and PUSH
        only look at the channel switch.
        """
        if not is_channel_eligible(preference, channel):
            return False
        if channel == NotificationChannel.EMAIL:
            return is_category_eligible(preference, notification.type)
        return True

    async def dispatch(self, notification: Notification,
                       preference: NotificationPreference) -> List[ChannelResult]:
        """Attempt every requested channel and collect the outcomes.

        Args:
            notification: The persisted notification.
            preference: The recipient's preferences.

        Returns:
            One ChannelResult per requested channel, in request order.
        """
        results: List[ChannelResult] = []
        for channel in notification.channels:
            if not self.is_eligible(notification, preference, channel):
                logger.info(
                    f"Skipping {channel.value} for notification {notification.id}: "
                    f"disabled by user {notification.user_id}"
                )
                results.append(ChannelResult(channel=channel, success=False))
                continue

            try:
                if channel == NotificationChannel.EMAIL:
                    await self._send_email(notification)
                elif channel == NotificationChannel.PUSH:
                    await self._send_push(notification)
                # IN_APP: the stored notification is the delivery
            except Exception as e:
                logger.warning(
                    f"{channel.value} delivery failed for notification "
                    f"{notification.id}: {e}"
                )
                results.append(ChannelResult(channel=channel, success=False, error=str(e)))
                continue

            results.append(ChannelResult(
                channel=channel,
                success=True,
                delivered_at=datetime.now(timezone.utc),
            ))

        return results

    async def _send_email(self, notification: Notification) -> None:
        user = await self.db.users.find_one({"_id": notification.user_id})
        email = user.get("email") if user else None
        if not email:
            raise ChannelDeliveryError(f"No email address for user {notification.user_id}")

        content = self.renderer.render(
            notification.type,
            notification.data,
            title=notification.title,
            message=notification.message,
        )
        await self.email_transport.send(email, content.subject, content.html, content.text)

    async def _send_push(self, notification: Notification) -> None:
        # No push provider yet; treated as delivered
        logger.debug(f"Push stub: notification {notification.id} for user {notification.user_id}")
