import logging
from typing import Any, Dict, List, Optional

from ..database.storage_service import StorageService
from ..models.notification_models import (
    Notification, NotificationChannel, NotificationPriority, NotificationType,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """Enqueues notifications for delivery; transports pick them up from the store"""

    def __init__(self, storage: StorageService):
        self.storage = storage

    async def create_notification(
        self,
        notification_type: NotificationType,
        recipient_id: str,
        title: str,
        message: str,
        sender_id: Optional[str] = "system",
        priority: NotificationPriority = NotificationPriority.NORMAL,
        channels: Optional[List[NotificationChannel]] = None,
        work_order_id: Optional[str] = None,
        equipment_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Create a notification record

        Returns:
            The stored notification, id populated
        """
        notification = Notification(
            notification_type=notification_type,
            recipient_id=recipient_id,
            sender_id=sender_id,
            title=title,
            message=message,
            priority=priority,
            channels=channels or [NotificationChannel.IN_APP],
            work_order_id=work_order_id,
            equipment_id=equipment_id,
            warehouse_id=warehouse_id,
            custom_data=custom_data,
        )
        stored = await self.storage.create_notification(notification)
        logger.info(f"Queued {notification_type.value} notification {stored.id} for {recipient_id}")
        return stored
