"""
Notification models for the PM engine.
The engine only enqueues notifications; delivery transports live elsewhere.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum

from .database_models import UtcDatetime


class NotificationType(str, Enum):
    """Enumeration of notification types produced by the engine"""

    # Work Orders
    WO_ASSIGNED = "wo_assigned"
    WO_OVERDUE = "wo_overdue"
    WO_ESCALATED = "wo_escalated"

    # Maintenance (Preventive)
    PM_DUE = "pm_due"
    PM_ESCALATION = "pm_escalation"

    # Equipment
    EQUIPMENT_ALERT = "equipment_alert"


class NotificationPriority(str, Enum):
    """Priority levels for notifications"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"


class NotificationChannel(str, Enum):
    """Delivery channels for notifications"""
    IN_APP = "in_app"           # Show in application notifications panel
    PUSH = "push"               # Push notification to mobile/browser
    EMAIL = "email"             # Email notification
    SMS = "sms"                 # SMS notification
    WEBSOCKET = "websocket"     # Real-time websocket notification


class Notification(BaseModel):
    id: Optional[str] = None
    notification_type: NotificationType
    recipient_id: str
    sender_id: Optional[str] = None  # user id, or "system" for automated
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    channels: List[NotificationChannel] = Field(default_factory=lambda: [NotificationChannel.IN_APP])
    work_order_id: Optional[str] = None
    equipment_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    read: bool = False
    custom_data: Optional[Dict[str, Any]] = None
    created_at: Optional[UtcDatetime] = None
