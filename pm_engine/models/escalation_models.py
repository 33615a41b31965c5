from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from enum import Enum

from .database_models import ProfileRole, WorkOrderPriority, UtcDatetime
from .notification_models import NotificationChannel


class EscalationRule(BaseModel):
    """Time-threshold rule: open work orders older than the threshold move up to a role"""
    id: str
    name: str
    priority: WorkOrderPriority
    time_threshold_hours: float = Field(gt=0)
    escalate_to_role: ProfileRole
    notification_channels: List[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.EMAIL]
    )
    active: bool = True


class MissedPMAction(str, Enum):
    NOTIFY = "notify"
    REASSIGN = "reassign"
    ESCALATE = "escalate"


class MissedPMEscalationLevel(BaseModel):
    level: int = Field(ge=1, le=3)
    delay_hours: float = Field(ge=0)
    recipients: List[ProfileRole]
    actions: List[MissedPMAction]


class MissedPMEscalationRules(BaseModel):
    overdue_pm_hours: float = 24
    missed_pm_hours: float = 48
    escalation_levels: List[MissedPMEscalationLevel] = Field(default_factory=list)


class ComplianceTargets(BaseModel):
    overall_compliance_rate: float = Field(default=95, ge=0, le=100)
    critical_equipment_rate: float = Field(default=100, ge=0, le=100)
    max_overdue_days: int = Field(default=3, ge=0)


class WarehouseEscalationPolicy(BaseModel):
    """Single source of truth for every escalation rule of one warehouse"""
    warehouse_id: str
    time_rules: List[EscalationRule]
    missed_pm: MissedPMEscalationRules
    compliance_targets: ComplianceTargets
    compliance_channels: List[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.EMAIL, NotificationChannel.SMS]
    )
    updated_at: Optional[UtcDatetime] = None

    def rule_for_priority(self, priority: WorkOrderPriority) -> Optional[EscalationRule]:
        for rule in self.time_rules:
            if rule.active and rule.priority == priority:
                return rule
        return None


class EscalationAction(BaseModel):
    work_order_id: str
    escalation_level: int
    escalated_to_user_id: str
    escalated_at: UtcDatetime
    reason: str
    previous_assignee: Optional[str] = None
    escalated_by: str = "system"
    manual: bool = False
    warehouse_id: Optional[str] = None


class ComplianceEscalation(BaseModel):
    """Notification-only escalation raised for non-compliant equipment"""
    equipment_id: str
    asset_tag: str
    compliance_percentage: float
    target_percentage: float
    missed_pm_count: int
    level: int = 1
    notified_user_ids: List[str] = Field(default_factory=list)


class EscalationStats(BaseModel):
    total_escalated: int = 0
    escalated_today: int = 0
    by_level: Dict[int, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)


class EscalationRunResult(BaseModel):
    warehouse_id: Optional[str] = None
    processed_count: int = 0
    escalated_count: int = 0
    skipped_count: int = 0
    actions: List[EscalationAction] = Field(default_factory=list)
    compliance_escalations: List[ComplianceEscalation] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
