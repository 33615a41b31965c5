"""
Derived, in-memory records produced by the compliance calculator, the
schedule generator and the automation loop. None of these are persisted.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from enum import Enum

from .database_models import Frequency, Criticality, WorkOrderPriority, UtcDatetime
from .escalation_models import MissedPMEscalationRules, ComplianceTargets


class TriggerType(str, Enum):
    TIME_BASED = "time_based"


class PMDueStatus(str, Enum):
    OVERDUE = "overdue"
    DUE = "due"
    SCHEDULED = "scheduled"


class ConflictType(str, Enum):
    EQUIPMENT_OCCUPIED = "equipment_occupied"


class SchedulingRule(BaseModel):
    id: str  # "rule_<templateId>"
    template_id: str
    name: str  # "<model> - <component>"
    equipment_models: List[str]
    component: str
    action: str
    frequency: Frequency
    estimated_duration: int  # minutes
    trigger_type: TriggerType = TriggerType.TIME_BASED
    auto_generate: bool = True
    is_active: bool = True


class TemplateCompliance(BaseModel):
    template_id: str
    component: str
    action: str
    frequency: Frequency
    completed_count: int = 0
    last_completed_date: Optional[UtcDatetime] = None
    next_due_date: UtcDatetime
    status: PMDueStatus
    missed: bool = False
    open_work_order_id: Optional[str] = None


class ComplianceRecord(BaseModel):
    equipment_id: str
    warehouse_id: str
    total_pm_count: int = 0
    missed_pm_count: int = 0
    last_pm_date: Optional[UtcDatetime] = None
    next_pm_date: Optional[UtcDatetime] = None
    compliance_percentage: float = 100.0
    templates: List[TemplateCompliance] = Field(default_factory=list)


class EquipmentComplianceRow(BaseModel):
    equipment_id: str
    asset_tag: str
    model: str
    criticality: Criticality
    compliance_rate: float
    last_pm_date: Optional[UtcDatetime] = None
    next_pm_date: Optional[UtcDatetime] = None
    overdue_count: int = 0


class MonthlyComplianceTrend(BaseModel):
    month: str  # "Jan 2024"
    scheduled: int
    completed: int
    compliance_rate: float


class WarehouseComplianceSummary(BaseModel):
    warehouse_id: str
    overall_compliance_rate: float
    total_pms_scheduled: int
    total_pms_completed: int
    overdue_count: int
    equipment_compliance: List[EquipmentComplianceRow] = Field(default_factory=list)
    monthly_trends: List[MonthlyComplianceTrend] = Field(default_factory=list)


class ScheduledPM(BaseModel):
    equipment_id: str
    template_id: str  # scheduling rule id, "rule_<templateId>"
    pm_template_id: str
    asset_tag: Optional[str] = None
    criticality: Criticality = Criticality.MEDIUM
    component: str
    action: str
    scheduled_date: UtcDatetime
    due_date: UtcDatetime
    due_status: PMDueStatus
    priority: WorkOrderPriority
    estimated_duration: int  # minutes


class Conflict(BaseModel):
    equipment_id: str
    template_id: str
    conflict_type: ConflictType = ConflictType.EQUIPMENT_OCCUPIED
    resolution: str = "Reschedule or combine with existing work order"
    existing_work_order_id: Optional[str] = None
    scheduled_date: Optional[UtcDatetime] = None


class ScheduleStatistics(BaseModel):
    total_scheduled: int = 0
    conflict_count: int = 0
    working_days: int = 0
    utilization_rate: float = 0.0
    by_priority: Dict[str, int] = Field(default_factory=dict)


class ScheduleResult(BaseModel):
    warehouse_id: str
    start_date: UtcDatetime
    end_date: UtcDatetime
    generated_at: UtcDatetime
    scheduled_pms: List[ScheduledPM] = Field(default_factory=list)
    conflicts: List[Conflict] = Field(default_factory=list)
    statistics: ScheduleStatistics = Field(default_factory=ScheduleStatistics)


class GlobalSchedulingSettings(BaseModel):
    auto_scheduling_enabled: bool = True
    default_lead_time: int = Field(default=2, ge=0)  # days
    working_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])  # ISO weekdays
    working_hours_start: str = "08:00"
    working_hours_end: str = "17:00"
    max_concurrent_pms: int = Field(default=10, ge=1)


class SchedulingConfig(BaseModel):
    warehouse_id: str
    global_settings: GlobalSchedulingSettings
    escalation_rules: MissedPMEscalationRules
    compliance_targets: ComplianceTargets


class AutomationRunResult(BaseModel):
    warehouse_id: str
    started_at: UtcDatetime
    finished_at: Optional[UtcDatetime] = None
    scheduled_count: int = 0
    created_count: int = 0
    skipped_existing: int = 0
    created_work_order_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class AutomationStatus(BaseModel):
    is_running: bool
    interval_minutes: int
    last_run_at: Optional[UtcDatetime] = None
    next_run_at: Optional[UtcDatetime] = None
    generated_count: int = 0
    last_results: List[AutomationRunResult] = Field(default_factory=list)
