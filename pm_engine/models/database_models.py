from pydantic import BaseModel, BeforeValidator, Field
from typing import Annotated, Optional
from datetime import datetime
from enum import Enum

from ..services.schedule_formatter import to_utc


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


# Fixed interval mapping used for every next-due calculation
FREQUENCY_DAYS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.MONTHLY: 30,
    Frequency.QUARTERLY: 90,
    Frequency.ANNUALLY: 365,
}


class EquipmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class Criticality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


CRITICALITY_RANK = {
    Criticality.LOW: 0,
    Criticality.MEDIUM: 1,
    Criticality.HIGH: 2,
    Criticality.CRITICAL: 3,
}


class WorkOrderType(str, Enum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    EMERGENCY = "emergency"


class WorkOrderStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CLOSED = "closed"


OPEN_STATUSES = {WorkOrderStatus.NEW, WorkOrderStatus.ASSIGNED, WorkOrderStatus.IN_PROGRESS}
DONE_STATUSES = {WorkOrderStatus.COMPLETED, WorkOrderStatus.VERIFIED, WorkOrderStatus.CLOSED}


class WorkOrderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class ProfileRole(str, Enum):
    TECHNICIAN = "technician"
    SUPERVISOR = "supervisor"
    MANAGER = "manager"
    ADMIN = "admin"
    INVENTORY_CLERK = "inventory_clerk"
    CONTRACTOR = "contractor"
    REQUESTER = "requester"


# Stored timestamps come back as strings, naive datetimes or Firestore values
UtcDatetime = Annotated[datetime, BeforeValidator(to_utc)]


# Warehouse Model
class Warehouse(BaseModel):
    id: Optional[str] = None
    name: str
    address: Optional[str] = None
    timezone: str = Field(default="UTC")
    operating_hours_start: str = Field(default="08:00")
    operating_hours_end: str = Field(default="17:00")
    active: bool = Field(default=True)
    created_at: Optional[UtcDatetime] = None


# Profile Model
class Profile(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    role: ProfileRole
    warehouse_id: Optional[str] = None
    active: bool = Field(default=True)
    created_at: Optional[UtcDatetime] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or (self.email or self.id or "unknown")


# Equipment Model
class Equipment(BaseModel):
    id: Optional[str] = None
    asset_tag: str
    model: str
    description: Optional[str] = None
    area: Optional[str] = None
    status: EquipmentStatus = Field(default=EquipmentStatus.ACTIVE)
    criticality: Criticality = Field(default=Criticality.MEDIUM)
    install_date: Optional[UtcDatetime] = None
    manufacturer: Optional[str] = None
    serial_number: Optional[str] = None
    warehouse_id: str
    created_at: Optional[UtcDatetime] = None


# PM Template Model
class PmTemplate(BaseModel):
    id: Optional[str] = None
    model: str  # equipment model match string
    component: str
    action: str
    description: Optional[str] = None
    estimated_duration: int = Field(default=60, ge=0)  # minutes
    frequency: Frequency
    active: bool = Field(default=True)
    warehouse_id: str
    created_at: Optional[UtcDatetime] = None

    def matches_model(self, equipment_model: Optional[str]) -> bool:
        if not equipment_model:
            return False
        return self.model.strip().lower() == equipment_model.strip().lower()


# Work Order Model
class WorkOrder(BaseModel):
    id: Optional[str] = None
    fo_number: Optional[str] = None  # e.g. "PM-20240103-1A2B3C"
    type: WorkOrderType
    description: str
    area: Optional[str] = None
    asset_model: Optional[str] = None
    status: WorkOrderStatus = Field(default=WorkOrderStatus.NEW)
    priority: WorkOrderPriority = Field(default=WorkOrderPriority.MEDIUM)
    requested_by: Optional[str] = None
    assigned_to: Optional[str] = None
    equipment_id: Optional[str] = None
    pm_template_id: Optional[str] = None  # set on generated preventive orders
    pm_rule_id: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    estimated_hours: Optional[float] = None
    notes: Optional[str] = None
    escalated: bool = Field(default=False)
    escalation_level: int = Field(default=0, ge=0, le=3)
    warehouse_id: str
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES
