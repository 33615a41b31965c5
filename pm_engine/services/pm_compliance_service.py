"""
PM Compliance Calculator

Given equipment, its applicable PM templates and its preventive work-order
history, computes next due dates, missed PM counts and a compliance
percentage.

Rules:
- next due = last completion + fixed frequency interval
- never completed: due from the install date (or creation date)
- a template counts as missed once when its due date has passed and no open
  PM work order covers it
- only the template the scheduler keeps for a (model, component) pair is scored
- compliance = (total - missed) / total * 100, 100 when there is nothing to measure
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from ..core.exceptions import NotFoundError
from ..database.storage_service import StorageService
from ..models.database_models import (
    Equipment, EquipmentStatus, FREQUENCY_DAYS, PmTemplate, WorkOrder, WorkOrderType,
)
from ..models.pm_models import (
    ComplianceRecord, EquipmentComplianceRow, MonthlyComplianceTrend, PMDueStatus,
    TemplateCompliance, WarehouseComplianceSummary,
)
from .schedule_formatter import start_of_day, utc_now

logger = logging.getLogger(__name__)


def work_order_matches_template(work_order: WorkOrder, template: PmTemplate) -> bool:
    """A preventive work order belongs to a template by link, or by component/action text for legacy orders"""
    if work_order.type != WorkOrderType.PREVENTIVE:
        return False
    if work_order.pm_template_id:
        return work_order.pm_template_id == template.id
    description = (work_order.description or "").lower()
    return template.component.lower() in description and template.action.lower() in description


def schedulable_templates(templates: Iterable[PmTemplate]) -> Tuple[List[PmTemplate], List[PmTemplate]]:
    """
    Split active templates into the ones that get scheduled and the duplicates.

    Only one template per (model, component) pair is scheduled, lowest id first.
    Compliance is measured against the same set.
    """
    kept: List[PmTemplate] = []
    duplicates: List[PmTemplate] = []
    seen = set()
    for template in sorted((t for t in templates if t.active), key=lambda t: t.id or ""):
        key = (template.model.strip().lower(), template.component.strip().lower())
        if key in seen:
            duplicates.append(template)
            continue
        seen.add(key)
        kept.append(template)
    return kept, duplicates


def due_status(due_date: datetime, now: datetime, lead_time_days: int) -> PMDueStatus:
    if due_date < now:
        return PMDueStatus.OVERDUE
    if due_date <= now + timedelta(days=lead_time_days):
        return PMDueStatus.DUE
    return PMDueStatus.SCHEDULED


class PMComplianceService:
    def __init__(self, storage: StorageService, clock: Callable[[], datetime] = utc_now, lead_time_days: int = 2):
        self.storage = storage
        self.clock = clock
        self.lead_time_days = lead_time_days

    @staticmethod
    def applicable_templates(equipment: Equipment, templates: Iterable[PmTemplate]) -> List[PmTemplate]:
        kept, _ = schedulable_templates(templates)
        return [t for t in kept if t.matches_model(equipment.model)]

    def evaluate_template(
        self,
        equipment: Equipment,
        template: PmTemplate,
        pm_work_orders: Iterable[WorkOrder],
        now: Optional[datetime] = None,
    ) -> TemplateCompliance:
        """Compute the due state of one template for one piece of equipment"""
        now = now or self.clock()
        matching = [wo for wo in pm_work_orders
                    if wo.equipment_id == equipment.id and work_order_matches_template(wo, template)]

        completion_dates = [wo.completed_at or wo.updated_at for wo in matching if wo.is_done]
        completion_dates = [d for d in completion_dates if d is not None]
        last_completed = max(completion_dates, default=None)

        if last_completed:
            next_due = last_completed + timedelta(days=FREQUENCY_DAYS[template.frequency])
        else:
            next_due = equipment.install_date or equipment.created_at or now

        open_orders = sorted(
            (wo for wo in matching if wo.is_open),
            key=lambda wo: (wo.due_date or now, wo.id or ""),
        )
        open_work_order_id = open_orders[0].id if open_orders else None

        return TemplateCompliance(
            template_id=template.id,
            component=template.component,
            action=template.action,
            frequency=template.frequency,
            completed_count=len(completion_dates),
            last_completed_date=last_completed,
            next_due_date=next_due,
            status=due_status(next_due, now, self.lead_time_days),
            missed=next_due < now and open_work_order_id is None,
            open_work_order_id=open_work_order_id,
        )

    def build_compliance_record(
        self,
        equipment: Equipment,
        warehouse_id: str,
        templates: Iterable[PmTemplate],
        pm_work_orders: Iterable[WorkOrder],
        now: Optional[datetime] = None,
    ) -> ComplianceRecord:
        now = now or self.clock()
        record = ComplianceRecord(equipment_id=equipment.id, warehouse_id=warehouse_id)

        if equipment.status != EquipmentStatus.ACTIVE:
            logger.debug(f"Equipment {equipment.id} is {equipment.status.value}; excluded from compliance scoring")
            return record

        pm_work_orders = list(pm_work_orders)
        for template in self.applicable_templates(equipment, templates):
            record.templates.append(self.evaluate_template(equipment, template, pm_work_orders, now))

        if not record.templates:
            return record

        completed = sum(t.completed_count for t in record.templates)
        record.missed_pm_count = sum(1 for t in record.templates if t.missed)
        record.total_pm_count = completed + record.missed_pm_count
        record.last_pm_date = max(
            (t.last_completed_date for t in record.templates if t.last_completed_date), default=None
        )
        record.next_pm_date = min(t.next_due_date for t in record.templates)
        if record.total_pm_count:
            record.compliance_percentage = round(
                (record.total_pm_count - record.missed_pm_count) / record.total_pm_count * 100, 2
            )
        return record

    async def check_compliance_status(self, equipment_id: str, warehouse_id: str) -> ComplianceRecord:
        """
        Compute the compliance record of one piece of equipment.

        Raises:
            NotFoundError: unknown equipment id
            StoreError: the store failed
        """
        equipment = await self.storage.get_equipment_by_id(equipment_id)
        if equipment is None:
            raise NotFoundError("equipment", equipment_id)

        templates = await self.storage.get_pm_templates(warehouse_id)
        pm_work_orders = await self.storage.get_work_orders(
            warehouse_id, {"equipment_id": equipment.id, "type": [WorkOrderType.PREVENTIVE]}
        )
        return self.build_compliance_record(equipment, warehouse_id, templates, pm_work_orders)

    async def get_warehouse_compliance(self, warehouse_id: str, months: int = 6) -> WarehouseComplianceSummary:
        """Warehouse-wide compliance with per-equipment rows and a monthly trend from PM history"""
        now = self.clock()
        equipment_list = [e for e in await self.storage.get_equipment(warehouse_id) if e.status == EquipmentStatus.ACTIVE]
        templates = await self.storage.get_pm_templates(warehouse_id)
        pm_work_orders = await self.storage.get_work_orders(warehouse_id, {"type": [WorkOrderType.PREVENTIVE]})

        by_equipment: Dict[str, List[WorkOrder]] = defaultdict(list)
        for wo in pm_work_orders:
            by_equipment[wo.equipment_id].append(wo)

        rows = []
        total_scheduled = 0
        total_missed = 0
        for equipment in sorted(equipment_list, key=lambda e: e.asset_tag):
            record = self.build_compliance_record(
                equipment, warehouse_id, templates, by_equipment.get(equipment.id, []), now
            )
            rows.append(EquipmentComplianceRow(
                equipment_id=equipment.id,
                asset_tag=equipment.asset_tag,
                model=equipment.model,
                criticality=equipment.criticality,
                compliance_rate=record.compliance_percentage,
                last_pm_date=record.last_pm_date,
                next_pm_date=record.next_pm_date,
                overdue_count=record.missed_pm_count,
            ))
            total_scheduled += record.total_pm_count
            total_missed += record.missed_pm_count

        total_completed = total_scheduled - total_missed
        overall = round(total_completed / total_scheduled * 100, 2) if total_scheduled else 100.0

        return WarehouseComplianceSummary(
            warehouse_id=warehouse_id,
            overall_compliance_rate=overall,
            total_pms_scheduled=total_scheduled,
            total_pms_completed=total_completed,
            overdue_count=total_missed,
            equipment_compliance=rows,
            monthly_trends=self._monthly_trends(pm_work_orders, now, months),
        )

    @staticmethod
    def _monthly_trends(pm_work_orders: List[WorkOrder], now: datetime, months: int) -> List[MonthlyComplianceTrend]:
        """Due vs completed preventive work orders per calendar month, oldest first"""
        current_month = start_of_day(now).replace(day=1)
        trends = []
        for offset in range(months - 1, -1, -1):
            month_start = current_month - relativedelta(months=offset)
            month_end = month_start + relativedelta(months=1)
            due = [wo for wo in pm_work_orders if wo.due_date and month_start <= wo.due_date < month_end]
            completed = sum(1 for wo in due if wo.is_done)
            trends.append(MonthlyComplianceTrend(
                month=month_start.strftime("%b %Y"),
                scheduled=len(due),
                completed=completed,
                compliance_rate=round(completed / len(due) * 100, 2) if due else 100.0,
            ))
        return trends
