"""
PM Schedule Generator

Builds scheduling rules from active PM templates and produces a
deterministic maintenance schedule for a date window, with advisory
conflicts against open work orders and utilization statistics.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from dateutil.rrule import DAILY, rrule

from ..core.config import Settings
from ..core.exceptions import ValidationFailure
from ..database.storage_service import StorageService
from ..models.database_models import (
    CRITICALITY_RANK, EquipmentStatus, PmTemplate, WorkOrder, WorkOrderPriority, WorkOrderType,
)
from ..models.pm_models import (
    Conflict, GlobalSchedulingSettings, PMDueStatus, ScheduledPM, ScheduleResult,
    ScheduleStatistics, SchedulingConfig, SchedulingRule,
)
from .escalation_rule_store import EscalationRuleStore
from .pm_compliance_service import (
    PMComplianceService, due_status, schedulable_templates, work_order_matches_template,
)
from .schedule_formatter import start_of_day, utc_now

logger = logging.getLogger(__name__)

PRIORITY_BY_DUE_STATUS = {
    PMDueStatus.OVERDUE: WorkOrderPriority.HIGH,
    PMDueStatus.DUE: WorkOrderPriority.MEDIUM,
    PMDueStatus.SCHEDULED: WorkOrderPriority.LOW,
}


def rule_id_for(template_id: str) -> str:
    return f"rule_{template_id}"


def count_working_days(start: datetime, end: datetime, working_days: List[int]) -> int:
    """Calendar days in [start, end] whose ISO weekday is a working day"""
    weekdays = [d - 1 for d in working_days if 1 <= d <= 7]
    if not weekdays:
        return 0
    return len(list(rrule(DAILY, dtstart=start_of_day(start), until=end, byweekday=weekdays)))


class PMSchedulerService:
    def __init__(
        self,
        storage: StorageService,
        compliance: PMComplianceService,
        rule_store: EscalationRuleStore,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.compliance = compliance
        self.rule_store = rule_store
        self.settings = settings
        self.clock = clock

    @staticmethod
    def build_rules(templates: List[PmTemplate]) -> Dict[str, SchedulingRule]:
        """One rule per (model, component) pair; the first active template wins"""
        kept, duplicates = schedulable_templates(templates)
        for template in duplicates:
            logger.warning(f"⚠️ Template {template.id} duplicates {template.model} - {template.component}; skipped")

        rules: Dict[str, SchedulingRule] = {}
        for template in kept:
            rule = SchedulingRule(
                id=rule_id_for(template.id),
                template_id=template.id,
                name=f"{template.model} - {template.component}",
                equipment_models=[template.model],
                component=template.component,
                action=template.action,
                frequency=template.frequency,
                estimated_duration=template.estimated_duration,
            )
            rules[rule.id] = rule
        return rules

    async def load_scheduling_rules(self, warehouse_id: str) -> List[SchedulingRule]:
        templates = await self.storage.get_pm_templates(warehouse_id)
        rules = self.build_rules(templates)
        logger.info(f"Loaded {len(rules)} scheduling rules for warehouse {warehouse_id}")
        return list(rules.values())

    async def load_scheduling_config(self, warehouse_id: str) -> SchedulingConfig:
        policy = await self.rule_store.get_policy(warehouse_id)
        return SchedulingConfig(
            warehouse_id=warehouse_id,
            global_settings=GlobalSchedulingSettings(
                auto_scheduling_enabled=self.settings.ENABLE_PM_AUTOMATION,
                default_lead_time=self.settings.PM_LEAD_TIME_DAYS,
                working_days=list(self.settings.PM_WORKING_DAYS),
                working_hours_start=self.settings.PM_WORKING_HOURS_START,
                working_hours_end=self.settings.PM_WORKING_HOURS_END,
                max_concurrent_pms=self.settings.PM_MAX_CONCURRENT,
            ),
            escalation_rules=policy.missed_pm,
            compliance_targets=policy.compliance_targets,
        )

    async def generate_optimized_schedule(
        self,
        warehouse_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> ScheduleResult:
        """
        Generate the PM schedule for a warehouse over [start_date, end_date].

        Raises:
            ValidationFailure: start_date is after end_date
            StoreError: any store read failed
        """
        if start_date > end_date:
            raise ValidationFailure(f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}")

        now = self.clock()
        config = await self.load_scheduling_config(warehouse_id)
        templates = {t.id: t for t in await self.storage.get_pm_templates(warehouse_id)}
        rules = self.build_rules(list(templates.values()))

        equipment_list = [e for e in await self.storage.get_equipment(warehouse_id) if e.status == EquipmentStatus.ACTIVE]
        # Read fresh on every pass
        work_orders = await self.storage.get_work_orders(warehouse_id)

        pm_by_equipment: Dict[str, List[WorkOrder]] = defaultdict(list)
        open_by_equipment: Dict[str, List[WorkOrder]] = defaultdict(list)
        for wo in work_orders:
            if wo.type == WorkOrderType.PREVENTIVE:
                pm_by_equipment[wo.equipment_id].append(wo)
            if wo.is_open and wo.due_date and start_date <= wo.due_date <= end_date:
                open_by_equipment[wo.equipment_id].append(wo)

        lead_days = config.global_settings.default_lead_time
        scheduled: List[ScheduledPM] = []
        for rule in rules.values():
            template = templates[rule.template_id]
            for equipment in equipment_list:
                if not template.matches_model(equipment.model):
                    continue

                compliance = self.compliance.evaluate_template(
                    equipment, template, pm_by_equipment.get(equipment.id, []), now
                )
                due = compliance.next_due_date
                if due > end_date:
                    continue

                status = due_status(due, now, lead_days)
                scheduled.append(ScheduledPM(
                    equipment_id=equipment.id,
                    template_id=rule.id,
                    pm_template_id=template.id,
                    asset_tag=equipment.asset_tag,
                    criticality=equipment.criticality,
                    component=rule.component,
                    action=rule.action,
                    scheduled_date=max(due, start_date),
                    due_date=due,
                    due_status=status,
                    priority=PRIORITY_BY_DUE_STATUS[status],
                    estimated_duration=rule.estimated_duration,
                ))

        scheduled.sort(key=lambda pm: (
            pm.scheduled_date, -CRITICALITY_RANK[pm.criticality], pm.equipment_id, pm.template_id,
        ))

        conflicts = []
        for pm in scheduled:
            existing = self._conflicting_order(open_by_equipment.get(pm.equipment_id, []), pm, templates)
            if existing is not None:
                conflicts.append(Conflict(
                    equipment_id=pm.equipment_id,
                    template_id=pm.template_id,
                    existing_work_order_id=existing.id,
                    scheduled_date=pm.scheduled_date,
                ))

        working_days = count_working_days(start_date, end_date, config.global_settings.working_days)
        capacity = working_days * config.global_settings.max_concurrent_pms
        utilization = min(100.0, round(len(scheduled) / capacity * 100, 2)) if capacity else 0.0

        statistics = ScheduleStatistics(
            total_scheduled=len(scheduled),
            conflict_count=len(conflicts),
            working_days=working_days,
            utilization_rate=utilization,
            by_priority=dict(Counter(pm.priority.value for pm in scheduled)),
        )
        logger.info(
            f"📅 Schedule for {warehouse_id}: {statistics.total_scheduled} PMs, "
            f"{statistics.conflict_count} conflicts, {utilization}% utilization"
        )

        return ScheduleResult(
            warehouse_id=warehouse_id,
            start_date=start_date,
            end_date=end_date,
            generated_at=now,
            scheduled_pms=scheduled,
            conflicts=conflicts,
            statistics=statistics,
        )

    @staticmethod
    def _conflicting_order(open_orders: List[WorkOrder], pm: ScheduledPM,
                           templates: Dict[str, PmTemplate]) -> Optional[WorkOrder]:
        """Earliest open work order on the same equipment inside the window"""
        if not open_orders:
            return None
        template = templates[pm.pm_template_id]
        # Prefer the order that already covers this PM, so it is named in the conflict
        covering = [wo for wo in open_orders if work_order_matches_template(wo, template)]
        candidates = covering or open_orders
        return min(candidates, key=lambda wo: (wo.due_date, wo.id or ""))
