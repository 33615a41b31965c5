"""
Escalation Service

Pushes ownership of work up the role hierarchy and notifies the new owner.

Two triggers, one rule store per warehouse:
- Time-based: open work orders (status new/assigned) older than the
  threshold for their priority are reassigned to the first active profile
  with the rule's role. Each further level needs another full threshold.
  Level never exceeds 3.
- Compliance-driven: active equipment below its compliance target raises a
  level-1 PM escalation notification to supervisors. Work orders are not
  touched.

Processing is best-effort per item; one failure never aborts the batch.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..core.config import Settings
from ..core.exceptions import NoEligibleTargetError, NotFoundError, ValidationFailure
from ..database.storage_service import StorageService
from ..models.database_models import (
    Criticality, EquipmentStatus, Profile, ProfileRole, WorkOrder, WorkOrderPriority,
    WorkOrderStatus, WorkOrderType,
)
from ..models.escalation_models import (
    ComplianceEscalation, EscalationAction, EscalationRule, EscalationRunResult,
    EscalationStats, WarehouseEscalationPolicy,
)
from ..models.notification_models import NotificationPriority, NotificationType
from .escalation_rule_store import EscalationRuleStore
from .notification_service import NotificationService
from .pm_compliance_service import PMComplianceService
from .schedule_formatter import format_date, hours_between, start_of_day, utc_now

logger = logging.getLogger(__name__)

ESCALATABLE_STATUSES = [WorkOrderStatus.NEW, WorkOrderStatus.ASSIGNED]

NOTIFICATION_PRIORITY = {
    WorkOrderPriority.LOW: NotificationPriority.NORMAL,
    WorkOrderPriority.MEDIUM: NotificationPriority.NORMAL,
    WorkOrderPriority.HIGH: NotificationPriority.HIGH,
    WorkOrderPriority.CRITICAL: NotificationPriority.URGENT,
    WorkOrderPriority.EMERGENCY: NotificationPriority.CRITICAL,
}

# Higher outranks lower when picking who an escalation goes to
ROLE_SENIORITY = {
    ProfileRole.SUPERVISOR: 1,
    ProfileRole.MANAGER: 2,
    ProfileRole.ADMIN: 3,
}


class EscalationService:
    """Time-based and compliance-driven escalation for one or all warehouses"""

    def __init__(
        self,
        storage: StorageService,
        notifications: NotificationService,
        rule_store: EscalationRuleStore,
        compliance: PMComplianceService,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.notifications = notifications
        self.rule_store = rule_store
        self.compliance = compliance
        self.settings = settings
        self.clock = clock
        self.max_level = settings.MAX_ESCALATION_LEVEL

    # Rule store
    async def get_escalation_rules(self, warehouse_id: str) -> WarehouseEscalationPolicy:
        return await self.rule_store.get_policy(warehouse_id)

    async def update_escalation_rules(self, warehouse_id: str, rules: List[EscalationRule]) -> WarehouseEscalationPolicy:
        return await self.rule_store.update_rules(warehouse_id, rules)

    # Periodic entry points
    async def check_and_escalate_all(self) -> Dict[str, Any]:
        """
        Main entry point: evaluate every active warehouse

        Returns:
            Dictionary with escalation statistics
        """
        if not self.settings.ENABLE_AUTO_ESCALATION:
            logger.warning("⚠️ Auto-escalation is disabled in settings")
            return {"enabled": False, "message": "Auto-escalation disabled"}

        logger.info("🔄 Starting escalation check...")
        result = {
            "timestamp": self.clock().isoformat(),
            "enabled": True,
            "total_escalated": 0,
            "total_processed": 0,
            "compliance_escalations": 0,
            "warehouses": {},
            "errors": [],
        }

        try:
            warehouses = await self.storage.get_warehouses(active_only=True)
        except Exception as e:
            logger.error(f"❌ Could not list warehouses for escalation: {e}")
            result["errors"].append(str(e))
            return result

        for warehouse in warehouses:
            try:
                run = await self.evaluate_warehouse(warehouse.id)
                result["warehouses"][warehouse.id] = run.model_dump(mode="json")
                result["total_escalated"] += run.escalated_count
                result["total_processed"] += run.processed_count
                result["compliance_escalations"] += len(run.compliance_escalations)
                result["errors"].extend(run.errors)
            except Exception as e:
                error_msg = f"Error processing warehouse {warehouse.id}: {e}"
                logger.error(f"❌ {error_msg}")
                result["errors"].append(error_msg)

        logger.info(
            f"✅ Escalation check complete: {result['total_escalated']} escalated, "
            f"{result['total_processed']} processed"
        )
        return result

    async def evaluate_warehouse(self, warehouse_id: str) -> EscalationRunResult:
        """Run both escalation triggers for one warehouse against its stored rules"""
        policy = await self.rule_store.get_policy(warehouse_id)
        run = await self.check_work_order_escalations(warehouse_id, policy)
        run.compliance_escalations = await self.process_missed_pm_escalations(warehouse_id, policy)
        return run

    # Time-based path
    async def check_work_order_escalations(
        self, warehouse_id: str, policy: Optional[WarehouseEscalationPolicy] = None
    ) -> EscalationRunResult:
        policy = policy or await self.rule_store.get_policy(warehouse_id)
        now = self.clock()
        run = EscalationRunResult(warehouse_id=warehouse_id)

        work_orders = await self.storage.get_work_orders(warehouse_id, {"status": ESCALATABLE_STATUSES})
        candidates = [wo for wo in work_orders if wo.escalation_level < self.max_level]
        run.processed_count = len(candidates)
        if not candidates:
            return run

        profiles = await self.storage.get_profiles()

        for work_order in sorted(candidates, key=lambda wo: (wo.created_at or now, wo.id or "")):
            rule = policy.rule_for_priority(work_order.priority)
            if rule is None or work_order.created_at is None:
                continue

            age_hours = hours_between(work_order.created_at, now)
            if age_hours < rule.time_threshold_hours * (work_order.escalation_level + 1):
                continue

            try:
                action = await self._escalate(work_order, rule, policy, profiles, warehouse_id, age_hours)
                run.actions.append(action)
                run.escalated_count += 1
            except NoEligibleTargetError as e:
                logger.warning(f"[ESCALATION] Skipping work order {work_order.id}: {e}")
                run.skipped_count += 1
            except Exception as e:
                error_msg = f"Failed to escalate work order {work_order.id}: {e}"
                logger.error(f"❌ {error_msg}")
                run.errors.append(error_msg)

        return run

    async def _escalate(
        self,
        work_order: WorkOrder,
        rule: EscalationRule,
        policy: WarehouseEscalationPolicy,
        profiles: List[Profile],
        warehouse_id: str,
        age_hours: float,
    ) -> EscalationAction:
        new_level = min(work_order.escalation_level + 1, self.max_level)
        role = self.escalation_role(rule, policy, new_level)
        target = self.find_escalation_target(profiles, role, warehouse_id)

        patch = {"assigned_to": target.id, "escalation_level": new_level, "escalated": True}
        await self.storage.update_work_order(work_order.id, patch)

        reason = f"{rule.name}: open {age_hours:.1f}h, threshold {rule.time_threshold_hours:g}h"
        action = EscalationAction(
            work_order_id=work_order.id,
            escalation_level=new_level,
            escalated_to_user_id=target.id,
            escalated_at=self.clock(),
            reason=reason,
            previous_assignee=work_order.assigned_to,
            warehouse_id=warehouse_id,
        )
        await self.storage.record_escalation(action)

        await self.notifications.create_notification(
            notification_type=NotificationType.WO_ESCALATED,
            recipient_id=target.id,
            title=f"Work Order Escalated - Level {new_level}",
            message=(
                f"Work order {work_order.fo_number or work_order.id} ({work_order.priority.value}) "
                f"has been escalated to you. {reason}"
            ),
            priority=NOTIFICATION_PRIORITY[work_order.priority],
            channels=list(rule.notification_channels),
            work_order_id=work_order.id,
            equipment_id=work_order.equipment_id,
            warehouse_id=warehouse_id,
            custom_data={"escalation_level": new_level, "rule_id": rule.id},
        )

        logger.info(
            f"✅ Escalated work order {work_order.id} to {target.display_name} "
            f"({role.value}), level {new_level}"
        )
        return action

    @staticmethod
    def escalation_role(rule: EscalationRule, policy: WarehouseEscalationPolicy, level: int) -> ProfileRole:
        """The more senior of the rule's role and the role the level chain names for level"""
        roles = [rule.escalate_to_role]
        for step in policy.missed_pm.escalation_levels:
            if step.level == level:
                roles.extend(step.recipients)
        return max(roles, key=lambda r: ROLE_SENIORITY.get(r, 0))

    @staticmethod
    def find_escalation_target(profiles: List[Profile], role: ProfileRole, warehouse_id: str) -> Profile:
        """
        First active profile with the role in the warehouse, by id

        Raises:
            NoEligibleTargetError: nobody matches
        """
        eligible = sorted(
            (p for p in profiles if p.active and p.role == role and p.warehouse_id == warehouse_id),
            key=lambda p: p.id or "",
        )
        if not eligible:
            raise NoEligibleTargetError(role.value, warehouse_id)
        return eligible[0]

    # Manual path
    async def manually_escalate_work_order(
        self,
        work_order_id: str,
        target_user_id: str,
        reason: str,
        actor_id: str,
    ) -> EscalationAction:
        """
        Escalate any work order to any user, without a threshold check.

        Raises:
            ValidationFailure: empty reason
            NotFoundError: work order or target user does not exist
        """
        if not reason or not reason.strip():
            raise ValidationFailure("An escalation reason is required")

        work_order = await self.storage.get_work_order(work_order_id)
        if work_order is None:
            raise NotFoundError("work_order", work_order_id)
        target = await self.storage.get_profile(target_user_id)
        if target is None:
            raise NotFoundError("profile", target_user_id)

        new_level = min(work_order.escalation_level + 1, self.max_level)
        await self.storage.update_work_order(work_order.id, {
            "assigned_to": target.id,
            "escalation_level": new_level,
            "escalated": True,
        })

        action = EscalationAction(
            work_order_id=work_order.id,
            escalation_level=new_level,
            escalated_to_user_id=target.id,
            escalated_at=self.clock(),
            reason=reason.strip(),
            previous_assignee=work_order.assigned_to,
            escalated_by=actor_id,
            manual=True,
            warehouse_id=work_order.warehouse_id,
        )
        await self.storage.record_escalation(action)

        await self.notifications.create_notification(
            notification_type=NotificationType.WO_ESCALATED,
            recipient_id=target.id,
            sender_id=actor_id,
            title=f"Work Order Escalated - Level {new_level}",
            message=f"Work order {work_order.fo_number or work_order.id} was escalated to you: {action.reason}",
            priority=NotificationPriority.HIGH,
            work_order_id=work_order.id,
            equipment_id=work_order.equipment_id,
            warehouse_id=work_order.warehouse_id,
            custom_data={"escalation_level": new_level, "manual": True},
        )

        logger.info(f"Work order {work_order.id} manually escalated to {target.id} by {actor_id}")
        return action

    # Compliance-driven path
    async def process_missed_pm_escalations(
        self, warehouse_id: str, policy: Optional[WarehouseEscalationPolicy] = None
    ) -> List[ComplianceEscalation]:
        """Notify supervisors about equipment below its compliance target"""
        policy = policy or await self.rule_store.get_policy(warehouse_id)
        targets = policy.compliance_targets
        now = self.clock()

        equipment_list = [e for e in await self.storage.get_equipment(warehouse_id) if e.status == EquipmentStatus.ACTIVE]
        if not equipment_list:
            return []

        templates = await self.storage.get_pm_templates(warehouse_id)
        pm_work_orders = await self.storage.get_work_orders(warehouse_id, {"type": [WorkOrderType.PREVENTIVE]})
        profiles = await self.storage.get_profiles()

        first_level = next((lvl for lvl in policy.missed_pm.escalation_levels if lvl.level == 1), None)
        recipient_roles = first_level.recipients if first_level else [ProfileRole.SUPERVISOR]
        recipients = sorted(
            (p for p in profiles if p.active and p.warehouse_id == warehouse_id and p.role in recipient_roles),
            key=lambda p: p.id or "",
        )

        escalations = []
        for equipment in sorted(equipment_list, key=lambda e: e.asset_tag):
            try:
                record = self.compliance.build_compliance_record(
                    equipment, warehouse_id, templates,
                    [wo for wo in pm_work_orders if wo.equipment_id == equipment.id], now,
                )
                target = (targets.critical_equipment_rate if equipment.criticality == Criticality.CRITICAL
                          else targets.overall_compliance_rate)
                if record.compliance_percentage >= target:
                    continue

                escalation = ComplianceEscalation(
                    equipment_id=equipment.id,
                    asset_tag=equipment.asset_tag,
                    compliance_percentage=record.compliance_percentage,
                    target_percentage=target,
                    missed_pm_count=record.missed_pm_count,
                )
                if not recipients:
                    logger.warning(f"[ESCALATION] No supervisor to notify about {equipment.asset_tag} in {warehouse_id}")

                for recipient in recipients:
                    await self.notifications.create_notification(
                        notification_type=NotificationType.PM_ESCALATION,
                        recipient_id=recipient.id,
                        title="PM Escalation - Level 1",
                        message=(
                            f"Equipment {equipment.asset_tag} is at {record.compliance_percentage}% PM compliance "
                            f"(target {target:g}%) with {record.missed_pm_count} missed PM(s). "
                            f"Last PM: {format_date(record.last_pm_date)}."
                        ),
                        priority=NotificationPriority.HIGH,
                        channels=list(policy.compliance_channels),
                        equipment_id=equipment.id,
                        warehouse_id=warehouse_id,
                        custom_data={"escalation_level": 1, "missed_pm_count": record.missed_pm_count},
                    )
                    escalation.notified_user_ids.append(recipient.id)

                escalations.append(escalation)
            except Exception as e:
                logger.error(f"❌ Compliance escalation failed for equipment {equipment.id}: {e}")

        if escalations:
            logger.info(f"PM compliance escalations for {warehouse_id}: {len(escalations)} equipment below target")
        return escalations

    # Reporting
    async def get_escalation_stats(self, warehouse_id: str) -> EscalationStats:
        escalated = [wo for wo in await self.storage.get_work_orders(warehouse_id) if wo.escalated]
        today = start_of_day(self.clock())
        log = await self.storage.get_escalation_log(warehouse_id)

        return EscalationStats(
            total_escalated=len(escalated),
            escalated_today=len({a.work_order_id for a in log if a.escalated_at >= today}),
            by_level=dict(Counter(wo.escalation_level for wo in escalated)),
            by_priority=dict(Counter(wo.priority.value for wo in escalated)),
        )
