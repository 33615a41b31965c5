"""
Escalation rule store, keyed by warehouse.

Holds both escalation policies in one record per warehouse:
- the time-threshold table for open work orders
- the missed-PM chain and compliance targets for PM non-compliance

Warehouses without a stored policy get the defaults below.
"""

import logging
from typing import Dict, List, Optional

from ..core.config import Settings
from ..core.exceptions import ValidationFailure
from ..database.storage_service import StorageService
from ..models.database_models import ProfileRole, WorkOrderPriority
from ..models.escalation_models import (
    ComplianceTargets, EscalationRule, MissedPMAction, MissedPMEscalationLevel,
    MissedPMEscalationRules, WarehouseEscalationPolicy,
)
from ..models.notification_models import NotificationChannel

logger = logging.getLogger(__name__)


def default_time_rules() -> List[EscalationRule]:
    return [
        EscalationRule(
            id="critical-4h", name="Critical Work Orders", priority=WorkOrderPriority.CRITICAL,
            time_threshold_hours=4, escalate_to_role=ProfileRole.MANAGER,
            notification_channels=[NotificationChannel.EMAIL, NotificationChannel.PUSH],
        ),
        EscalationRule(
            id="emergency-4h", name="Emergency Work Orders", priority=WorkOrderPriority.EMERGENCY,
            time_threshold_hours=4, escalate_to_role=ProfileRole.MANAGER,
            notification_channels=[NotificationChannel.EMAIL, NotificationChannel.PUSH],
        ),
        EscalationRule(
            id="high-12h", name="High Priority Work Orders", priority=WorkOrderPriority.HIGH,
            time_threshold_hours=12, escalate_to_role=ProfileRole.SUPERVISOR,
            notification_channels=[NotificationChannel.EMAIL, NotificationChannel.PUSH],
        ),
        EscalationRule(
            id="standard-24h", name="Standard Work Orders", priority=WorkOrderPriority.MEDIUM,
            time_threshold_hours=24, escalate_to_role=ProfileRole.SUPERVISOR,
        ),
        EscalationRule(
            id="low-72h", name="Low Priority Work Orders", priority=WorkOrderPriority.LOW,
            time_threshold_hours=72, escalate_to_role=ProfileRole.SUPERVISOR,
        ),
    ]


def default_missed_pm_rules() -> MissedPMEscalationRules:
    return MissedPMEscalationRules(
        overdue_pm_hours=24,
        missed_pm_hours=48,
        escalation_levels=[
            MissedPMEscalationLevel(level=1, delay_hours=4, recipients=[ProfileRole.SUPERVISOR],
                                    actions=[MissedPMAction.NOTIFY]),
            MissedPMEscalationLevel(level=2, delay_hours=24, recipients=[ProfileRole.MANAGER],
                                    actions=[MissedPMAction.NOTIFY, MissedPMAction.REASSIGN]),
            MissedPMEscalationLevel(level=3, delay_hours=72, recipients=[ProfileRole.ADMIN],
                                    actions=[MissedPMAction.NOTIFY, MissedPMAction.ESCALATE]),
        ],
    )


class EscalationRuleStore:
    def __init__(self, storage: StorageService, settings: Settings):
        self.storage = storage
        self.settings = settings
        self._policies: Dict[str, WarehouseEscalationPolicy] = {}

    def default_policy(self, warehouse_id: str) -> WarehouseEscalationPolicy:
        return WarehouseEscalationPolicy(
            warehouse_id=warehouse_id,
            time_rules=default_time_rules(),
            missed_pm=default_missed_pm_rules(),
            compliance_targets=ComplianceTargets(
                overall_compliance_rate=self.settings.COMPLIANCE_TARGET_PERCENT,
                critical_equipment_rate=self.settings.CRITICAL_EQUIPMENT_TARGET_PERCENT,
                max_overdue_days=self.settings.MAX_OVERDUE_DAYS,
            ),
            compliance_channels=[NotificationChannel(c) for c in self.settings.ESCALATION_NOTIFICATION_CHANNELS],
        )

    async def get_policy(self, warehouse_id: str) -> WarehouseEscalationPolicy:
        cached = self._policies.get(warehouse_id)
        if cached is not None:
            return cached

        policy: Optional[WarehouseEscalationPolicy] = await self.storage.get_escalation_policy(warehouse_id)
        if policy is None:
            policy = self.default_policy(warehouse_id)
        self._policies[warehouse_id] = policy
        return policy

    async def update_policy(self, policy: WarehouseEscalationPolicy) -> WarehouseEscalationPolicy:
        priorities = [rule.priority for rule in policy.time_rules if rule.active]
        if len(priorities) != len(set(priorities)):
            raise ValidationFailure("Only one active escalation rule per priority is allowed")

        saved = await self.storage.save_escalation_policy(policy)
        # Replace wholesale, never patch a cached policy in place
        self._policies[policy.warehouse_id] = saved
        logger.info(f"Updated escalation rules for warehouse {policy.warehouse_id}: {len(policy.time_rules)} time rules")
        return saved

    async def update_rules(self, warehouse_id: str, rules: List[EscalationRule]) -> WarehouseEscalationPolicy:
        current = await self.get_policy(warehouse_id)
        return await self.update_policy(current.model_copy(update={"time_rules": list(rules)}))
