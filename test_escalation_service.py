from datetime import timedelta

import pytest

from conftest import (
    NOW, WAREHOUSE_ID, make_equipment, make_profile, make_template, make_work_order, seed,
)
from pm_engine.core.exceptions import NotFoundError, ValidationFailure
from pm_engine.database.collections import COLLECTIONS
from pm_engine.models.database_models import (
    Criticality, ProfileRole, Warehouse, WorkOrderPriority, WorkOrderStatus, WorkOrderType,
)
from pm_engine.models.escalation_models import EscalationRule
from pm_engine.models.notification_models import (
    NotificationChannel, NotificationPriority, NotificationType,
)
from pm_engine.services.escalation_rule_store import EscalationRuleStore

# Async tests
pytestmark = pytest.mark.asyncio


def open_order(work_order_id, priority, age_hours, **kwargs):
    data = dict(
        type=WorkOrderType.CORRECTIVE, description="Conveyor belt slipping",
        priority=priority, created_at=NOW - timedelta(hours=age_hours),
    )
    data.update(kwargs)
    return make_work_order(work_order_id, **data)


async def test_critical_order_open_five_hours_escalates_to_manager(services, db):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 5, assigned_to="tech_1"))

    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)

    assert run.escalated_count == 1
    wo = await services.storage.get_work_order("wo_1")
    assert wo.assigned_to == "manager_1"
    assert wo.escalation_level == 1
    assert wo.escalated is True
    # Escalation reassigns, it does not move the order through its lifecycle
    assert wo.status == WorkOrderStatus.NEW

    action = run.actions[0]
    assert action.escalated_to_user_id == "manager_1"
    assert action.previous_assignee == "tech_1"
    assert action.manual is False

    notifications = await services.storage.get_notifications("manager_1")
    assert len(notifications) == 1
    assert notifications[0].notification_type == NotificationType.WO_ESCALATED
    assert notifications[0].work_order_id == "wo_1"

    log = await services.storage.get_escalation_log(WAREHOUSE_ID)
    assert [entry.work_order_id for entry in log] == ["wo_1"]


async def test_orders_below_threshold_are_left_alone(services, db):
    seed(
        db, "work_orders",
        open_order("wo_critical", WorkOrderPriority.CRITICAL, 3),
        open_order("wo_medium", WorkOrderPriority.MEDIUM, 23),
        open_order("wo_low", WorkOrderPriority.LOW, 71),
    )

    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)

    assert run.processed_count == 3
    assert run.escalated_count == 0


async def test_in_progress_and_closed_orders_are_not_escalated(services, db):
    seed(
        db, "work_orders",
        open_order("wo_active", WorkOrderPriority.CRITICAL, 10, status=WorkOrderStatus.IN_PROGRESS),
        open_order("wo_done", WorkOrderPriority.CRITICAL, 10, status=WorkOrderStatus.COMPLETED),
    )

    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)

    assert run.processed_count == 0


async def test_each_further_level_needs_another_threshold(services, db, clock):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.HIGH, 13))
    escalation = services.escalation_service

    await escalation.check_work_order_escalations(WAREHOUSE_ID)
    again = await escalation.check_work_order_escalations(WAREHOUSE_ID)
    assert again.escalated_count == 0

    clock.advance(hours=12)
    await escalation.check_work_order_escalations(WAREHOUSE_ID)

    wo = await services.storage.get_work_order("wo_1")
    assert wo.escalation_level == 2
    assert wo.assigned_to == "manager_1"


async def test_automatic_escalation_climbs_the_role_chain(services, db, clock):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.HIGH, 13))
    escalation = services.escalation_service

    hops = []
    for _ in range(3):
        await escalation.check_work_order_escalations(WAREHOUSE_ID)
        wo = await services.storage.get_work_order("wo_1")
        hops.append((wo.escalation_level, wo.assigned_to))
        clock.advance(hours=12)

    assert hops == [(1, "supervisor_1"), (2, "manager_1"), (3, "admin_1")]


async def test_rule_role_wins_when_more_senior_than_level(services):
    policy = await services.rule_store.get_policy(WAREHOUSE_ID)
    critical = policy.rule_for_priority(WorkOrderPriority.CRITICAL)

    assert services.escalation_service.escalation_role(critical, policy, 1) == ProfileRole.MANAGER
    assert services.escalation_service.escalation_role(critical, policy, 3) == ProfileRole.ADMIN


async def test_escalation_level_never_exceeds_three(services, db, clock):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 5))
    escalation = services.escalation_service

    levels = []
    for _ in range(6):
        await escalation.check_work_order_escalations(WAREHOUSE_ID)
        levels.append((await services.storage.get_work_order("wo_1")).escalation_level)
        clock.advance(hours=4)

    assert levels == sorted(levels)
    assert max(levels) == 3
    assert levels[-1] == 3


async def test_missing_target_role_skips_item_but_not_batch(services, db):
    del db.storage[COLLECTIONS["profiles"]]["manager_1"]
    seed(
        db, "work_orders",
        open_order("wo_critical", WorkOrderPriority.CRITICAL, 20),
        open_order("wo_high", WorkOrderPriority.HIGH, 13),
    )

    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)

    assert run.skipped_count == 1
    assert run.escalated_count == 1
    assert (await services.storage.get_work_order("wo_critical")).escalation_level == 0
    assert (await services.storage.get_work_order("wo_high")).assigned_to == "supervisor_1"


async def test_targets_are_limited_to_the_same_warehouse(services, db):
    del db.storage[COLLECTIONS["profiles"]]["manager_1"]
    seed(db, "profiles", make_profile("manager_other", ProfileRole.MANAGER, warehouse_id="wh_2"))
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 5))

    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)

    assert run.escalated_count == 0
    assert run.skipped_count == 1


async def test_manual_escalation_ignores_age(services, db):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.LOW, 0.1, assigned_to="tech_1"))

    action = await services.escalation_service.manually_escalate_work_order(
        "wo_1", "admin_1", "Customer complaint", actor_id="manager_1"
    )

    assert action.escalation_level == 1
    assert action.escalated_to_user_id == "admin_1"
    assert action.previous_assignee == "tech_1"
    assert action.escalated_by == "manager_1"
    assert action.manual is True
    assert action.reason == "Customer complaint"

    wo = await services.storage.get_work_order("wo_1")
    assert wo.assigned_to == "admin_1"
    assert wo.escalated is True


async def test_manual_escalation_works_on_closed_orders_and_caps_level(services, db):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.MEDIUM, 1,
                                       status=WorkOrderStatus.CLOSED, escalation_level=3))

    action = await services.escalation_service.manually_escalate_work_order(
        "wo_1", "supervisor_1", "Reopened by audit", actor_id="admin_1"
    )

    assert action.escalation_level == 3


async def test_manual_escalation_requires_existing_order_and_user(services, db):
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.LOW, 1))
    escalation = services.escalation_service

    with pytest.raises(NotFoundError):
        await escalation.manually_escalate_work_order("missing", "admin_1", "reason", actor_id="manager_1")
    with pytest.raises(NotFoundError):
        await escalation.manually_escalate_work_order("wo_1", "nobody", "reason", actor_id="manager_1")
    with pytest.raises(ValidationFailure):
        await escalation.manually_escalate_work_order("wo_1", "admin_1", "  ", actor_id="manager_1")


async def test_non_compliant_equipment_notifies_supervisors_only(services, db):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    escalations = await services.escalation_service.process_missed_pm_escalations(WAREHOUSE_ID)

    assert len(escalations) == 1
    assert escalations[0].asset_tag == "PUMP-001"
    assert escalations[0].missed_pm_count == 1
    assert escalations[0].notified_user_ids == ["supervisor_1"]

    notifications = await services.storage.get_notifications("supervisor_1")
    assert len(notifications) == 1
    notification = notifications[0]
    assert notification.notification_type == NotificationType.PM_ESCALATION
    assert notification.title == "PM Escalation - Level 1"
    assert notification.priority == NotificationPriority.HIGH
    assert notification.channels == [NotificationChannel.EMAIL, NotificationChannel.SMS]
    assert notification.equipment_id == "eq_1"
    assert "Last PM: never" in notification.message

    # Notification only: no work order is created or changed
    assert await services.storage.get_work_orders(WAREHOUSE_ID) == []


async def test_critical_equipment_uses_critical_target(services, db):
    policy = await services.rule_store.get_policy(WAREHOUSE_ID)
    policy.compliance_targets.overall_compliance_rate = 50
    await services.rule_store.update_policy(policy)

    seed(
        db, "equipment",
        make_equipment("eq_high", "PUMP-HIGH", criticality=Criticality.HIGH),
        make_equipment("eq_crit", "PUMP-CRIT", criticality=Criticality.CRITICAL),
    )
    seed(db, "pm_templates", make_template())
    for equipment_id in ("eq_high", "eq_crit"):
        seed(
            db, "work_orders",
            make_work_order(f"{equipment_id}_1", equipment_id=equipment_id, status=WorkOrderStatus.COMPLETED,
                            pm_template_id="tpl_1", completed_at=NOW - timedelta(days=70)),
            make_work_order(f"{equipment_id}_2", equipment_id=equipment_id, status=WorkOrderStatus.COMPLETED,
                            pm_template_id="tpl_1", completed_at=NOW - timedelta(days=40)),
        )

    escalations = await services.escalation_service.process_missed_pm_escalations(WAREHOUSE_ID)

    assert [e.equipment_id for e in escalations] == ["eq_crit"]
    assert escalations[0].target_percentage == 100


async def test_evaluate_warehouse_runs_both_triggers(services, db):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 5, equipment_id="eq_other"))

    run = await services.escalation_service.evaluate_warehouse(WAREHOUSE_ID)

    assert run.escalated_count == 1
    assert len(run.compliance_escalations) == 1


async def test_check_all_respects_disabled_setting(services, settings):
    settings.ENABLE_AUTO_ESCALATION = False

    result = await services.escalation_service.check_and_escalate_all()

    assert result["enabled"] is False


async def test_check_all_continues_after_warehouse_failure(services, db, monkeypatch):
    seed(db, "warehouses", Warehouse(id="wh_broken", name="Broken"))
    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 5))

    escalation = services.escalation_service
    original = escalation.evaluate_warehouse

    async def flaky(warehouse_id):
        if warehouse_id == "wh_broken":
            raise RuntimeError("query failed")
        return await original(warehouse_id)

    monkeypatch.setattr(escalation, "evaluate_warehouse", flaky)

    result = await escalation.check_and_escalate_all()

    assert result["total_escalated"] == 1
    assert any("wh_broken" in error for error in result["errors"])


async def test_escalation_stats(services, db):
    seed(
        db, "work_orders",
        open_order("wo_1", WorkOrderPriority.CRITICAL, 5),
        open_order("wo_2", WorkOrderPriority.HIGH, 13),
        open_order("wo_3", WorkOrderPriority.LOW, 1),
    )
    await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)
    await services.escalation_service.manually_escalate_work_order("wo_1", "admin_1", "Still down", "manager_1")

    stats = await services.escalation_service.get_escalation_stats(WAREHOUSE_ID)

    assert stats.total_escalated == 2
    assert stats.escalated_today == 2
    assert stats.by_level == {2: 1, 1: 1}
    assert stats.by_priority == {"critical": 1, "high": 1}


async def test_rule_store_round_trip(services, db, settings):
    rules = [
        EscalationRule(id="critical-2h", name="Critical", priority=WorkOrderPriority.CRITICAL,
                       time_threshold_hours=2, escalate_to_role=ProfileRole.ADMIN),
    ]

    await services.escalation_service.update_escalation_rules(WAREHOUSE_ID, rules)

    # A fresh store reads the persisted record rather than the defaults
    reloaded = await EscalationRuleStore(services.storage, settings).get_policy(WAREHOUSE_ID)
    assert [r.id for r in reloaded.time_rules] == ["critical-2h"]
    assert reloaded.compliance_targets.overall_compliance_rate == 95

    seed(db, "work_orders", open_order("wo_1", WorkOrderPriority.CRITICAL, 3))
    run = await services.escalation_service.check_work_order_escalations(WAREHOUSE_ID)
    assert run.actions[0].escalated_to_user_id == "admin_1"


async def test_rule_store_rejects_duplicate_priorities(services):
    rules = [
        EscalationRule(id="a", name="A", priority=WorkOrderPriority.HIGH,
                       time_threshold_hours=1, escalate_to_role=ProfileRole.MANAGER),
        EscalationRule(id="b", name="B", priority=WorkOrderPriority.HIGH,
                       time_threshold_hours=2, escalate_to_role=ProfileRole.SUPERVISOR),
    ]

    with pytest.raises(ValidationFailure):
        await services.escalation_service.update_escalation_rules(WAREHOUSE_ID, rules)


async def test_default_rules(services):
    policy = await services.escalation_service.get_escalation_rules(WAREHOUSE_ID)

    thresholds = {r.priority: (r.time_threshold_hours, r.escalate_to_role) for r in policy.time_rules}
    assert thresholds[WorkOrderPriority.CRITICAL] == (4, ProfileRole.MANAGER)
    assert thresholds[WorkOrderPriority.EMERGENCY] == (4, ProfileRole.MANAGER)
    assert thresholds[WorkOrderPriority.HIGH] == (12, ProfileRole.SUPERVISOR)
    assert thresholds[WorkOrderPriority.MEDIUM] == (24, ProfileRole.SUPERVISOR)
    assert thresholds[WorkOrderPriority.LOW] == (72, ProfileRole.SUPERVISOR)
