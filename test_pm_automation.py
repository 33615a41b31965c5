import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, WAREHOUSE_ID, make_equipment, make_template, make_work_order, seed
from pm_engine.models.database_models import (
    Warehouse, WorkOrderPriority, WorkOrderStatus, WorkOrderType,
)

# Async tests
pytestmark = pytest.mark.asyncio


async def pm_work_orders(services, warehouse_id=WAREHOUSE_ID):
    return await services.storage.get_work_orders(warehouse_id, {"type": [WorkOrderType.PREVENTIVE]})


async def test_run_creates_preventive_work_order_for_due_pm(services, db):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    result = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)

    assert result.created_count == 1
    orders = await pm_work_orders(services)
    assert len(orders) == 1
    wo = orders[0]
    assert wo.status == WorkOrderStatus.NEW
    assert wo.priority == WorkOrderPriority.HIGH
    assert wo.description == "Oil Filter - Replace"
    assert wo.due_date == NOW
    assert wo.pm_template_id == "tpl_1"
    assert wo.pm_rule_id == "rule_tpl_1"
    assert wo.fo_number.startswith("PM-20240306-")


async def test_second_run_over_same_window_creates_nothing(services, db):
    seed(db, "equipment", make_equipment("eq_1", "PUMP-001"), make_equipment("eq_2", "PUMP-002"))
    seed(db, "pm_templates", make_template())

    first = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)
    second = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)

    assert first.created_count == 2
    assert second.created_count == 0
    assert second.skipped_existing == 2
    assert len(await pm_work_orders(services)) == 2


async def test_pm_outside_lead_time_is_not_generated(services, db):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())
    seed(db, "work_orders", make_work_order(
        "wo_done", status=WorkOrderStatus.COMPLETED, pm_template_id="tpl_1",
        completed_at=NOW - timedelta(days=20),
    ))

    result = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)

    assert result.scheduled_count == 0
    assert result.created_count == 0


async def test_legacy_open_work_order_prevents_duplicate(services, db):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())
    seed(db, "work_orders", make_work_order("wo_legacy", description="Replace oil filter", status=WorkOrderStatus.ASSIGNED))

    result = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)

    assert result.created_count == 0
    assert result.skipped_existing == 1


async def test_completed_work_order_does_not_block_next_cycle(services, db, clock):
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    first = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)
    await services.storage.update_work_order(
        first.created_work_order_ids[0], {"status": WorkOrderStatus.COMPLETED, "completed_at": NOW}
    )
    clock.advance(days=29)
    second = await services.automation_service.run_for_warehouse(WAREHOUSE_ID)

    assert second.created_count == 1
    assert services.automation_service.generated_count == 2


async def test_tick_isolates_failing_warehouse(services, db, monkeypatch):
    seed(db, "warehouses", Warehouse(id="wh_2", name="Overflow"))
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    scheduler_service = services.scheduler_service
    original = scheduler_service.generate_optimized_schedule

    async def flaky_schedule(warehouse_id, start_date, end_date):
        if warehouse_id == "wh_2":
            raise RuntimeError("store timeout")
        return await original(warehouse_id, start_date, end_date)

    monkeypatch.setattr(scheduler_service, "generate_optimized_schedule", flaky_schedule)

    results = await services.automation_service.tick()

    by_warehouse = {r.warehouse_id: r for r in results}
    assert by_warehouse["wh_2"].error == "store timeout"
    assert by_warehouse[WAREHOUSE_ID].created_count == 1
    assert services.automation_service.get_status().last_results == results


async def test_tick_never_raises_when_warehouses_cannot_be_listed(services, monkeypatch):
    async def broken(active_only=True):
        raise RuntimeError("store down")

    monkeypatch.setattr(services.storage, "get_warehouses", broken)

    assert await services.automation_service.tick() == []


async def test_start_stop_state_machine(services, db):
    automation = services.automation_service
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    try:
        assert automation.get_status().is_running is False

        assert automation.start(interval_minutes=30) is True
        assert automation.is_running
        # Starting again is a no-op, not an error
        assert automation.start() is False

        status = automation.get_status()
        assert status.is_running is True
        assert status.interval_minutes == 30
        assert status.next_run_at is not None

        assert automation.stop() is True
        assert automation.is_running is False
        assert automation.stop() is False

        # Manual runs work while the loop is stopped
        result = await automation.run_for_warehouse(WAREHOUSE_ID)
        assert result.created_count == 1
        assert automation.get_status().last_run_at == NOW
    finally:
        services.job_scheduler.shutdown(wait=False)


async def test_stop_lets_in_flight_pass_finish(services, db, monkeypatch):
    automation = services.automation_service
    seed(db, "equipment", make_equipment())
    seed(db, "pm_templates", make_template())

    storage = services.storage
    original_create = storage.create_work_order
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow_create(data):
        entered.set()
        await release.wait()
        return await original_create(data)

    monkeypatch.setattr(storage, "create_work_order", slow_create)

    try:
        automation.start()
        in_flight = asyncio.create_task(automation.run_for_warehouse(WAREHOUSE_ID))
        await entered.wait()

        assert automation.stop() is True
        assert automation.is_running is False

        release.set()
        result = await in_flight

        assert result.created_count == 1
        assert len(await pm_work_orders(services)) == 1
        assert automation.is_running is False
    finally:
        services.job_scheduler.shutdown(wait=False)
