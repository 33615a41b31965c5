"""Shared fixtures: an in-memory store seeded per test and a fixed clock."""

from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pm_engine.core.config import Settings
from pm_engine.core.container import build_services
from pm_engine.database.collections import COLLECTIONS
from pm_engine.database.database_service import InMemoryDatabaseService
from pm_engine.database.storage_service import to_document
from pm_engine.models.database_models import (
    Criticality, Equipment, Frequency, PmTemplate, Profile, ProfileRole, Warehouse,
    WorkOrder, WorkOrderPriority, WorkOrderStatus, WorkOrderType,
)

# Wednesday, so a 7-day window from here spans five working days
NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
WAREHOUSE_ID = "wh_1"


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def seed(db, collection, *records):
    """Write records straight into the in-memory store, bypassing the services"""
    coll = db.storage.setdefault(COLLECTIONS[collection], {})
    for record in records:
        doc = to_document(record)
        coll[doc["id"]] = doc
    return records


def make_equipment(equipment_id="eq_1", asset_tag="PUMP-001", model="P-100", **kwargs):
    data = dict(
        id=equipment_id, asset_tag=asset_tag, model=model, warehouse_id=WAREHOUSE_ID,
        criticality=Criticality.HIGH, install_date=NOW - timedelta(days=400),
    )
    data.update(kwargs)
    return Equipment(**data)


def make_template(template_id="tpl_1", model="P-100", component="Oil Filter", action="Replace", **kwargs):
    data = dict(
        id=template_id, model=model, component=component, action=action,
        frequency=Frequency.MONTHLY, warehouse_id=WAREHOUSE_ID,
    )
    data.update(kwargs)
    return PmTemplate(**data)


def make_work_order(work_order_id="wo_1", **kwargs):
    data = dict(
        id=work_order_id, type=WorkOrderType.PREVENTIVE, description="Oil Filter - Replace",
        status=WorkOrderStatus.NEW, priority=WorkOrderPriority.MEDIUM, equipment_id="eq_1",
        warehouse_id=WAREHOUSE_ID, created_at=NOW - timedelta(days=1),
    )
    data.update(kwargs)
    return WorkOrder(**data)


def make_profile(profile_id, role, warehouse_id=WAREHOUSE_ID, **kwargs):
    return Profile(id=profile_id, role=role, warehouse_id=warehouse_id,
                   first_name=profile_id.title(), **kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    test_settings = Settings()
    test_settings.ENABLE_AUTO_ESCALATION = True
    test_settings.ENABLE_PM_AUTOMATION = True
    test_settings.PM_AUTOMATION_INTERVAL_MINUTES = 60
    test_settings.PM_LEAD_TIME_DAYS = 2
    test_settings.PM_MAX_CONCURRENT = 10
    test_settings.PM_WORKING_DAYS = [1, 2, 3, 4, 5]
    test_settings.COMPLIANCE_TARGET_PERCENT = 95.0
    test_settings.CRITICAL_EQUIPMENT_TARGET_PERCENT = 100.0
    test_settings.ESCALATION_NOTIFICATION_CHANNELS = ["email", "sms"]
    return test_settings


@pytest.fixture
def db():
    store = InMemoryDatabaseService()
    seed(store, "warehouses", Warehouse(id=WAREHOUSE_ID, name="Main Warehouse"))
    seed(
        store, "profiles",
        make_profile("supervisor_1", ProfileRole.SUPERVISOR),
        make_profile("manager_1", ProfileRole.MANAGER),
        make_profile("admin_1", ProfileRole.ADMIN),
        make_profile("tech_1", ProfileRole.TECHNICIAN),
    )
    return store


@pytest.fixture
def services(settings, db, clock):
    # Tests that start the scheduler shut it down themselves, while their loop is alive
    return build_services(settings, db=db, clock=clock, job_scheduler=AsyncIOScheduler(timezone="UTC"))
