"""
PM Automation Loop

On a fixed interval, turns the lead-time window of every active
warehouse's schedule into preventive work orders. Also exposes a manual
run-now per warehouse that works whether or not the loop is running.

Loop states: stopped -> running on start(), running -> stopped on stop().
start() while running is a no-op. stop() only cancels the timer; a pass
already in progress finishes.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import Settings
from ..database.storage_service import StorageService
from ..models.database_models import (
    OPEN_STATUSES, WorkOrder, WorkOrderStatus, WorkOrderType,
)
from ..models.pm_models import AutomationRunResult, AutomationStatus, ScheduledPM
from .pm_scheduler_service import PMSchedulerService
from .schedule_formatter import utc_now

logger = logging.getLogger(__name__)

AUTOMATION_JOB_ID = "pm_automation_tick"


class PMAutomationService:
    def __init__(
        self,
        storage: StorageService,
        scheduler_service: PMSchedulerService,
        job_scheduler: AsyncIOScheduler,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.scheduler_service = scheduler_service
        self.job_scheduler = job_scheduler
        self.settings = settings
        self.clock = clock
        self.interval_minutes = settings.PM_AUTOMATION_INTERVAL_MINUTES
        self.last_run_at: Optional[datetime] = None
        self.generated_count = 0
        self.last_results: List[AutomationRunResult] = []

    @property
    def is_running(self) -> bool:
        return self.job_scheduler.get_job(AUTOMATION_JOB_ID) is not None

    def start(self, interval_minutes: Optional[int] = None) -> bool:
        """
        Start the periodic loop.

        Returns:
            True if the loop was started, False if it was already running
        """
        if self.is_running:
            logger.info("PM automation already running")
            return False

        if interval_minutes:
            self.interval_minutes = interval_minutes

        self.job_scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=AUTOMATION_JOB_ID,
            name="PM Automation Tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        if not self.job_scheduler.running:
            self.job_scheduler.start()

        logger.info(f"✅ PM automation started: every {self.interval_minutes} minute(s)")
        return True

    def stop(self) -> bool:
        if not self.is_running:
            return False
        self.job_scheduler.remove_job(AUTOMATION_JOB_ID)
        logger.info("PM automation stopped")
        return True

    def get_status(self) -> AutomationStatus:
        job = self.job_scheduler.get_job(AUTOMATION_JOB_ID)
        return AutomationStatus(
            is_running=job is not None,
            interval_minutes=self.interval_minutes,
            last_run_at=self.last_run_at,
            next_run_at=getattr(job, "next_run_time", None) if job else None,
            generated_count=self.generated_count,
            last_results=list(self.last_results),
        )

    async def tick(self) -> List[AutomationRunResult]:
        """One pass over all active warehouses. Never raises."""
        logger.info("🔄 Running PM automation tick...")
        results: List[AutomationRunResult] = []
        try:
            warehouses = await self.storage.get_warehouses(active_only=True)
        except Exception as e:
            logger.error(f"❌ PM automation tick could not list warehouses: {e}", exc_info=True)
            return results

        # One warehouse at a time
        for warehouse in warehouses:
            try:
                results.append(await self.run_for_warehouse(warehouse.id))
            except Exception as e:
                logger.error(f"❌ PM automation failed for warehouse {warehouse.id}: {e}", exc_info=True)
                results.append(AutomationRunResult(
                    warehouse_id=warehouse.id,
                    started_at=self.clock(),
                    finished_at=self.clock(),
                    error=str(e),
                ))

        self.last_results = results
        created = sum(r.created_count for r in results)
        logger.info(f"✅ PM automation tick complete: {created} work orders created across {len(results)} warehouses")
        return results

    async def run_for_warehouse(self, warehouse_id: str) -> AutomationRunResult:
        """
        Create preventive work orders for the lead-time window of one warehouse.

        Raises:
            StoreError: store failures propagate to the caller
        """
        now = self.clock()
        result = AutomationRunResult(warehouse_id=warehouse_id, started_at=now)

        schedule = await self.scheduler_service.generate_optimized_schedule(
            warehouse_id, now, now + timedelta(days=self.settings.PM_LEAD_TIME_DAYS)
        )
        result.scheduled_count = len(schedule.scheduled_pms)

        # The open set is the only dedup mechanism; it must be read after the schedule
        open_pm_orders = await self.storage.get_work_orders(
            warehouse_id, {"type": [WorkOrderType.PREVENTIVE], "status": list(OPEN_STATUSES)}
        )

        for pm in schedule.scheduled_pms:
            if self._has_open_order(open_pm_orders, pm):
                result.skipped_existing += 1
                continue

            work_order = await self.storage.create_work_order(self._work_order_data(warehouse_id, pm))
            open_pm_orders.append(work_order)
            result.created_work_order_ids.append(work_order.id)
            logger.info(
                f"Created PM work order {work_order.fo_number} for {pm.asset_tag or pm.equipment_id} "
                f"({pm.component} - {pm.action}, {pm.priority.value})"
            )

        result.created_count = len(result.created_work_order_ids)
        result.finished_at = self.clock()
        self.last_run_at = result.finished_at
        self.generated_count += result.created_count
        return result

    @staticmethod
    def _has_open_order(open_orders: List[WorkOrder], pm: ScheduledPM) -> bool:
        for wo in open_orders:
            if wo.equipment_id != pm.equipment_id:
                continue
            if wo.pm_rule_id == pm.template_id or wo.pm_template_id == pm.pm_template_id:
                return True
            if not wo.pm_template_id and not wo.pm_rule_id:
                description = (wo.description or "").lower()
                if pm.component.lower() in description and pm.action.lower() in description:
                    return True
        return False

    @staticmethod
    def _work_order_data(warehouse_id: str, pm: ScheduledPM) -> dict:
        return {
            "type": WorkOrderType.PREVENTIVE,
            "status": WorkOrderStatus.NEW,
            "priority": pm.priority,
            "description": f"{pm.component} - {pm.action}",
            "equipment_id": pm.equipment_id,
            "pm_template_id": pm.pm_template_id,
            "pm_rule_id": pm.template_id,
            "due_date": pm.scheduled_date,
            "estimated_hours": round(pm.estimated_duration / 60, 2),
            "requested_by": "system",
            "warehouse_id": warehouse_id,
        }
