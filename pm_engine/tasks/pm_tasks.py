"""
Celery tasks for the periodic PM jobs.

Each task builds its own service container and drives one async entry
point to completion. Failures are retried with exponential backoff.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..core.celery_app import celery_app
from ..core.container import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def get_task_services() -> ServiceContainer:
    return build_services()


def _retry(task, exc: Exception):
    # 60s, 120s, 240s
    raise task.retry(exc=exc, countdown=60 * (2 ** task.request.retries))


@celery_app.task(bind=True, max_retries=3)
def check_and_escalate_work_orders(self) -> Dict[str, Any]:
    """Time-based and compliance escalation across all active warehouses"""
    try:
        logger.info("🔄 Celery task started: check_and_escalate_work_orders")
        result = asyncio.run(get_task_services().escalation_service.check_and_escalate_all())
        logger.info(f"✅ Escalation task completed: {result.get('total_escalated', 0)} escalated")
        return result
    except Exception as exc:
        logger.error(f"❌ Escalation task failed: {str(exc)}")
        _retry(self, exc)


@celery_app.task(bind=True, max_retries=3)
def run_pm_automation_tick(self) -> Dict[str, Any]:
    try:
        logger.info("🔄 Celery task started: run_pm_automation_tick")
        results = asyncio.run(get_task_services().automation_service.tick())
        return {
            "status": "completed",
            "warehouses_processed": len(results),
            "work_orders_created": sum(r.created_count for r in results),
            "results": [r.model_dump(mode="json") for r in results],
        }
    except Exception as exc:
        logger.error(f"❌ PM automation task failed: {str(exc)}")
        _retry(self, exc)


@celery_app.task(bind=True, max_retries=3)
def process_compliance_escalations(self, warehouse_id: Optional[str] = None) -> Dict[str, Any]:
    """Compliance-driven escalation only, for one warehouse or all active ones"""
    try:
        services = get_task_services()

        async def _run():
            if warehouse_id:
                warehouse_ids = [warehouse_id]
            else:
                warehouse_ids = [w.id for w in await services.storage.get_warehouses(active_only=True)]
            escalations = {}
            for wid in warehouse_ids:
                found = await services.escalation_service.process_missed_pm_escalations(wid)
                escalations[wid] = [e.model_dump(mode="json") for e in found]
            return escalations

        escalations = asyncio.run(_run())
        return {
            "status": "completed",
            "warehouses_processed": len(escalations),
            "equipment_escalated": sum(len(v) for v in escalations.values()),
            "escalations": escalations,
        }
    except Exception as exc:
        logger.error(f"❌ Compliance escalation task failed: {str(exc)}")
        _retry(self, exc)
