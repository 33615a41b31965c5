from fastapi import APIRouter, Depends, Query, Path
from typing import Dict, Any, Optional
from datetime import datetime
from ..auth.dependencies import get_current_user, get_warehouse_id, require_role, OPERATOR_ROLES
from ..core.container import ServiceContainer
from ..services.schedule_formatter import to_utc
from .common import get_services, to_http_exception
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/pm",
    tags=["Preventive Maintenance"],
    responses={404: {"description": "Not found"}}
)


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


@router.post("/automation/start", response_model=Dict[str, Any])
async def start_automation(
    interval_minutes: Optional[int] = Query(None, ge=1, description="Tick interval in minutes"),
    current_user: Dict[str, Any] = Depends(require_role(OPERATOR_ROLES)),
    services: ServiceContainer = Depends(get_services),
):
    """Start the PM automation loop (no-op when already running)"""
    started = services.automation_service.start(interval_minutes)
    message = "PM automation started" if started else "PM automation already running"
    return {"success": True, "message": message, "data": _dump(services.automation_service.get_status())}


@router.post("/automation/stop", response_model=Dict[str, Any])
async def stop_automation(
    current_user: Dict[str, Any] = Depends(require_role(OPERATOR_ROLES)),
    services: ServiceContainer = Depends(get_services),
):
    """Stop the PM automation loop; an in-flight pass finishes"""
    stopped = services.automation_service.stop()
    message = "PM automation stopped" if stopped else "PM automation was not running"
    return {"success": True, "message": message, "data": _dump(services.automation_service.get_status())}


@router.get("/automation/status", response_model=Dict[str, Any])
async def get_automation_status(
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return {"success": True, "data": _dump(services.automation_service.get_status())}


@router.post("/automation/run", response_model=Dict[str, Any])
async def run_automation_now(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(require_role(OPERATOR_ROLES)),
    services: ServiceContainer = Depends(get_services),
):
    """Generate PM work orders for the header warehouse right now"""
    try:
        result = await services.automation_service.run_for_warehouse(warehouse_id)
        logger.info(f"Manual PM run by {current_user.get('uid')} for {warehouse_id}: {result.created_count} created")
        return {"success": True, "message": f"Created {result.created_count} PM work orders", "data": _dump(result)}
    except Exception as e:
        raise to_http_exception(e, f"running PM automation for {warehouse_id}")


@router.get("/rules", response_model=Dict[str, Any])
async def get_scheduling_rules(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        rules = await services.scheduler_service.load_scheduling_rules(warehouse_id)
        return {"success": True, "data": [_dump(r) for r in rules], "count": len(rules)}
    except Exception as e:
        raise to_http_exception(e, f"loading scheduling rules for {warehouse_id}")


@router.get("/config", response_model=Dict[str, Any])
async def get_scheduling_config(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        config = await services.scheduler_service.load_scheduling_config(warehouse_id)
        return {"success": True, "data": _dump(config)}
    except Exception as e:
        raise to_http_exception(e, f"loading scheduling config for {warehouse_id}")


@router.get("/compliance", response_model=Dict[str, Any])
async def get_warehouse_compliance(
    months: int = Query(6, ge=1, le=24),
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Warehouse compliance summary with per-equipment rows and monthly trend"""
    try:
        summary = await services.compliance_service.get_warehouse_compliance(warehouse_id, months)
        return {"success": True, "data": _dump(summary)}
    except Exception as e:
        raise to_http_exception(e, f"computing compliance for {warehouse_id}")


@router.get("/compliance/{equipment_id}", response_model=Dict[str, Any])
async def get_equipment_compliance(
    equipment_id: str = Path(..., description="Equipment document ID"),
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        record = await services.compliance_service.check_compliance_status(equipment_id, warehouse_id)
        return {"success": True, "data": _dump(record)}
    except Exception as e:
        raise to_http_exception(e, f"computing compliance for equipment {equipment_id}")


@router.get("/schedule", response_model=Dict[str, Any])
async def get_schedule(
    start_date: datetime = Query(..., description="Window start (ISO 8601)"),
    end_date: datetime = Query(..., description="Window end (ISO 8601)"),
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        schedule = await services.scheduler_service.generate_optimized_schedule(
            warehouse_id, to_utc(start_date), to_utc(end_date)
        )
        return {"success": True, "data": _dump(schedule)}
    except Exception as e:
        raise to_http_exception(e, f"generating schedule for {warehouse_id}")
