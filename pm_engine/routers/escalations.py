from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field
from typing import Dict, Any, List
from ..auth.dependencies import get_current_user, get_warehouse_id, require_role, OPERATOR_ROLES
from ..core.container import ServiceContainer
from ..models.escalation_models import EscalationRule
from .common import get_services, to_http_exception
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/escalations",
    tags=["Escalations"],
    responses={404: {"description": "Not found"}}
)


class ManualEscalationRequest(BaseModel):
    target_user_id: str
    reason: str = Field(..., min_length=1)


class EscalationRulesUpdate(BaseModel):
    rules: List[EscalationRule]


@router.post("/work-orders/{work_order_id}", response_model=Dict[str, Any])
async def escalate_work_order(
    request: ManualEscalationRequest,
    work_order_id: str = Path(..., description="Work order document ID"),
    current_user: Dict[str, Any] = Depends(require_role(OPERATOR_ROLES)),
    services: ServiceContainer = Depends(get_services),
):
    """Escalate a work order to a specific user, regardless of its age"""
    try:
        action = await services.escalation_service.manually_escalate_work_order(
            work_order_id, request.target_user_id, request.reason, current_user.get("uid", "unknown")
        )
        return {"success": True, "message": "Work order escalated", "data": action.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e, f"escalating work order {work_order_id}")


@router.post("/check", response_model=Dict[str, Any])
async def run_escalation_check(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(require_role(OPERATOR_ROLES)),
    services: ServiceContainer = Depends(get_services),
):
    """Run both escalation triggers for the header warehouse now"""
    try:
        result = await services.escalation_service.evaluate_warehouse(warehouse_id)
        return {"success": True, "data": result.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e, f"running escalation check for {warehouse_id}")


@router.get("/stats", response_model=Dict[str, Any])
async def get_escalation_stats(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        stats = await services.escalation_service.get_escalation_stats(warehouse_id)
        return {"success": True, "data": stats.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e, f"loading escalation stats for {warehouse_id}")


@router.get("/rules", response_model=Dict[str, Any])
async def get_escalation_rules(
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    try:
        policy = await services.escalation_service.get_escalation_rules(warehouse_id)
        return {"success": True, "data": policy.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e, f"loading escalation rules for {warehouse_id}")


@router.put("/rules", response_model=Dict[str, Any])
async def update_escalation_rules(
    update: EscalationRulesUpdate,
    warehouse_id: str = Depends(get_warehouse_id),
    current_user: Dict[str, Any] = Depends(require_role(["manager", "admin"])),
    services: ServiceContainer = Depends(get_services),
):
    """Replace the time-threshold rules of a warehouse"""
    try:
        policy = await services.escalation_service.update_escalation_rules(warehouse_id, update.rules)
        logger.info(f"Escalation rules for {warehouse_id} updated by {current_user.get('uid')}")
        return {"success": True, "message": "Escalation rules updated", "data": policy.model_dump(mode="json")}
    except Exception as e:
        raise to_http_exception(e, f"updating escalation rules for {warehouse_id}")
