"""
Typed accessors over the document store.

This is the capability set the scheduler, compliance calculator and
escalation service consume. Unlike the raw DatabaseService it fails loud:
a store failure raises StoreError, a missing record comes back as None and
a record that does not validate raises ValidationFailure.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .collections import COLLECTIONS
from .database_service import DatabaseService, DOCUMENT_NOT_FOUND
from ..core.exceptions import NotFoundError, StoreError, ValidationFailure
from ..models.database_models import (
    Equipment, PmTemplate, Profile, Warehouse, WorkOrder, WorkOrderType,
)
from ..models.escalation_models import EscalationAction, WarehouseEscalationPolicy
from ..models.notification_models import Notification
from ..services.schedule_formatter import utc_now

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Work order filters evaluated after the store query
_LIST_FILTERS = ("status", "type", "priority")


def to_document(model: BaseModel) -> dict:
    """Serialize a record the way it is written to the store"""
    return model.model_dump(mode="json", exclude_none=True)


def _to_model(model_cls: Type[ModelT], doc: dict) -> ModelT:
    data = dict(doc)
    doc_id = data.pop("_doc_id", None)
    if doc_id and not data.get("id"):
        data["id"] = doc_id
    try:
        return model_cls(**data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid {model_cls.__name__} record {data.get('id')}: {e}") from e


def _enum_values(values: Any) -> List[str]:
    if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple, set)):
        values = [values]
    return [getattr(v, "value", v) for v in values]


class StorageService:
    def __init__(self, db: DatabaseService, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    # Low-level helpers
    async def _query(self, collection: str, filters: Optional[list] = None) -> List[dict]:
        success, documents, error = await self.db.query_documents(COLLECTIONS[collection], filters or [])
        if not success:
            raise StoreError("query", collection, error)
        return documents

    async def _get(self, collection: str, document_id: Optional[str]) -> Optional[dict]:
        if not document_id:
            return None
        success, document, error = await self.db.get_document(COLLECTIONS[collection], document_id)
        if not success:
            if error == DOCUMENT_NOT_FOUND:
                return None
            raise StoreError("get", collection, error)
        return document

    async def _create(self, collection: str, model: ModelT) -> ModelT:
        if not model.id:
            model.id = str(uuid.uuid4())
        if hasattr(model, "created_at") and model.created_at is None:
            model.created_at = self.clock()
        success, doc_id, error = await self.db.create_document(
            COLLECTIONS[collection], to_document(model), document_id=model.id
        )
        if not success:
            raise StoreError("create", collection, error)
        model.id = doc_id
        return model

    async def _update(self, collection: str, document_id: str, data: dict) -> None:
        success, error = await self.db.update_document(COLLECTIONS[collection], document_id, data)
        if not success:
            if error == DOCUMENT_NOT_FOUND:
                raise NotFoundError(collection, document_id)
            raise StoreError("update", collection, error)

    # Warehouses
    async def get_warehouses(self, active_only: bool = True) -> List[Warehouse]:
        filters = [("active", "==", True)] if active_only else []
        return [_to_model(Warehouse, d) for d in await self._query("warehouses", filters)]

    async def get_warehouse(self, warehouse_id: str) -> Optional[Warehouse]:
        doc = await self._get("warehouses", warehouse_id)
        return _to_model(Warehouse, doc) if doc else None

    # Profiles
    async def get_profiles(self) -> List[Profile]:
        return [_to_model(Profile, d) for d in await self._query("profiles")]

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        doc = await self._get("profiles", profile_id)
        return _to_model(Profile, doc) if doc else None

    # Equipment
    async def get_equipment(self, warehouse_id: str) -> List[Equipment]:
        docs = await self._query("equipment", [("warehouse_id", "==", warehouse_id)])
        return [_to_model(Equipment, d) for d in docs]

    async def get_equipment_by_id(self, equipment_id: str) -> Optional[Equipment]:
        doc = await self._get("equipment", equipment_id)
        return _to_model(Equipment, doc) if doc else None

    # PM Templates
    async def get_pm_templates(self, warehouse_id: str) -> List[PmTemplate]:
        docs = await self._query("pm_templates", [("warehouse_id", "==", warehouse_id)])
        return [_to_model(PmTemplate, d) for d in docs]

    async def get_pm_template(self, template_id: str) -> Optional[PmTemplate]:
        doc = await self._get("pm_templates", template_id)
        return _to_model(PmTemplate, doc) if doc else None

    # Work Orders
    async def get_work_orders(self, warehouse_id: str, filters: Optional[Dict[str, Any]] = None) -> List[WorkOrder]:
        """
        Get work orders for a warehouse, newest first.

        Args:
            warehouse_id: Owning warehouse
            filters: Optional keys: status, type, priority (single value or list),
                     equipment_id, assigned_to (exact match)
        """
        filters = filters or {}
        query = [("warehouse_id", "==", warehouse_id)]
        for key in ("equipment_id", "assigned_to"):
            if filters.get(key):
                query.append((key, "==", filters[key]))

        work_orders = [_to_model(WorkOrder, d) for d in await self._query("work_orders", query)]

        for key in _LIST_FILTERS:
            if filters.get(key):
                allowed = set(_enum_values(filters[key]))
                work_orders = [wo for wo in work_orders if getattr(wo, key).value in allowed]

        return sorted(
            work_orders,
            key=lambda wo: wo.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )

    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        doc = await self._get("work_orders", work_order_id)
        return _to_model(WorkOrder, doc) if doc else None

    async def create_work_order(self, data: Dict[str, Any]) -> WorkOrder:
        now = self.clock()
        try:
            work_order = WorkOrder(**{"created_at": now, "updated_at": now, **data})
        except ValidationError as e:
            raise ValidationFailure(f"Invalid work order: {e}") from e

        if not work_order.fo_number:
            prefix = "PM" if work_order.type == WorkOrderType.PREVENTIVE else "WO"
            work_order.fo_number = f"{prefix}-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"

        work_order = await self._create("work_orders", work_order)
        logger.debug(f"Created work order {work_order.fo_number} ({work_order.id})")
        return work_order

    async def update_work_order(self, work_order_id: str, patch: Dict[str, Any]) -> WorkOrder:
        existing = await self.get_work_order(work_order_id)
        if existing is None:
            raise NotFoundError("work_order", work_order_id)

        merged = {**existing.model_dump(), **patch, "updated_at": self.clock()}
        try:
            updated = WorkOrder(**merged)
        except ValidationError as e:
            raise ValidationFailure(f"Invalid work order update for {work_order_id}: {e}") from e

        changed = to_document(updated)
        await self._update("work_orders", work_order_id, {k: changed.get(k) for k in [*patch.keys(), "updated_at"]})
        return updated

    # Notifications
    async def create_notification(self, notification: Notification) -> Notification:
        return await self._create("notifications", notification)

    async def get_notifications(self, recipient_id: Optional[str] = None) -> List[Notification]:
        filters = [("recipient_id", "==", recipient_id)] if recipient_id else []
        return [_to_model(Notification, d) for d in await self._query("notifications", filters)]

    # Escalation rule store and audit log
    async def get_escalation_policy(self, warehouse_id: str) -> Optional[WarehouseEscalationPolicy]:
        doc = await self._get("escalation_rules", warehouse_id)
        if not doc:
            return None
        doc.pop("_doc_id", None)
        doc.pop("id", None)
        return _to_model(WarehouseEscalationPolicy, doc)

    async def save_escalation_policy(self, policy: WarehouseEscalationPolicy) -> WarehouseEscalationPolicy:
        policy.updated_at = self.clock()
        document = to_document(policy)
        existing = await self._get("escalation_rules", policy.warehouse_id)
        if existing is None:
            success, _, error = await self.db.create_document(
                COLLECTIONS["escalation_rules"], document, document_id=policy.warehouse_id
            )
            if not success:
                raise StoreError("create", "escalation_rules", error)
        else:
            await self._update("escalation_rules", policy.warehouse_id, document)
        return policy

    async def record_escalation(self, action: EscalationAction) -> None:
        success, _, error = await self.db.create_document(
            COLLECTIONS["escalation_log"], to_document(action), document_id=str(uuid.uuid4())
        )
        if not success:
            raise StoreError("create", "escalation_log", error)

    async def get_escalation_log(self, warehouse_id: str) -> List[EscalationAction]:
        docs = await self._query("escalation_log", [("warehouse_id", "==", warehouse_id)])
        return [_to_model(EscalationAction, d) for d in docs]
