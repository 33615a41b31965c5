"""
Error taxonomy shared by the PM engine services and the HTTP layer.

- NotFoundError: referenced equipment, template, work order or profile is missing
- ValidationFailure: malformed input rejected before any store mutation
- NoEligibleTargetError: escalation could not find a role-matching active profile
- StoreError: the underlying document store reported a failure
"""

from typing import Optional


class PMEngineError(Exception):
    """Base class for all engine errors"""


class NotFoundError(PMEngineError):
    def __init__(self, entity: str, entity_id: Optional[str]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationFailure(PMEngineError):
    pass


class NoEligibleTargetError(PMEngineError):
    def __init__(self, role: str, warehouse_id: Optional[str]):
        self.role = role
        self.warehouse_id = warehouse_id
        super().__init__(f"No active {role} found in warehouse {warehouse_id}")


class StoreError(PMEngineError):
    def __init__(self, operation: str, collection: str, error: Optional[str]):
        self.operation = operation
        self.collection = collection
        self.error = error
        super().__init__(f"Store {operation} on '{collection}' failed: {error}")
