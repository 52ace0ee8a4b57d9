from __future__ import annotations

from enum import Enum
from typing import Any


class PurchaseOrderNotFoundError(LookupError):
    def __init__(self, purchase_order_id: int) -> None:
        super().__init__(f"purchase order {purchase_order_id} not found")
        self.purchase_order_id = purchase_order_id


class SupplyRecordNotFoundError(LookupError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"supply record {record_id} not found")
        self.record_id = record_id


class InvalidStatusTransitionError(ValueError):
    def __init__(self, entity: str, from_status: str, to_status: str) -> None:
        super().__init__(f"cannot change {entity} status from {from_status} to {to_status}")
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status


class SupplyQuantityConflictError(Exception):
    """Raised when the in-transaction re-check finds that a submission no longer fits."""

    def __init__(self, errors: list[Any], message: str = "supply quantity conflict") -> None:
        super().__init__(message)
        self.errors = errors
        self.message = message


class StatisticsErrorCode(str, Enum):
    INVALID_FILTERS = "INVALID_FILTERS"
    DATABASE_QUERY_FAILED = "DATABASE_QUERY_FAILED"
    DATA_PROCESSING_FAILED = "DATA_PROCESSING_FAILED"


class StatisticsCalculationError(Exception):
    def __init__(
        self,
        message: str,
        code: StatisticsErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
