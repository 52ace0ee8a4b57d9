from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from warehouse_erp.errors import PurchaseOrderNotFoundError
from warehouse_erp.extensions import db
from warehouse_erp.models import PurchaseOrder, SupplyRecord
from warehouse_erp.services import quantity_ledger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Largest value a Numeric(12, 2) money column holds.
MAX_AMOUNT = Decimal("9999999999.99")
NOT_IN_ORDER_MESSAGE = "product is not part of this purchase order"


@dataclass(frozen=True)
class SupplyItemInput:
    product_id: int
    quantity: int
    unit_price: Decimal = Decimal("0")
    remark: str | None = None

    @property
    def rounded_unit_price(self) -> Decimal:
        return self.unit_price.quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def total_price(self) -> Decimal:
        return self.rounded_unit_price * self.quantity


@dataclass(frozen=True)
class SupplyQuantityError:
    product_id: int
    message: str
    purchase_quantity: int
    supplied_quantity: int
    request_quantity: int

    @property
    def available_quantity(self) -> int:
        return max(0, self.purchase_quantity - self.supplied_quantity)

    def to_dict(self) -> dict[str, object]:
        return {
            "product_id": self.product_id,
            "message": self.message,
            "purchase_quantity": self.purchase_quantity,
            "supplied_quantity": self.supplied_quantity,
            "available_quantity": self.available_quantity,
            "request_quantity": self.request_quantity,
        }


@dataclass
class ValidationResult:
    valid: bool = True
    message: str | None = None
    errors: list[SupplyQuantityError] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "message": self.message,
            "errors": [error.to_dict() for error in self.errors],
        }


def requested_quantities(items: Iterable[SupplyItemInput]) -> dict[int, int]:
    """Total requested quantity per product, in first-seen order."""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def _check_items(
    purchase_order_id: int,
    items: list[SupplyItemInput],
    supplied_for: Callable[[int], int],
    failure_message: str,
) -> ValidationResult:
    if db.session.get(PurchaseOrder, purchase_order_id) is None:
        raise PurchaseOrderNotFoundError(purchase_order_id)

    purchased = {item.product_id: item for item in quantity_ledger.purchase_items(purchase_order_id)}
    product_codes = {product_id: item.product.code for product_id, item in purchased.items()}

    result = ValidationResult()
    for product_id, request_qty in requested_quantities(items).items():
        purchase_item = purchased.get(product_id)
        if purchase_item is None:
            result.errors.append(
                SupplyQuantityError(
                    product_id=product_id,
                    message=NOT_IN_ORDER_MESSAGE,
                    purchase_quantity=0,
                    supplied_quantity=0,
                    request_quantity=request_qty,
                )
            )
            continue

        purchase_qty = purchase_item.quantity
        if request_qty <= 0:
            result.errors.append(
                SupplyQuantityError(
                    product_id=product_id,
                    message="supply quantity must be a positive integer",
                    purchase_quantity=purchase_qty,
                    supplied_quantity=0,
                    request_quantity=request_qty,
                )
            )
            continue

        supplied_qty = supplied_for(product_id)
        available_qty = quantity_ledger.remaining_quantity(purchase_qty, supplied_qty)
        if request_qty > available_qty:
            result.errors.append(
                SupplyQuantityError(
                    product_id=product_id,
                    message=(
                        f"product {product_codes.get(product_id) or product_id} exceeds its supply limit: "
                        f"purchased {purchase_qty}, supplied {supplied_qty}, "
                        f"available {available_qty}, requested {request_qty}"
                    ),
                    purchase_quantity=purchase_qty,
                    supplied_quantity=supplied_qty,
                    request_quantity=request_qty,
                )
            )

    result.valid = not result.errors
    if not result.valid:
        result.message = failure_message
        logger.info(
            "supply quantity rejected for purchase order %s: %s",
            purchase_order_id,
            [error.product_id for error in result.errors],
        )
    return result


def validate_supply_quantity(
    purchase_order_id: int,
    items: list[SupplyItemInput],
    exclude_record_id: int | None = None,
) -> ValidationResult:
    """Check a proposal against one snapshot of supplied totals.

    For trusted single-writer flows; public submissions use
    :func:`validate_supply_quantity_realtime`.
    """
    supplied = quantity_ledger.supplied_quantities(purchase_order_id, exclude_record_id)
    return _check_items(
        purchase_order_id,
        items,
        lambda product_id: supplied.get(product_id, 0),
        "some products exceed their supply limit, please review and resubmit",
    )


def validate_supply_quantity_realtime(
    purchase_order_id: int,
    items: list[SupplyItemInput],
    exclude_record_id: int | None = None,
) -> ValidationResult:
    """Check a proposal re-reading each product's supplied total at check time."""
    return _check_items(
        purchase_order_id,
        items,
        lambda product_id: quantity_ledger.supplied_quantity(purchase_order_id, product_id, exclude_record_id),
        "some products exceed their supply limit, please refresh and fill in again",
    )


def can_disable_record(record_id: int) -> bool:
    record = db.session.get(SupplyRecord, record_id)
    return record is not None and record.can_disable()
