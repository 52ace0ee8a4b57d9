"""Read-only supply quantity bookkeeping for purchase orders.

Only supply records in ``active`` status count toward the supplied total, so
disabling a record releases its quantities without touching any other row.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select

from warehouse_erp.extensions import db
from warehouse_erp.models import (
    Product,
    PurchaseOrderItem,
    SupplyProgressStatus,
    SupplyRecord,
    SupplyRecordItem,
    SupplyRecordStatus,
)


@dataclass(frozen=True)
class ProductSupplyStatus:
    product_id: int
    purchase_quantity: int
    supplied_quantity: int
    available_quantity: int
    supply_progress: int
    product_name: str | None = None
    product_code: str | None = None
    product_sku: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_code": self.product_code,
            "product_sku": self.product_sku,
            "purchase_quantity": self.purchase_quantity,
            "supplied_quantity": self.supplied_quantity,
            "available_quantity": self.available_quantity,
            "supply_progress": self.supply_progress,
        }


@dataclass(frozen=True)
class AvailableProduct:
    product_id: int
    product_code: str
    product_spec: str
    purchase_quantity: int
    supplied_quantity: int
    available_quantity: int
    unit_price: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_spec": self.product_spec,
            "purchase_quantity": self.purchase_quantity,
            "supplied_quantity": self.supplied_quantity,
            "available_quantity": self.available_quantity,
            "unit_price": str(self.unit_price),
        }


@dataclass(frozen=True)
class SupplyStatistics:
    total_records: int = 0
    active_records: int = 0
    total_amount: Decimal = Decimal("0.00")
    product_statuses: list[ProductSupplyStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_records": self.total_records,
            "active_records": self.active_records,
            "total_amount": str(self.total_amount),
            "product_statuses": [status.to_dict() for status in self.product_statuses],
        }


def supply_progress(purchased: int, supplied: int) -> int:
    """Percentage of ``purchased`` covered by ``supplied``, half-up rounded and clamped to 0..100."""
    if purchased <= 0:
        return 0
    ratio = (Decimal(supplied) * 100 / Decimal(purchased)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(ratio)))


def remaining_quantity(purchased: int, supplied: int) -> int:
    return max(0, purchased - supplied)


def build_product_status(
    product_id: int,
    purchased: int,
    supplied: int,
    *,
    product: Product | None = None,
    product_name: str | None = None,
    product_sku: str | None = None,
) -> ProductSupplyStatus:
    return ProductSupplyStatus(
        product_id=product_id,
        purchase_quantity=purchased,
        supplied_quantity=supplied,
        available_quantity=remaining_quantity(purchased, supplied),
        supply_progress=supply_progress(purchased, supplied),
        product_name=product.product_name if product is not None else product_name,
        product_code=product.code if product is not None else None,
        product_sku=product.sku if product is not None else product_sku,
    )


def _active_supply_items_stmt(purchase_order_id: int, exclude_record_id: int | None):
    stmt = (
        select(SupplyRecordItem.product_id, func.coalesce(func.sum(SupplyRecordItem.quantity), 0))
        .join(SupplyRecord, SupplyRecord.id == SupplyRecordItem.supply_record_id)
        .where(
            SupplyRecord.purchase_order_id == purchase_order_id,
            SupplyRecord.status == SupplyRecordStatus.ACTIVE,
        )
    )
    if exclude_record_id is not None:
        stmt = stmt.where(SupplyRecord.id != exclude_record_id)
    return stmt


def supplied_quantity(
    purchase_order_id: int,
    product_id: int,
    exclude_record_id: int | None = None,
) -> int:
    """Fresh read of the active supplied total for one product; never cached."""
    stmt = (
        select(func.coalesce(func.sum(SupplyRecordItem.quantity), 0))
        .join(SupplyRecord, SupplyRecord.id == SupplyRecordItem.supply_record_id)
        .where(
            SupplyRecord.purchase_order_id == purchase_order_id,
            SupplyRecord.status == SupplyRecordStatus.ACTIVE,
            SupplyRecordItem.product_id == product_id,
        )
    )
    if exclude_record_id is not None:
        stmt = stmt.where(SupplyRecord.id != exclude_record_id)
    total = db.session.scalar(stmt)
    return max(0, int(total or 0))


def supplied_quantities(purchase_order_id: int, exclude_record_id: int | None = None) -> dict[int, int]:
    stmt = _active_supply_items_stmt(purchase_order_id, exclude_record_id).group_by(SupplyRecordItem.product_id)
    return {product_id: int(total or 0) for product_id, total in db.session.execute(stmt).all()}


def purchase_items(purchase_order_id: int) -> list[PurchaseOrderItem]:
    stmt = (
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderItem.id.asc())
    )
    return list(db.session.execute(stmt).scalars().all())


def purchased_quantity(purchase_order_id: int, product_id: int) -> int:
    total = db.session.scalar(
        select(func.coalesce(func.sum(PurchaseOrderItem.quantity), 0)).where(
            PurchaseOrderItem.purchase_order_id == purchase_order_id,
            PurchaseOrderItem.product_id == product_id,
        )
    )
    return int(total or 0)


def available_quantity(purchase_order_id: int, product_id: int) -> int:
    purchased = purchased_quantity(purchase_order_id, product_id)
    if purchased == 0:
        return 0
    return remaining_quantity(purchased, supplied_quantity(purchase_order_id, product_id))


def available_products_list(purchase_order_id: int) -> list[AvailableProduct]:
    """Line items that can still take supply; fully supplied products are omitted."""
    supplied = supplied_quantities(purchase_order_id)
    result: list[AvailableProduct] = []
    for item in purchase_items(purchase_order_id):
        supplied_qty = supplied.get(item.product_id, 0)
        available_qty = remaining_quantity(item.quantity, supplied_qty)
        if available_qty <= 0:
            continue
        product = item.product
        spec = " ".join(part for part in [product.specification, product.color] if part).strip()
        result.append(
            AvailableProduct(
                product_id=item.product_id,
                product_code=product.code or "",
                product_spec=spec,
                purchase_quantity=item.quantity,
                supplied_quantity=supplied_qty,
                available_quantity=available_qty,
                unit_price=item.unit_price,
            )
        )
    return result


def product_statuses(purchase_order_id: int) -> list[ProductSupplyStatus]:
    supplied = supplied_quantities(purchase_order_id)
    return [
        build_product_status(item.product_id, item.quantity, supplied.get(item.product_id, 0), product=item.product)
        for item in purchase_items(purchase_order_id)
    ]


def supply_statistics(purchase_order_id: int) -> SupplyStatistics:
    """Supply record counts, active amount and per-line-item progress for one order."""
    total_records = db.session.scalar(
        select(func.count(SupplyRecord.id)).where(SupplyRecord.purchase_order_id == purchase_order_id)
    )
    active_records, active_amount = db.session.execute(
        select(func.count(SupplyRecord.id), func.coalesce(func.sum(SupplyRecord.total_amount), 0)).where(
            SupplyRecord.purchase_order_id == purchase_order_id,
            SupplyRecord.status == SupplyRecordStatus.ACTIVE,
        )
    ).one()
    return SupplyStatistics(
        total_records=int(total_records or 0),
        active_records=int(active_records or 0),
        total_amount=Decimal(str(active_amount or 0)).quantize(Decimal("0.01")),
        product_statuses=product_statuses(purchase_order_id),
    )


def supply_progress_status(purchase_order_id: int) -> SupplyProgressStatus:
    statuses = [status for status in product_statuses(purchase_order_id) if status.purchase_quantity > 0]
    if not statuses or all(status.supplied_quantity == 0 for status in statuses):
        return SupplyProgressStatus.PENDING
    if all(status.available_quantity == 0 for status in statuses):
        return SupplyProgressStatus.FULLY_SUPPLIED
    return SupplyProgressStatus.PARTIAL
