"""Request parsing and response building shared by the v1 blueprints."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from warehouse_erp.models import PurchaseOrder, SupplyRecord
from warehouse_erp.services.supply_validator import CENT, MAX_AMOUNT, SupplyItemInput


class PayloadError(ValueError):
    """Malformed request input; routes answer it with a 400."""


def parse_decimal(raw: Any, field_name: str, *, allow_zero: bool = True) -> Decimal:
    """Parse a money value rounded half-up to cents, no larger than ``MAX_AMOUNT``."""
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise PayloadError(f"{field_name} is invalid") from exc
    if not value.is_finite() or value < 0:
        raise PayloadError(f"{field_name} must be {'non-negative' if allow_zero else 'positive'}")
    if value > MAX_AMOUNT:
        raise PayloadError(f"{field_name} must not exceed {MAX_AMOUNT}")
    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value == 0 and not allow_zero:
        raise PayloadError(f"{field_name} must be positive")
    return value


def check_amount(value: Decimal, field_name: str) -> Decimal:
    if value > MAX_AMOUNT:
        raise PayloadError(f"{field_name} must not exceed {MAX_AMOUNT}")
    return value


def parse_optional_int(raw: Any, field_name: str) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise PayloadError(f"{field_name} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"{field_name} must be an integer") from exc


def parse_optional_datetime(raw: str | None, field_name: str) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise PayloadError(f"{field_name} must be an ISO 8601 date or datetime") from exc
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_supply_items(payload: dict[str, Any]) -> list[SupplyItemInput]:
    """Parse submitted supply rows, dropping rows whose quantity is not positive."""
    items_payload = payload.get("items")
    if not isinstance(items_payload, list) or not items_payload:
        raise PayloadError("items must be a non-empty list")

    items: list[SupplyItemInput] = []
    for idx, item in enumerate(items_payload):
        if not isinstance(item, dict):
            raise PayloadError(f"item at index {idx} must be an object")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise PayloadError(f"item at index {idx} requires product_id")
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise PayloadError(f"item at index {idx} quantity must be an integer")
        if quantity <= 0:
            continue
        remark = item.get("remark")
        items.append(
            SupplyItemInput(
                product_id=product_id,
                quantity=quantity,
                unit_price=parse_decimal(item.get("unit_price", 0) or 0, f"item at index {idx} unit_price"),
                remark=str(remark)[:500] if remark else None,
            )
        )

    if not items:
        raise PayloadError("fill in a supply quantity for at least one product")
    for idx, item in enumerate(items):
        check_amount(item.total_price, f"item at index {idx} total price")
    check_amount(sum((item.total_price for item in items), Decimal("0")), "supply total")
    return items


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def build_purchase_order_summary(order: PurchaseOrder) -> dict[str, object]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "shop_id": order.shop_id,
        "shop_name": order.shop.nickname if order.shop else None,
        "supplier_id": order.supplier_id,
        "supplier_name": order.supplier.supplier_name if order.supplier else None,
        "operator_id": order.operator_id,
        "status": order.status.value,
        "supply_status": order.supply_status.value,
        "total_amount": str(order.total_amount),
        "discount_amount": str(order.discount_amount),
        "final_amount": str(order.final_amount),
        "urgent": order.urgent,
        "remark": order.remark,
        "created_at": isoformat(order.created_at),
        "updated_at": isoformat(order.updated_at),
    }


def build_purchase_order_response(order: PurchaseOrder) -> dict[str, object]:
    response = build_purchase_order_summary(order)
    response["supplier"] = order.supplier.contact_card() if order.supplier else None
    response["items"] = [
        {
            "id": item.id,
            "product_id": item.product_id,
            "product_code": item.product.code,
            "product_name": item.product.product_name,
            "specification": item.product.specification,
            "color": item.product.color,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
            "amount": str(item.amount),
            "remark": item.remark,
        }
        for item in order.items
    ]
    return response


def build_supply_record_summary(record: SupplyRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "purchase_order_id": record.purchase_order_id,
        "share_code": record.share_code,
        "status": record.status.value,
        "supplier_info": record.supplier_info or {},
        "total_amount": str(record.total_amount),
        "item_count": len(record.items),
        "replaces_record_id": record.replaces_record_id,
        "remark": record.remark,
        "created_at": isoformat(record.created_at),
    }


def build_supply_record_response(record: SupplyRecord) -> dict[str, object]:
    response = build_supply_record_summary(record)
    response["updated_at"] = isoformat(record.updated_at)
    response["items"] = [
        {
            "id": item.id,
            "product_id": item.product_id,
            "product_code": item.product.code,
            "product_sku": item.product.sku,
            "specification": item.product.specification,
            "color": item.product.color,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
            "total_price": str(item.total_price),
            "remark": item.remark,
        }
        for item in record.items
    ]
    return response
