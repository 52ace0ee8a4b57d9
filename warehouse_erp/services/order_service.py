from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from warehouse_erp.errors import PurchaseOrderNotFoundError
from warehouse_erp.extensions import db
from warehouse_erp.models import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from warehouse_erp.services.audit_service import record_audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal
    remark: str | None = None


def generate_order_number() -> str:
    return f"PO-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def create_purchase_order(
    *,
    shop_id: int,
    supplier_id: int,
    lines: list[PurchaseLineInput],
    operator_id: int | None = None,
    discount_amount: Decimal = Decimal("0"),
    urgent: bool = False,
    remark: str | None = None,
) -> PurchaseOrder:
    total = Decimal("0")
    order = PurchaseOrder(
        order_number=generate_order_number(),
        shop_id=shop_id,
        supplier_id=supplier_id,
        operator_id=operator_id,
        status=PurchaseOrderStatus.CREATED,
        urgent=urgent,
        remark=remark,
    )
    for line in lines:
        amount = (line.unit_price * line.quantity).quantize(Decimal("0.01"))
        order.items.append(
            PurchaseOrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price.quantize(Decimal("0.01")),
                amount=amount,
                remark=line.remark,
            )
        )
        total += amount

    order.total_amount = total.quantize(Decimal("0.01"))
    order.discount_amount = discount_amount.quantize(Decimal("0.01"))
    order.final_amount = max(Decimal("0"), total - discount_amount).quantize(Decimal("0.01"))
    db.session.add(order)
    db.session.flush()

    record_audit(
        entity_type="purchase_order",
        entity_id=str(order.id),
        action="create",
        after={
            "order_number": order.order_number,
            "status": order.status.value,
            "final_amount": str(order.final_amount),
        },
        actor_user_id=operator_id,
    )
    db.session.commit()
    db.session.refresh(order)
    logger.info("purchase order %s created with %d line items", order.order_number, len(lines))
    return order


def transition_order_status(
    purchase_order_id: int,
    to_status: PurchaseOrderStatus,
    reason: str | None = None,
    *,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, purchase_order_id)
    if order is None:
        raise PurchaseOrderNotFoundError(purchase_order_id)

    previous = order.transition_to(to_status)
    record_audit(
        entity_type="purchase_order",
        entity_id=str(order.id),
        action="status.update",
        before={"status": previous.value},
        after={"status": to_status.value, "reason": reason},
        actor_user_id=actor_user_id,
    )
    db.session.commit()
    logger.info("purchase order %s status %s -> %s", order.order_number, previous.value, to_status.value)
    return order
