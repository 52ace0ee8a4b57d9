"""Supplier-facing submission flow and internal disable flow for supply records.

Every write against an order's supply records runs in one transaction that
first bumps ``PurchaseOrder.supply_lock_version``. The UPDATE takes the
order's write lock, so concurrent submissions for the same order are
serialized and the quantity re-check inside the transaction sees every
previously committed record.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from warehouse_erp.errors import (
    PurchaseOrderNotFoundError,
    SupplyQuantityConflictError,
    SupplyRecordNotFoundError,
)
from warehouse_erp.extensions import db
from warehouse_erp.models import (
    PurchaseOrder,
    SupplyProgressStatus,
    SupplyRecord,
    SupplyRecordItem,
    SupplyRecordStatus,
)
from warehouse_erp.services import quantity_ledger
from warehouse_erp.services.audit_service import record_audit
from warehouse_erp.services.supply_validator import (
    SupplyItemInput,
    ValidationResult,
    validate_supply_quantity_realtime,
)

logger = logging.getLogger(__name__)


@dataclass
class SupplySubmissionResult:
    accepted: bool
    record: SupplyRecord | None = None
    validation: ValidationResult | None = None
    available_products: list[quantity_ledger.AvailableProduct] = field(default_factory=list)


def lock_order_for_supply(purchase_order_id: int) -> None:
    locked = db.session.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == purchase_order_id)
        .values(supply_lock_version=PurchaseOrder.supply_lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    if locked.rowcount == 0:
        raise PurchaseOrderNotFoundError(purchase_order_id)


def refresh_order_supply_status(purchase_order_id: int, *, actor_user_id: int | None = None) -> SupplyProgressStatus:
    order = db.session.get(PurchaseOrder, purchase_order_id)
    if order is None:
        raise PurchaseOrderNotFoundError(purchase_order_id)

    new_status = quantity_ledger.supply_progress_status(purchase_order_id)
    if order.supply_status != new_status:
        record_audit(
            entity_type="purchase_order",
            entity_id=str(purchase_order_id),
            action="supply_status.update",
            before={"supply_status": order.supply_status.value},
            after={"supply_status": new_status.value},
            actor_user_id=actor_user_id,
        )
        logger.info(
            "purchase order %s supply status %s -> %s",
            purchase_order_id,
            order.supply_status.value,
            new_status.value,
        )
        order.supply_status = new_status
    return new_status


def _build_record(
    purchase_order_id: int,
    items: list[SupplyItemInput],
    *,
    share_code: str | None,
    remark: str | None,
    supplier_info: dict[str, Any] | None,
    replaces_record_id: int | None,
) -> SupplyRecord:
    record = SupplyRecord(
        purchase_order_id=purchase_order_id,
        share_code=share_code,
        status=SupplyRecordStatus.ACTIVE,
        supplier_info=supplier_info or {},
        remark=remark,
        replaces_record_id=replaces_record_id,
    )
    total = Decimal("0")
    for item in items:
        record.items.append(
            SupplyRecordItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.rounded_unit_price,
                total_price=item.total_price,
                remark=item.remark,
            )
        )
        total += item.total_price
    record.total_amount = total.quantize(Decimal("0.01"))
    return record


def submit_supply_record(
    purchase_order_id: int,
    items: list[SupplyItemInput],
    *,
    share_code: str | None = None,
    remark: str | None = None,
    supplier_info: dict[str, Any] | None = None,
    replaces_record_id: int | None = None,
    actor_user_id: int | None = None,
) -> SupplySubmissionResult:
    """Validate and persist a supply record; optionally replace an active one.

    A proposal rejected by the pre-check comes back as a non-accepted result.
    A proposal that passed the pre-check but no longer fits once the order is
    locked raises :class:`SupplyQuantityConflictError` after rolling back.
    """
    validation = validate_supply_quantity_realtime(purchase_order_id, items, replaces_record_id)
    if not validation.valid:
        return SupplySubmissionResult(
            accepted=False,
            validation=validation,
            available_products=quantity_ledger.available_products_list(purchase_order_id),
        )

    # End the pre-check read transaction so the re-check reads after the lock.
    db.session.rollback()
    try:
        lock_order_for_supply(purchase_order_id)

        replaced: SupplyRecord | None = None
        if replaces_record_id is not None:
            replaced = db.session.scalar(
                select(SupplyRecord).where(
                    SupplyRecord.id == replaces_record_id,
                    SupplyRecord.purchase_order_id == purchase_order_id,
                )
            )
            if replaced is None or not replaced.can_disable():
                raise SupplyRecordNotFoundError(replaces_record_id)
            if share_code is not None and replaced.share_code != share_code:
                raise SupplyRecordNotFoundError(replaces_record_id)

        recheck = validate_supply_quantity_realtime(purchase_order_id, items, replaces_record_id)
        if not recheck.valid:
            raise SupplyQuantityConflictError(recheck.errors, recheck.message or "supply quantity conflict")

        if replaced is not None:
            replaced.disable()

        record = _build_record(
            purchase_order_id,
            items,
            share_code=share_code,
            remark=remark,
            supplier_info=supplier_info,
            replaces_record_id=replaces_record_id,
        )
        db.session.add(record)
        db.session.flush()

        refresh_order_supply_status(purchase_order_id, actor_user_id=actor_user_id)
        record_audit(
            entity_type="supply_record",
            entity_id=str(record.id),
            action="replace" if replaced is not None else "create",
            before={"replaced_record_id": replaces_record_id} if replaced is not None else None,
            after={
                "purchase_order_id": purchase_order_id,
                "share_code": share_code,
                "item_count": len(items),
                "total_amount": str(record.total_amount),
            },
            actor_user_id=actor_user_id,
        )
        db.session.commit()
    except SupplyQuantityConflictError:
        db.session.rollback()
        logger.warning("supply submission for purchase order %s lost a concurrent race", purchase_order_id)
        raise
    except (SupplyRecordNotFoundError, PurchaseOrderNotFoundError):
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("failed to persist supply record for purchase order %s", purchase_order_id)
        raise

    db.session.refresh(record)
    logger.info(
        "supply record %s accepted for purchase order %s (%d items)",
        record.id,
        purchase_order_id,
        len(items),
    )
    return SupplySubmissionResult(accepted=True, record=record, validation=validation)


def disable_supply_record(record_id: int, *, actor_user_id: int | None = None) -> bool:
    """Disable an active supply record, releasing its quantities.

    Returns False without changing anything when the record is already disabled.
    """
    record = db.session.get(SupplyRecord, record_id)
    if record is None:
        raise SupplyRecordNotFoundError(record_id)
    purchase_order_id = record.purchase_order_id

    db.session.rollback()
    try:
        lock_order_for_supply(purchase_order_id)
        record = db.session.get(SupplyRecord, record_id)
        if record is None or not record.can_disable():
            db.session.rollback()
            return False

        record.disable()
        db.session.flush()
        refresh_order_supply_status(purchase_order_id, actor_user_id=actor_user_id)
        record_audit(
            entity_type="supply_record",
            entity_id=str(record_id),
            action="disable",
            before={"status": SupplyRecordStatus.ACTIVE.value},
            after={"status": SupplyRecordStatus.DISABLED.value, "purchase_order_id": purchase_order_id},
            actor_user_id=actor_user_id,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("failed to disable supply record %s", record_id)
        raise

    logger.info("supply record %s disabled on purchase order %s", record_id, purchase_order_id)
    return True
