"""Public supplier-facing endpoints, gated only by the share code (and its extract code)."""
from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, request
from sqlalchemy import select

from warehouse_erp.api.v1.payloads import (
    PayloadError,
    build_purchase_order_response,
    build_supply_record_response,
    build_supply_record_summary,
    isoformat,
    parse_optional_int,
    parse_supply_items,
)
from warehouse_erp.errors import SupplyQuantityConflictError, SupplyRecordNotFoundError
from warehouse_erp.extensions import db
from warehouse_erp.models import PurchaseOrder, SupplyRecord
from warehouse_erp.services import quantity_ledger
from warehouse_erp.services.audit_service import client_ip
from warehouse_erp.services.supply_share import ShareAccessDenial, ShareVerifyResult, get_share_manager
from warehouse_erp.services.supply_submission import SupplySubmissionResult, submit_supply_record

logger = logging.getLogger(__name__)

supply_bp = Blueprint("supply", __name__)

DENIAL_STATUS_CODES = {
    ShareAccessDenial.NOT_FOUND: 404,
    ShareAccessDenial.DISABLED: 403,
    ShareAccessDenial.EXPIRED: 410,
    ShareAccessDenial.EXTRACT_CODE_MISMATCH: 401,
    ShareAccessDenial.ACCESS_LIMIT_REACHED: 429,
    ShareAccessDenial.OPERATION_FAILED: 500,
}


@supply_bp.post("/verify")
def verify_share() -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    share_code = str(payload.get("share_code", "")).strip()
    if not share_code:
        return {"message": "share_code is required"}, 400

    result, denied = _verify(share_code, payload.get("extract_code"))
    if denied is not None:
        return denied
    order = db.session.get(PurchaseOrder, result.purchase_order_id)
    return {
        "success": True,
        "purchase_order_id": result.purchase_order_id,
        "order_number": order.order_number if order else None,
        "expires_at": result.share_info.expires_at.isoformat(),
    }, 200


@supply_bp.get("/<string:share_code>")
def get_supply_page(share_code: str) -> tuple[dict[str, object], int]:
    result, denied = _verify(share_code, request.args.get("extract_code"))
    if denied is not None:
        return denied

    order = db.session.get(PurchaseOrder, result.purchase_order_id)
    response = build_purchase_order_response(order)
    # Internal bookkeeping stays out of the supplier view.
    for key in ("operator_id", "discount_amount", "remark"):
        response.pop(key, None)
    return {
        "purchase_order": response,
        "product_statuses": [status.to_dict() for status in quantity_ledger.product_statuses(order.id)],
        "available_products": _available_products(order.id),
        "expires_at": result.share_info.expires_at.isoformat(),
    }, 200


@supply_bp.get("/<string:share_code>/products")
def get_available_products(share_code: str) -> tuple[dict[str, object], int]:
    result, denied = _verify(share_code, request.args.get("extract_code"))
    if denied is not None:
        return denied
    return {"available_products": _available_products(result.purchase_order_id)}, 200


@supply_bp.get("/<string:share_code>/records")
def get_submitted_records(share_code: str) -> tuple[dict[str, object], int]:
    try:
        record_id = parse_optional_int(request.args.get("record_id"), "record_id")
    except PayloadError as exc:
        return {"message": str(exc)}, 400

    result, denied = _verify(share_code, request.args.get("extract_code"))
    if denied is not None:
        return denied

    stmt = select(SupplyRecord).where(
        SupplyRecord.purchase_order_id == result.purchase_order_id,
        SupplyRecord.share_code == share_code,
    )
    if record_id is not None:
        record = db.session.scalar(stmt.where(SupplyRecord.id == record_id))
        if record is None:
            return {"message": "supply record not found"}, 404
        return {"record": build_supply_record_response(record)}, 200

    records = db.session.execute(
        stmt.order_by(SupplyRecord.created_at.desc(), SupplyRecord.id.desc())
    ).scalars().all()
    return {
        "records": [build_supply_record_summary(record) for record in records],
        "total_count": len(records),
    }, 200


@supply_bp.post("/<string:share_code>")
def submit_supply(share_code: str) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    result, denied = _verify(share_code, payload.get("extract_code"))
    if denied is not None:
        return denied
    return _submit(share_code, result.purchase_order_id, payload, replaces_record_id=None)


@supply_bp.put("/<string:share_code>")
def replace_supply(share_code: str) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    try:
        record_id = parse_optional_int(payload.get("record_id"), "record_id")
    except PayloadError as exc:
        return {"message": str(exc)}, 400
    if record_id is None:
        return {"message": "record_id is required"}, 400

    result, denied = _verify(share_code, payload.get("extract_code"))
    if denied is not None:
        return denied
    return _submit(share_code, result.purchase_order_id, payload, replaces_record_id=record_id)


def _verify(
    share_code: str,
    extract_code: Any,
) -> tuple[ShareVerifyResult, tuple[dict[str, object], int] | None]:
    result = get_share_manager().verify_share_access(
        share_code,
        str(extract_code) if extract_code is not None else None,
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    if result.success:
        return result, None

    logger.info("share access denied for %s: %s", share_code, result.reason.value)
    return result, (
        {"message": result.message, "reason": result.reason.value},
        DENIAL_STATUS_CODES[result.reason],
    )


def _available_products(purchase_order_id: int) -> list[dict[str, object]]:
    return [product.to_dict() for product in quantity_ledger.available_products_list(purchase_order_id)]


def _rejection(message: str, errors: list[Any], purchase_order_id: int) -> dict[str, object]:
    return {
        "message": message,
        "errors": [error.to_dict() for error in errors],
        "available_products": _available_products(purchase_order_id),
        "need_refresh": True,
    }


def _submit(
    share_code: str,
    purchase_order_id: int,
    payload: dict[str, Any],
    *,
    replaces_record_id: int | None,
) -> tuple[dict[str, object], int]:
    try:
        items = parse_supply_items(payload)
    except PayloadError as exc:
        return {"message": str(exc)}, 400

    supplier_info = payload.get("supplier_info")
    remark = payload.get("remark")
    try:
        submission: SupplySubmissionResult = submit_supply_record(
            purchase_order_id,
            items,
            share_code=share_code,
            remark=str(remark)[:500] if remark else None,
            supplier_info=supplier_info if isinstance(supplier_info, dict) else None,
            replaces_record_id=replaces_record_id,
        )
    except SupplyRecordNotFoundError:
        return {"message": "supply record does not exist or is no longer active"}, 404
    except SupplyQuantityConflictError as exc:
        return _rejection(exc.message, exc.errors, purchase_order_id), 409

    if not submission.accepted:
        validation = submission.validation
        return _rejection(
            validation.message or "supply quantity validation failed",
            validation.errors,
            purchase_order_id,
        ), 422

    record = submission.record
    return {
        "message": "supply record updated" if replaces_record_id is not None else "supply record submitted",
        "record_id": record.id,
        "replaced_record_id": replaces_record_id,
        "summary": {
            "item_count": len(record.items),
            "total_amount": str(record.total_amount),
            "created_at": isoformat(record.created_at),
        },
        "statistics": quantity_ledger.supply_statistics(purchase_order_id).to_dict(),
    }, 200 if replaces_record_id is not None else 201
