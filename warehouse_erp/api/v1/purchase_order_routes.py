from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import Blueprint, current_app, request
from sqlalchemy import func, select

from warehouse_erp.api.v1.payloads import (
    PayloadError,
    build_purchase_order_response,
    build_purchase_order_summary,
    build_supply_record_summary,
    check_amount,
    parse_decimal,
    parse_optional_datetime,
    parse_optional_int,
)
from warehouse_erp.errors import InvalidStatusTransitionError
from warehouse_erp.extensions import db
from warehouse_erp.models import (
    Product,
    PurchaseOrder,
    PurchaseOrderStatus,
    Shop,
    Supplier,
    SupplyRecord,
)
from warehouse_erp.security.decorators import current_user_id_from_token, require_permissions
from warehouse_erp.services import audit_service, order_service, quantity_ledger
from warehouse_erp.services.statistics_calculator import (
    StatisticsFilters,
    build_order_conditions,
    get_statistics_calculator,
)
from warehouse_erp.services.supply_share import ShareConfig, get_share_manager

purchase_order_bp = Blueprint("purchase_orders", __name__)

MAX_PAGE_SIZE = 100


@purchase_order_bp.get("")
@require_permissions("purchase.read")
def list_purchase_orders() -> tuple[dict[str, object], int]:
    try:
        filters = _statistics_filters_from_args()
        page = parse_optional_int(request.args.get("page"), "page") or 1
        page_size = parse_optional_int(request.args.get("page_size"), "page_size") or 20
    except PayloadError as exc:
        return {"message": str(exc)}, 400
    if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
        return {"message": f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}"}, 400

    # Validates the filters before the listing query runs.
    statistics = get_statistics_calculator().calculate_statistics(filters)

    conditions = build_order_conditions(filters)
    total = db.session.scalar(select(func.count(PurchaseOrder.id)).where(*conditions)) or 0
    orders = db.session.execute(
        select(PurchaseOrder)
        .where(*conditions)
        .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()

    return {
        "items": [build_purchase_order_summary(order) for order in orders],
        "pagination": {"page": page, "page_size": page_size, "total": total},
        "statistics": statistics.to_dict(),
    }, 200


@purchase_order_bp.post("")
@require_permissions("purchase.create")
def create_purchase_order() -> tuple[dict[str, object], int]:
    current_user_id = current_user_id_from_token()
    if current_user_id is None:
        return {"message": "invalid token identity"}, 401

    payload = request.get_json(silent=True) or {}
    shop_id = payload.get("shop_id")
    supplier_id = payload.get("supplier_id")
    items_payload = payload.get("items")

    if not isinstance(shop_id, int) or isinstance(shop_id, bool) or db.session.get(Shop, shop_id) is None:
        return {"message": "shop not found"}, 404
    if not isinstance(supplier_id, int) or isinstance(supplier_id, bool):
        return {"message": "supplier_id is required"}, 400
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        return {"message": "supplier not found"}, 404
    if not supplier.is_active:
        return {"message": "selected supplier is inactive"}, 400
    if not isinstance(items_payload, list) or not items_payload:
        return {"message": "items must be a non-empty list"}, 400

    lines: list[order_service.PurchaseLineInput] = []
    seen_products: set[int] = set()
    try:
        for idx, item in enumerate(items_payload):
            if not isinstance(item, dict):
                return {"message": f"item at index {idx} must be an object"}, 400
            product_id = item.get("product_id")
            quantity = item.get("quantity")
            if (
                not isinstance(product_id, int)
                or isinstance(product_id, bool)
                or db.session.get(Product, product_id) is None
            ):
                return {"message": f"item at index {idx} product not found"}, 404
            if product_id in seen_products:
                return {"message": f"item at index {idx} repeats product {product_id}"}, 400
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                return {"message": f"item at index {idx} quantity must be a positive integer"}, 400
            seen_products.add(product_id)
            lines.append(
                order_service.PurchaseLineInput(
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=parse_decimal(item.get("unit_price"), f"item at index {idx} unit_price"),
                    remark=item.get("remark"),
                )
            )
        discount = parse_decimal(payload.get("discount_amount", 0) or 0, "discount_amount")
        for idx, line in enumerate(lines):
            check_amount(line.unit_price * line.quantity, f"item at index {idx} amount")
        check_amount(sum((line.unit_price * line.quantity for line in lines), Decimal("0")), "total_amount")
    except PayloadError as exc:
        return {"message": str(exc)}, 400

    order = order_service.create_purchase_order(
        shop_id=shop_id,
        supplier_id=supplier_id,
        lines=lines,
        operator_id=current_user_id,
        discount_amount=discount,
        urgent=bool(payload.get("urgent", False)),
        remark=payload.get("remark"),
    )
    return build_purchase_order_response(order), 201


@purchase_order_bp.get("/<int:order_id>")
@require_permissions("purchase.read")
def get_purchase_order(order_id: int) -> tuple[dict[str, object], int]:
    order = db.session.get(PurchaseOrder, order_id)
    if order is None:
        return {"message": "purchase order not found"}, 404
    return build_purchase_order_response(order), 200


@purchase_order_bp.post("/<int:order_id>/approve")
@require_permissions("purchase.approve")
def approve_purchase_order(order_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    to_status_raw = str(payload.get("to_status", "")).strip().upper()
    reason = str(payload.get("reason", "")).strip()
    if not to_status_raw or not reason:
        return {"message": "to_status and reason are required"}, 400
    try:
        to_status = PurchaseOrderStatus(to_status_raw)
    except ValueError:
        return {"message": "invalid status"}, 400

    try:
        order = order_service.transition_order_status(
            order_id, to_status, reason, actor_user_id=current_user_id_from_token()
        )
    except InvalidStatusTransitionError as exc:
        db.session.rollback()
        return {"message": str(exc)}, 400

    return build_purchase_order_response(order), 200


@purchase_order_bp.get("/<int:order_id>/share")
@require_permissions("purchase.read")
def get_share_link(order_id: int) -> tuple[dict[str, object], int]:
    order = db.session.get(PurchaseOrder, order_id)
    if order is None:
        return {"message": "purchase order not found"}, 404
    info = get_share_manager().get_share_info(order_id)
    if info is None:
        return {"message": "no active share link for this purchase order"}, 404
    return info.to_dict(), 200


@purchase_order_bp.post("/<int:order_id>/share")
@require_permissions("purchase.share")
def create_share_link(order_id: int) -> tuple[dict[str, object], int]:
    return _issue_share_link(order_id, force_new=False)


@purchase_order_bp.put("/<int:order_id>/share")
@require_permissions("purchase.share")
def rotate_share_link(order_id: int) -> tuple[dict[str, object], int]:
    return _issue_share_link(order_id, force_new=True)


@purchase_order_bp.delete("/<int:order_id>/share")
@require_permissions("purchase.share")
def disable_share_link(order_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(PurchaseOrder, order_id) is None:
        return {"message": "purchase order not found"}, 404
    disabled = get_share_manager().disable_share_link(order_id, actor_user_id=current_user_id_from_token())
    if not disabled:
        return {"message": "no active share link for this purchase order", "disabled": False}, 200
    return {"message": "share link disabled", "disabled": True}, 200


@purchase_order_bp.get("/<int:order_id>/supply-records")
@require_permissions("supply.read")
def list_supply_records(order_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(PurchaseOrder, order_id) is None:
        return {"message": "purchase order not found"}, 404

    records = db.session.execute(
        select(SupplyRecord)
        .where(SupplyRecord.purchase_order_id == order_id)
        .order_by(SupplyRecord.created_at.desc(), SupplyRecord.id.desc())
    ).scalars().all()
    return {
        "statistics": quantity_ledger.supply_statistics(order_id).to_dict(),
        "records": [build_supply_record_summary(record) for record in records],
    }, 200


@purchase_order_bp.get("/<int:order_id>/history")
@require_permissions("purchase.read")
def purchase_order_history(order_id: int) -> tuple[dict[str, object], int]:
    if db.session.get(PurchaseOrder, order_id) is None:
        return {"message": "purchase order not found"}, 404

    record_ids = db.session.execute(
        select(SupplyRecord.id).where(SupplyRecord.purchase_order_id == order_id)
    ).scalars().all()
    entries = [
        *audit_service.entity_history("purchase_order", str(order_id)),
        *audit_service.entity_history("supply_share_link", str(order_id)),
        *audit_service.entity_history("supply_record", *(str(record_id) for record_id in record_ids)),
    ]
    entries.sort(key=lambda entry: entry.id)
    return {"items": [entry.to_dict() for entry in entries]}, 200


def _issue_share_link(order_id: int, *, force_new: bool) -> tuple[dict[str, object], int]:
    order = db.session.get(PurchaseOrder, order_id)
    if order is None:
        return {"message": "purchase order not found"}, 404

    try:
        config = _share_config_from_payload(request.get_json(silent=True) or {})
    except PayloadError as exc:
        return {"message": str(exc)}, 400

    manager = get_share_manager()
    info = manager.generate_share_link(
        order_id,
        config,
        force_new=force_new,
        actor_user_id=current_user_id_from_token(),
    )
    if info is None:
        return {"message": "share link could not be created"}, 500

    response = info.to_dict()
    response["share_text"] = manager.generate_share_text(info, order.order_number)
    return response, 200


def _share_config_from_payload(payload: dict[str, object]) -> ShareConfig:
    max_hours = current_app.config["SHARE_MAX_EXPIRES_HOURS"]
    expires_in = parse_optional_int(payload.get("expires_in"), "expires_in")
    if expires_in is None:
        expires_in = current_app.config["SHARE_DEFAULT_EXPIRES_HOURS"]
    if not 1 <= expires_in <= max_hours:
        raise PayloadError(f"expires_in must be between 1 and {max_hours} hours")

    access_limit = parse_optional_int(payload.get("access_limit"), "access_limit")
    if access_limit is not None and access_limit < 1:
        raise PayloadError("access_limit must be a positive integer")

    # Key absent: generate a code. Explicit null or empty string: share without one.
    if "extract_code" not in payload:
        return ShareConfig(expires_in_hours=expires_in, access_limit=access_limit)
    extract_code = payload.get("extract_code")
    if extract_code is None or extract_code == "":
        return ShareConfig(expires_in_hours=expires_in, access_limit=access_limit, auto_extract_code=False)
    if not isinstance(extract_code, str) or not extract_code.isalnum() or len(extract_code) > 16:
        raise PayloadError("extract_code must be up to 16 letters or digits")
    return ShareConfig(expires_in_hours=expires_in, extract_code=extract_code, access_limit=access_limit)


def _statistics_filters_from_args() -> StatisticsFilters:
    args = request.args
    status_raw = args.get("status")
    status = None
    if status_raw:
        try:
            status = PurchaseOrderStatus(status_raw.strip().upper())
        except ValueError as exc:
            raise PayloadError("invalid status") from exc

    return StatisticsFilters(
        shop_id=parse_optional_int(args.get("shop_id"), "shop_id"),
        supplier_id=parse_optional_int(args.get("supplier_id"), "supplier_id"),
        status=status,
        operator_id=parse_optional_int(args.get("operator_id"), "operator_id"),
        order_number=args.get("order_number") or None,
        created_at_start=parse_optional_datetime(args.get("created_at_start"), "created_at_start"),
        created_at_end=_range_end(args.get("created_at_end"), "created_at_end"),
        updated_at_start=parse_optional_datetime(args.get("updated_at_start"), "updated_at_start"),
        updated_at_end=_range_end(args.get("updated_at_end"), "updated_at_end"),
    )


def _range_end(raw: str | None, field_name: str) -> datetime | None:
    value = parse_optional_datetime(raw, field_name)
    # A bare date as the end bound covers that whole day.
    if value is not None and raw is not None and len(raw) == 10:
        value = value + timedelta(days=1) - timedelta(microseconds=1)
    return value
