from __future__ import annotations

from flask import Blueprint, request

from warehouse_erp.api.v1.payloads import PayloadError, parse_optional_int
from warehouse_erp.security.decorators import require_permissions
from warehouse_erp.services.supply_share import get_share_manager

share_bp = Blueprint("share", __name__)


@share_bp.get("/history")
@require_permissions("purchase.read")
def share_history() -> tuple[dict[str, object], int]:
    try:
        order_id = parse_optional_int(request.args.get("purchase_order_id"), "purchase_order_id")
    except PayloadError as exc:
        return {"message": str(exc)}, 400
    return {"items": get_share_manager().get_share_history(order_id)}, 200


@share_bp.get("/<string:share_code>/statistics")
@require_permissions("purchase.read")
def share_access_statistics(share_code: str) -> tuple[dict[str, object], int]:
    return get_share_manager().get_access_statistics(share_code), 200
