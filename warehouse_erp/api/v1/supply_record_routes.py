from __future__ import annotations

from flask import Blueprint

from warehouse_erp.api.v1.payloads import build_supply_record_response
from warehouse_erp.extensions import db
from warehouse_erp.models import PurchaseOrder, SupplyRecord
from warehouse_erp.security.decorators import current_user_id_from_token, require_permissions
from warehouse_erp.services import quantity_ledger
from warehouse_erp.services.supply_submission import disable_supply_record

supply_record_bp = Blueprint("supply_records", __name__)


@supply_record_bp.get("/<int:record_id>")
@require_permissions("supply.read")
def get_supply_record(record_id: int) -> tuple[dict[str, object], int]:
    record = db.session.get(SupplyRecord, record_id)
    if record is None:
        return {"message": "supply record not found"}, 404
    return build_supply_record_response(record), 200


@supply_record_bp.put("/<int:record_id>/disable")
@require_permissions("supply.manage")
def disable_record(record_id: int) -> tuple[dict[str, object], int]:
    disabled = disable_supply_record(record_id, actor_user_id=current_user_id_from_token())
    record = db.session.get(SupplyRecord, record_id)
    order = db.session.get(PurchaseOrder, record.purchase_order_id)
    if not disabled:
        return {
            "message": "supply record is already disabled",
            "disabled": False,
            "record": build_supply_record_response(record),
        }, 200

    return {
        "message": "supply record disabled",
        "disabled": True,
        "record": build_supply_record_response(record),
        "supply_status": order.supply_status.value,
        "statistics": quantity_ledger.supply_statistics(order.id).to_dict(),
    }, 200
