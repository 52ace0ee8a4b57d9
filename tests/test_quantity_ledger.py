from __future__ import annotations

from decimal import Decimal

from warehouse_erp.models import SupplyProgressStatus
from warehouse_erp.services import quantity_ledger
from warehouse_erp.services.supply_submission import disable_supply_record, submit_supply_record
from warehouse_erp.services.supply_validator import SupplyItemInput


def _supply(order, product, quantity, unit_price="10.00"):
    result = submit_supply_record(
        order.id,
        [SupplyItemInput(product_id=product.id, quantity=quantity, unit_price=Decimal(unit_price))],
    )
    assert result.accepted
    return result.record


def test_supply_progress_rounds_half_up_and_clamps():
    assert quantity_ledger.supply_progress(0, 5) == 0
    assert quantity_ledger.supply_progress(-3, 1) == 0
    assert quantity_ledger.supply_progress(8, 1) == 13
    assert quantity_ledger.supply_progress(3, 2) == 67
    assert quantity_ledger.supply_progress(100, 100) == 100
    assert quantity_ledger.supply_progress(100, 250) == 100
    assert quantity_ledger.supply_progress(100, -20) == 0


def test_remaining_quantity_is_never_negative():
    assert quantity_ledger.remaining_quantity(100, 40) == 60
    assert quantity_ledger.remaining_quantity(100, 100) == 0
    assert quantity_ledger.remaining_quantity(100, 130) == 0


def test_available_quantity_follows_active_records(make_order, catalog):
    product = catalog["products"]["A"]
    order = make_order([("A", 100, "5.00")])

    assert quantity_ledger.available_quantity(order.id, product.id) == 100

    record = _supply(order, product, 60)
    assert quantity_ledger.supplied_quantity(order.id, product.id) == 60
    assert quantity_ledger.available_quantity(order.id, product.id) == 40
    assert quantity_ledger.supplied_quantity(order.id, product.id, exclude_record_id=record.id) == 0

    disable_supply_record(record.id)
    assert quantity_ledger.available_quantity(order.id, product.id) == 100


def test_product_not_on_order_has_no_availability(make_order, catalog):
    order = make_order([("A", 10, "5.00")])
    assert quantity_ledger.available_quantity(order.id, catalog["products"]["C"].id) == 0


def test_supplied_quantity_is_scoped_to_its_order(make_order, catalog):
    product = catalog["products"]["A"]
    first = make_order([("A", 50, "5.00")])
    second = make_order([("A", 50, "5.00")])

    _supply(first, product, 30)

    assert quantity_ledger.supplied_quantity(second.id, product.id) == 0
    assert quantity_ledger.available_quantity(second.id, product.id) == 50


def test_available_products_list_omits_fully_supplied_items(make_order, catalog):
    products = catalog["products"]
    order = make_order([("A", 10, "5.00"), ("B", 20, "7.50")])

    _supply(order, products["A"], 10)
    _supply(order, products["B"], 5)

    available = quantity_ledger.available_products_list(order.id)
    assert [row.product_id for row in available] == [products["B"].id]
    row = available[0]
    assert row.product_code == "TS-002"
    assert row.product_spec == "L black"
    assert (row.purchase_quantity, row.supplied_quantity, row.available_quantity) == (20, 5, 15)
    assert row.to_dict()["unit_price"] == "7.50"


def test_order_without_line_items_has_nothing_available(make_order):
    order = make_order([])

    assert quantity_ledger.available_products_list(order.id) == []
    assert quantity_ledger.product_statuses(order.id) == []
    assert quantity_ledger.supply_progress_status(order.id) == SupplyProgressStatus.PENDING


def test_supply_statistics_counts_only_active_amounts(make_order, catalog):
    product = catalog["products"]["A"]
    order = make_order([("A", 100, "5.00")])

    kept = _supply(order, product, 30, unit_price="2.50")
    dropped = _supply(order, product, 20, unit_price="3.00")
    disable_supply_record(dropped.id)

    stats = quantity_ledger.supply_statistics(order.id)
    assert stats.total_records == 2
    assert stats.active_records == 1
    assert stats.total_amount == kept.total_amount == Decimal("75.00")
    [status] = stats.product_statuses
    assert status.supplied_quantity == 30
    assert status.available_quantity == 70
    assert status.supply_progress == 30
    assert status.product_code == "TS-001"


def test_supply_progress_status_moves_through_partial_to_fully_supplied(make_order, catalog):
    products = catalog["products"]
    order = make_order([("A", 10, "5.00"), ("B", 4, "5.00")])

    assert quantity_ledger.supply_progress_status(order.id) == SupplyProgressStatus.PENDING
    _supply(order, products["A"], 10)
    assert quantity_ledger.supply_progress_status(order.id) == SupplyProgressStatus.PARTIAL
    _supply(order, products["B"], 4)
    assert quantity_ledger.supply_progress_status(order.id) == SupplyProgressStatus.FULLY_SUPPLIED
