from __future__ import annotations

from decimal import Decimal

import pytest

from warehouse_erp.errors import PurchaseOrderNotFoundError
from warehouse_erp.services.supply_submission import disable_supply_record, submit_supply_record
from warehouse_erp.services.supply_validator import (
    NOT_IN_ORDER_MESSAGE,
    SupplyItemInput,
    can_disable_record,
    requested_quantities,
    validate_supply_quantity,
    validate_supply_quantity_realtime,
)


@pytest.fixture()
def order(make_order):
    return make_order([("A", 100, "5.00"), ("B", 10, "8.00")])


def _item(product, quantity, unit_price="1.00"):
    return SupplyItemInput(product_id=product.id, quantity=quantity, unit_price=Decimal(unit_price))


@pytest.mark.parametrize("validate", [validate_supply_quantity, validate_supply_quantity_realtime])
def test_quantity_equal_to_available_is_accepted(order, catalog, validate):
    result = validate(order.id, [_item(catalog["products"]["A"], 100)])
    assert result.valid
    assert result.errors == []
    assert result.message is None


@pytest.mark.parametrize("validate", [validate_supply_quantity, validate_supply_quantity_realtime])
def test_one_over_available_reports_exact_numbers(order, catalog, validate):
    product = catalog["products"]["A"]
    submit_supply_record(order.id, [_item(product, 60)])

    result = validate(order.id, [_item(product, 41)])

    assert not result.valid
    assert result.message
    [error] = result.errors
    assert error.product_id == product.id
    assert (error.purchase_quantity, error.supplied_quantity, error.request_quantity) == (100, 60, 41)
    assert "TS-001" in error.message


def test_second_independent_record_over_limit_is_rejected(order, catalog):
    product = catalog["products"]["A"]
    first = submit_supply_record(order.id, [_item(product, 60)])
    assert first.accepted

    result = validate_supply_quantity_realtime(order.id, [_item(product, 50)])

    assert not result.valid
    [error] = result.errors
    assert (error.purchase_quantity, error.supplied_quantity, error.request_quantity) == (100, 60, 50)


def test_excluding_a_record_frees_its_quantities(order, catalog):
    product = catalog["products"]["A"]
    record = submit_supply_record(order.id, [_item(product, 90)]).record

    assert not validate_supply_quantity_realtime(order.id, [_item(product, 80)]).valid
    assert validate_supply_quantity_realtime(order.id, [_item(product, 80)], record.id).valid


def test_product_not_on_order_is_reported(order, catalog):
    outsider = catalog["products"]["C"]

    result = validate_supply_quantity(order.id, [_item(outsider, 1)])

    assert not result.valid
    [error] = result.errors
    assert error.product_id == outsider.id
    assert error.message == NOT_IN_ORDER_MESSAGE
    assert error.purchase_quantity == 0


def test_duplicate_rows_are_checked_against_their_total(order, catalog):
    product = catalog["products"]["B"]

    result = validate_supply_quantity_realtime(order.id, [_item(product, 6), _item(product, 5)])

    assert not result.valid
    [error] = result.errors
    assert error.request_quantity == 11
    assert requested_quantities([_item(product, 6), _item(product, 5)]) == {product.id: 11}


def test_non_positive_quantity_is_rejected_per_item(order, catalog):
    products = catalog["products"]

    result = validate_supply_quantity(order.id, [_item(products["A"], 0), _item(products["B"], 2)])

    assert not result.valid
    assert [error.product_id for error in result.errors] == [products["A"].id]


def test_every_offending_row_is_reported(order, catalog):
    products = catalog["products"]

    result = validate_supply_quantity(order.id, [_item(products["A"], 101), _item(products["B"], 11)])

    assert {error.product_id for error in result.errors} == {products["A"].id, products["B"].id}
    assert result.to_dict()["errors"][0]["request_quantity"] == 101


@pytest.mark.usefixtures("app")
def test_missing_order_is_not_a_validation_failure():
    with pytest.raises(PurchaseOrderNotFoundError):
        validate_supply_quantity(999_999, [SupplyItemInput(product_id=1, quantity=1)])


def test_can_disable_record_only_while_active(order, catalog):
    record = submit_supply_record(order.id, [_item(catalog["products"]["A"], 5)]).record

    assert can_disable_record(record.id)
    disable_supply_record(record.id)
    assert not can_disable_record(record.id)
    assert not can_disable_record(999_999)
