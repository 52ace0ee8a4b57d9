from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from warehouse_erp.errors import StatisticsCalculationError, StatisticsErrorCode
from warehouse_erp.extensions import db
from warehouse_erp.models import PurchaseOrder, PurchaseOrderStatus
from warehouse_erp.services.cache import InFlightDeduplicator, TTLCache
from warehouse_erp.services.order_service import PurchaseLineInput, create_purchase_order
from warehouse_erp.services.statistics_calculator import (
    PurchaseOrderStatisticsCalculator,
    StatisticsCalculatorOptions,
    StatisticsFilters,
    create_statistics_calculator,
    get_statistics_calculator,
)
from warehouse_erp.services.supply_submission import disable_supply_record, submit_supply_record
from warehouse_erp.services.supply_validator import SupplyItemInput


def _sequential(**options) -> PurchaseOrderStatisticsCalculator:
    return PurchaseOrderStatisticsCalculator(StatisticsCalculatorOptions(enable_parallel_queries=False, **options))


def _set_final_amount(order: PurchaseOrder, amount: str) -> None:
    order.final_amount = Decimal(amount)
    db.session.commit()


def test_shop_totals_include_cancelled_orders_only_in_total_records(make_order, catalog):
    first = make_order([("A", 10, "100.00")])
    second = make_order([("B", 10, "250.00")])
    make_order([("A", 5, "1.00")], shop=catalog["other_shop"])
    _set_final_amount(first, "1000.00")
    _set_final_amount(second, "2500.00")
    second.transition_to(PurchaseOrderStatus.CANCELLED)
    db.session.commit()

    result = _sequential().calculate_statistics(StatisticsFilters(shop_id=catalog["shop"].id))

    assert result.total_records == 2
    assert result.active_records == 1
    assert result.total_amount == Decimal("3500.00")


def test_product_statuses_aggregate_across_orders(make_order, catalog):
    products = catalog["products"]
    first = make_order([("A", 10, "1.00"), ("B", 30, "1.00")])
    second = make_order([("A", 15, "1.00")])
    submit_supply_record(first.id, [SupplyItemInput(product_id=products["A"].id, quantity=10)])
    submit_supply_record(second.id, [SupplyItemInput(product_id=products["A"].id, quantity=5)])
    dropped = submit_supply_record(first.id, [SupplyItemInput(product_id=products["B"].id, quantity=9)]).record
    disable_supply_record(dropped.id)

    result = _sequential().calculate_statistics(StatisticsFilters())

    assert [status.product_id for status in result.product_statuses] == [products["B"].id, products["A"].id]
    b_status, a_status = result.product_statuses
    assert (b_status.purchase_quantity, b_status.supplied_quantity, b_status.supply_progress) == (30, 0, 0)
    assert (a_status.purchase_quantity, a_status.supplied_quantity, a_status.available_quantity) == (25, 15, 10)
    assert a_status.supply_progress == 60
    assert a_status.product_name == "T-shirt"
    assert a_status.product_sku == "TS-001-WH"


def test_ranking_ties_break_on_product_id_and_respect_the_limit(make_order, catalog):
    make_order([("A", 10, "1.00"), ("B", 10, "1.00"), ("C", 10, "1.00")])

    result = _sequential(max_product_statuses=2).calculate_statistics(StatisticsFilters())

    products = catalog["products"]
    assert [status.product_id for status in result.product_statuses] == sorted(
        [products["A"].id, products["B"].id, products["C"].id]
    )[:2]


def test_empty_order_contributes_nothing(make_order):
    order = make_order([])
    _set_final_amount(order, "0")

    result = _sequential().calculate_statistics(StatisticsFilters(order_number=order.order_number))

    assert result.total_records == 1
    assert result.total_amount == Decimal("0.00")
    assert result.product_statuses == []


def test_filters_narrow_by_status_order_number_and_dates(make_order, operator):
    order = make_order([("A", 3, "2.00")])
    make_order([("B", 4, "2.00")])
    order.transition_to(PurchaseOrderStatus.PENDING)
    db.session.commit()
    calculator = _sequential()
    now = datetime.now(timezone.utc)

    assert calculator.calculate_statistics(StatisticsFilters(status=PurchaseOrderStatus.PENDING)).total_records == 1
    assert calculator.calculate_statistics(StatisticsFilters(order_number=order.order_number[-6:])).total_records == 1
    assert calculator.calculate_statistics(StatisticsFilters(operator_id=operator.id)).total_records == 2
    assert calculator.calculate_statistics(StatisticsFilters(operator_id=operator.id + 1)).total_records == 0
    in_range = StatisticsFilters(created_at_start=now - timedelta(hours=1), created_at_end=now + timedelta(hours=1))
    assert calculator.calculate_statistics(in_range).total_records == 2
    future = StatisticsFilters(created_at_start=now + timedelta(days=1))
    assert calculator.calculate_statistics(future).total_records == 0


@pytest.mark.parametrize(
    "filters",
    [
        StatisticsFilters(
            created_at_start=datetime(2026, 5, 2, tzinfo=timezone.utc),
            created_at_end=datetime(2026, 5, 1, tzinfo=timezone.utc),
        ),
        StatisticsFilters(
            updated_at_start=datetime(2026, 5, 2, tzinfo=timezone.utc),
            updated_at_end=datetime(2026, 5, 1, tzinfo=timezone.utc),
        ),
        StatisticsFilters(order_number="P" * 101),
    ],
)
def test_invalid_filters_are_rejected_before_querying(app, filters, monkeypatch):
    calculator = _sequential()

    def fail(*args, **kwargs):
        raise AssertionError("query should not run")

    monkeypatch.setattr(calculator, "_calculate", fail)

    with pytest.raises(StatisticsCalculationError) as exc_info:
        calculator.calculate_statistics(filters)
    assert exc_info.value.code == StatisticsErrorCode.INVALID_FILTERS


def test_single_day_range_is_accepted(app):
    day = datetime(2026, 5, 1, tzinfo=timezone.utc)

    result = _sequential().calculate_statistics(StatisticsFilters(created_at_start=day, created_at_end=day))

    assert result.total_records == 0


def test_query_failure_is_wrapped_with_filters(app, monkeypatch):
    calculator = _sequential()

    def broken(filters):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr(calculator, "_purchased_by_product", broken)

    with pytest.raises(StatisticsCalculationError) as exc_info:
        calculator.calculate_statistics(StatisticsFilters(shop_id=3))

    error = exc_info.value
    assert error.code == StatisticsErrorCode.DATABASE_QUERY_FAILED
    assert error.details["filters"]["shop_id"] == "3"
    assert isinstance(error.details["cause"], OperationalError)


def test_processing_failure_is_reported_separately(app, monkeypatch):
    calculator = _sequential()

    def broken(calculation):
        raise KeyError("product_id")

    monkeypatch.setattr(calculator, "_build_result", broken)

    with pytest.raises(StatisticsCalculationError) as exc_info:
        calculator.calculate_statistics(StatisticsFilters())
    assert exc_info.value.code == StatisticsErrorCode.DATA_PROCESSING_FAILED


def test_cache_serves_repeated_filters_until_expiry(make_order, catalog):
    now = [0.0]
    calculator = PurchaseOrderStatisticsCalculator(
        StatisticsCalculatorOptions(enable_parallel_queries=False, enable_cache=True, cache_expiration=60),
        cache=TTLCache(60, clock=lambda: now[0]),
        deduplicator=InFlightDeduplicator(),
    )
    make_order([("A", 1, "1.00")])
    filters = StatisticsFilters(shop_id=catalog["shop"].id)

    assert calculator.calculate_statistics(filters).total_records == 1
    make_order([("A", 1, "1.00")])
    assert calculator.calculate_statistics(filters).total_records == 1

    now[0] = 61.0
    assert calculator.calculate_statistics(filters).total_records == 2


def test_update_options_changes_strategy_without_new_instance(app):
    calculator = _sequential()
    calculator.update_options(max_product_statuses=5)

    assert calculator.options.max_product_statuses == 5
    assert calculator.options.enable_parallel_queries is False


def test_enabling_the_cache_later_installs_a_ttl_cache(make_order, catalog):
    calculator = _sequential()
    make_order([("A", 1, "1.00")])
    filters = StatisticsFilters(shop_id=catalog["shop"].id)

    calculator.update_options(enable_cache=True)
    assert calculator.calculate_statistics(filters).total_records == 1
    make_order([("A", 1, "1.00")])
    assert calculator.calculate_statistics(filters).total_records == 1

    calculator.update_options(enable_cache=False)
    assert calculator.calculate_statistics(filters).total_records == 2


def test_app_builds_its_calculator_from_config(app):
    calculator = get_statistics_calculator()

    assert calculator is app.extensions["statistics_calculator"]
    assert calculator.options.enable_parallel_queries is False
    assert calculator.options.max_workers == 3


def test_factory_reads_every_statistics_setting():
    calculator = create_statistics_calculator(
        {
            "STATISTICS_MAX_PRODUCT_STATUSES": 7,
            "STATISTICS_ENABLE_CACHE": True,
            "STATISTICS_CACHE_EXPIRATION": 30,
            "STATISTICS_CACHE_MAX_ENTRIES": 10,
            "STATISTICS_ENABLE_PARALLEL_QUERIES": False,
            "STATISTICS_MAX_WORKERS": 2,
        }
    )

    assert calculator.options == StatisticsCalculatorOptions(
        max_product_statuses=7,
        enable_cache=True,
        cache_expiration=30,
        cache_max_entries=10,
        enable_parallel_queries=False,
        max_workers=2,
    )


def test_parallel_and_sequential_strategies_agree(file_app, file_catalog):
    products = file_catalog["products"]
    orders = []
    for quantities in [(10, 20, 0), (5, 0, 40), (7, 7, 7)]:
        lines = [
            PurchaseLineInput(product_id=product.id, quantity=quantity, unit_price=Decimal("3.10"))
            for product, quantity in zip(products.values(), quantities)
            if quantity
        ]
        orders.append(
            create_purchase_order(
                shop_id=file_catalog["shop"].id,
                supplier_id=file_catalog["supplier"].supplier_id,
                operator_id=file_catalog["operator"].id,
                lines=lines,
            )
        )
    submit_supply_record(orders[0].id, [SupplyItemInput(product_id=products["A"].id, quantity=4)])
    submit_supply_record(orders[2].id, [SupplyItemInput(product_id=products["C"].id, quantity=7)])
    orders[1].transition_to(PurchaseOrderStatus.CANCELLED)
    db.session.commit()

    filters = StatisticsFilters(shop_id=file_catalog["shop"].id)
    parallel = PurchaseOrderStatisticsCalculator(StatisticsCalculatorOptions(enable_parallel_queries=True))
    sequential = _sequential()

    parallel_result = parallel.calculate_statistics(filters)
    assert parallel_result == sequential.calculate_statistics(filters)
    assert parallel_result == parallel.calculate_statistics(filters)
    assert parallel_result.total_records == 3
    assert parallel_result.active_records == 2
