"""Aggregate statistics over a filtered set of purchase orders.

The calculator runs three independent reads (order counts and amount, purchased
quantity per product, active supplied quantity per product) and joins them into
a ranked list of product supply statuses. The reads run either concurrently,
each on its own session, or one after another; both produce the same result.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from warehouse_erp.errors import StatisticsCalculationError, StatisticsErrorCode
from warehouse_erp.extensions import db
from warehouse_erp.models import (
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    SupplyRecord,
    SupplyRecordItem,
    SupplyRecordStatus,
)
from warehouse_erp.services.cache import CachePort, InFlightDeduplicator, NullCache, TTLCache
from warehouse_erp.services.quantity_ledger import SupplyStatistics, build_product_status

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ORDER_NUMBER_LENGTH = 100


@dataclass(frozen=True)
class StatisticsFilters:
    shop_id: int | None = None
    supplier_id: int | None = None
    status: PurchaseOrderStatus | None = None
    operator_id: int | None = None
    order_number: str | None = None
    created_at_start: datetime | None = None
    created_at_end: datetime | None = None
    updated_at_start: datetime | None = None
    updated_at_end: datetime | None = None

    def cache_key(self) -> tuple[tuple[str, str | None], ...]:
        return tuple((name, _filter_value(value)) for name, value in sorted(asdict(self).items()))

    def to_dict(self) -> dict[str, object]:
        return {name: value for name, value in self.cache_key() if value is not None}


@dataclass(frozen=True)
class StatisticsCalculatorOptions:
    max_product_statuses: int = 100
    enable_cache: bool = False
    cache_expiration: int = 300
    cache_max_entries: int = 1024
    enable_parallel_queries: bool = True
    max_workers: int = 3


@dataclass(frozen=True)
class BasicStatistics:
    total_records: int
    active_records: int
    total_amount: Decimal


@dataclass
class _PurchasedProduct:
    product_id: int
    product_name: str | None
    product_sku: str | None
    total_quantity: int = 0


@dataclass
class _CalculationResult:
    basic: BasicStatistics
    purchased: dict[int, _PurchasedProduct] = field(default_factory=dict)
    supplied: dict[int, int] = field(default_factory=dict)


def validate_filters(filters: StatisticsFilters) -> None:
    if filters.created_at_start and filters.created_at_end:
        if _as_utc(filters.created_at_start) > _as_utc(filters.created_at_end):
            raise StatisticsCalculationError(
                "created_at start date cannot be after end date",
                StatisticsErrorCode.INVALID_FILTERS,
                {"filters": filters.to_dict()},
            )
    if filters.updated_at_start and filters.updated_at_end:
        if _as_utc(filters.updated_at_start) > _as_utc(filters.updated_at_end):
            raise StatisticsCalculationError(
                "updated_at start date cannot be after end date",
                StatisticsErrorCode.INVALID_FILTERS,
                {"filters": filters.to_dict()},
            )
    if filters.order_number and len(filters.order_number) > MAX_ORDER_NUMBER_LENGTH:
        raise StatisticsCalculationError(
            "order number search is too long",
            StatisticsErrorCode.INVALID_FILTERS,
            {"filters": filters.to_dict()},
        )


def build_order_conditions(filters: StatisticsFilters) -> list[Any]:
    conditions: list[Any] = []
    if filters.shop_id is not None:
        conditions.append(PurchaseOrder.shop_id == filters.shop_id)
    if filters.supplier_id is not None:
        conditions.append(PurchaseOrder.supplier_id == filters.supplier_id)
    if filters.status is not None:
        conditions.append(PurchaseOrder.status == filters.status)
    if filters.operator_id is not None:
        conditions.append(PurchaseOrder.operator_id == filters.operator_id)
    if filters.order_number:
        conditions.append(PurchaseOrder.order_number.ilike(f"%{filters.order_number}%"))
    if filters.created_at_start:
        conditions.append(PurchaseOrder.created_at >= filters.created_at_start)
    if filters.created_at_end:
        conditions.append(PurchaseOrder.created_at <= filters.created_at_end)
    if filters.updated_at_start:
        conditions.append(PurchaseOrder.updated_at >= filters.updated_at_start)
    if filters.updated_at_end:
        conditions.append(PurchaseOrder.updated_at <= filters.updated_at_end)
    return conditions


class PurchaseOrderStatisticsCalculator:
    def __init__(
        self,
        options: StatisticsCalculatorOptions | None = None,
        *,
        cache: CachePort | None = None,
        deduplicator: InFlightDeduplicator | None = None,
    ) -> None:
        self._options = options or StatisticsCalculatorOptions()
        self._cache: CachePort = cache if cache is not None else NullCache()
        self._deduplicator = deduplicator

    @property
    def options(self) -> StatisticsCalculatorOptions:
        return self._options

    def update_options(self, **changes: Any) -> None:
        self._options = replace(self._options, **changes)
        if not self._options.enable_cache:
            self._cache.clear()
        elif isinstance(self._cache, NullCache):
            self._cache = _ttl_cache(self._options)
            logger.info("statistics cache enabled, expiration %ss", self._options.cache_expiration)

    def calculate_statistics(self, filters: StatisticsFilters) -> SupplyStatistics:
        validate_filters(filters)

        if not self._options.enable_cache:
            return self._calculate(filters)

        key = filters.cache_key()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if self._deduplicator is not None:
            result = self._deduplicator.dedupe(key, lambda: self._calculate(filters))
        else:
            result = self._calculate(filters)
        self._cache.set(key, result, self._options.cache_expiration)
        return result

    def _calculate(self, filters: StatisticsFilters) -> SupplyStatistics:
        try:
            if self._options.enable_parallel_queries:
                calculation = self._calculate_parallel(filters)
            else:
                calculation = self._calculate_sequential(filters)
            return self._build_result(calculation)
        except StatisticsCalculationError:
            raise
        except Exception as exc:
            logger.exception("statistics processing failed for filters %s", filters.to_dict())
            raise StatisticsCalculationError(
                f"statistics processing failed: {exc}",
                StatisticsErrorCode.DATA_PROCESSING_FAILED,
                {"cause": exc, "filters": filters.to_dict()},
            ) from exc

    def _calculate_parallel(self, filters: StatisticsFilters) -> _CalculationResult:
        app = current_app._get_current_object()

        def in_app_context(query: Callable[[StatisticsFilters], T]) -> Callable[[], T]:
            def run() -> T:
                with app.app_context():
                    return query(filters)

            return run

        try:
            with ThreadPoolExecutor(max_workers=self._options.max_workers) as executor:
                basic_future = executor.submit(in_app_context(self._basic_statistics))
                purchased_future = executor.submit(in_app_context(self._purchased_by_product))
                supplied_future = executor.submit(in_app_context(self._supplied_by_product))
                return _CalculationResult(
                    basic=basic_future.result(),
                    purchased=purchased_future.result(),
                    supplied=supplied_future.result(),
                )
        except SQLAlchemyError as exc:
            raise self._query_failed("parallel", filters, exc) from exc

    def _calculate_sequential(self, filters: StatisticsFilters) -> _CalculationResult:
        try:
            basic = self._basic_statistics(filters)
            purchased = self._purchased_by_product(filters)
            supplied = self._supplied_by_product(filters)
        except SQLAlchemyError as exc:
            raise self._query_failed("sequential", filters, exc) from exc
        return _CalculationResult(basic=basic, purchased=purchased, supplied=supplied)

    @staticmethod
    def _query_failed(strategy: str, filters: StatisticsFilters, exc: Exception) -> StatisticsCalculationError:
        logger.exception("%s statistics query failed for filters %s", strategy, filters.to_dict())
        return StatisticsCalculationError(
            f"{strategy} statistics query failed: {exc}",
            StatisticsErrorCode.DATABASE_QUERY_FAILED,
            {"cause": exc, "filters": filters.to_dict()},
        )

    def _matching_order_ids(self, filters: StatisticsFilters):
        return select(PurchaseOrder.id).where(*build_order_conditions(filters))

    def _basic_statistics(self, filters: StatisticsFilters) -> BasicStatistics:
        conditions = build_order_conditions(filters)
        total_records, total_amount = db.session.execute(
            select(func.count(PurchaseOrder.id), func.coalesce(func.sum(PurchaseOrder.final_amount), 0)).where(
                *conditions
            )
        ).one()
        active_records = db.session.scalar(
            select(func.count(PurchaseOrder.id)).where(
                *conditions, PurchaseOrder.status != PurchaseOrderStatus.CANCELLED
            )
        )
        return BasicStatistics(
            total_records=int(total_records or 0),
            active_records=int(active_records or 0),
            total_amount=Decimal(str(total_amount or 0)).quantize(Decimal("0.01")),
        )

    def _purchased_by_product(self, filters: StatisticsFilters) -> dict[int, _PurchasedProduct]:
        rows = db.session.execute(
            select(
                PurchaseOrderItem.product_id,
                Product.product_name,
                Product.sku,
                func.sum(PurchaseOrderItem.quantity),
            )
            .join(Product, Product.id == PurchaseOrderItem.product_id)
            .where(PurchaseOrderItem.purchase_order_id.in_(self._matching_order_ids(filters)))
            .group_by(PurchaseOrderItem.product_id, Product.product_name, Product.sku)
        ).all()

        return {
            product_id: _PurchasedProduct(
                product_id=product_id,
                product_name=product_name,
                product_sku=product_sku,
                total_quantity=int(quantity or 0),
            )
            for product_id, product_name, product_sku, quantity in rows
        }

    def _supplied_by_product(self, filters: StatisticsFilters) -> dict[int, int]:
        rows = db.session.execute(
            select(SupplyRecordItem.product_id, func.sum(SupplyRecordItem.quantity))
            .join(SupplyRecord, SupplyRecord.id == SupplyRecordItem.supply_record_id)
            .where(
                SupplyRecord.purchase_order_id.in_(self._matching_order_ids(filters)),
                SupplyRecord.status == SupplyRecordStatus.ACTIVE,
            )
            .group_by(SupplyRecordItem.product_id)
        ).all()
        return {product_id: int(quantity or 0) for product_id, quantity in rows}

    def _build_result(self, calculation: _CalculationResult) -> SupplyStatistics:
        statuses = [
            build_product_status(
                product_id,
                purchased.total_quantity,
                calculation.supplied.get(product_id, 0),
                product_name=purchased.product_name,
                product_sku=purchased.product_sku,
            )
            for product_id, purchased in calculation.purchased.items()
        ]
        # product id breaks ties so both strategies rank identically
        statuses.sort(key=lambda status: (-status.purchase_quantity, status.product_id))
        return SupplyStatistics(
            total_records=calculation.basic.total_records,
            active_records=calculation.basic.active_records,
            total_amount=calculation.basic.total_amount,
            product_statuses=statuses[: self._options.max_product_statuses],
        )


def _ttl_cache(options: StatisticsCalculatorOptions) -> TTLCache:
    return TTLCache(options.cache_expiration, max_entries=options.cache_max_entries)


def create_statistics_calculator(config: Mapping[str, Any]) -> PurchaseOrderStatisticsCalculator:
    options = StatisticsCalculatorOptions(
        max_product_statuses=int(config.get("STATISTICS_MAX_PRODUCT_STATUSES", 100)),
        enable_cache=bool(config.get("STATISTICS_ENABLE_CACHE", False)),
        cache_expiration=int(config.get("STATISTICS_CACHE_EXPIRATION", 300)),
        cache_max_entries=int(config.get("STATISTICS_CACHE_MAX_ENTRIES", 1024)),
        enable_parallel_queries=bool(config.get("STATISTICS_ENABLE_PARALLEL_QUERIES", True)),
        max_workers=int(config.get("STATISTICS_MAX_WORKERS", 3)),
    )
    cache = _ttl_cache(options) if options.enable_cache else NullCache()
    return PurchaseOrderStatisticsCalculator(options, cache=cache, deduplicator=InFlightDeduplicator())


def get_statistics_calculator() -> PurchaseOrderStatisticsCalculator:
    return current_app.extensions["statistics_calculator"]


def _filter_value(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
