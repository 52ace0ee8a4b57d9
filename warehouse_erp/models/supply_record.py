from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_erp.errors import InvalidStatusTransitionError
from warehouse_erp.extensions import db

from .columns import enum_column


class SupplyRecordStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class SupplyRecord(db.Model):
    __tablename__ = "supply_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    share_code: Mapped[str | None] = mapped_column(String(32), index=True)
    status: Mapped[SupplyRecordStatus] = mapped_column(
        enum_column(SupplyRecordStatus),
        nullable=False,
        default=SupplyRecordStatus.ACTIVE,
        index=True,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    supplier_info: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    remark: Mapped[str | None] = mapped_column(String(500))
    replaces_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("supply_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    items: Mapped[list["SupplyRecordItem"]] = relationship(
        back_populates="supply_record",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SupplyRecordItem.id",
    )

    def can_disable(self) -> bool:
        return self.status == SupplyRecordStatus.ACTIVE

    def disable(self) -> None:
        if not self.can_disable():
            raise InvalidStatusTransitionError(
                "supply record", self.status.value, SupplyRecordStatus.DISABLED.value
            )
        self.status = SupplyRecordStatus.DISABLED


class SupplyRecordItem(db.Model):
    __tablename__ = "supply_record_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_supply_record_items_quantity_positive"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    supply_record_id: Mapped[int] = mapped_column(
        ForeignKey("supply_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    remark: Mapped[str | None] = mapped_column(String(500))

    supply_record: Mapped[SupplyRecord] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship(lazy="joined")


from .product import Product  # noqa: E402
