from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_erp.errors import InvalidStatusTransitionError
from warehouse_erp.extensions import db

from .columns import enum_column


class PurchaseOrderStatus(str, Enum):
    CREATED = "CREATED"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PRODUCTION = "PRODUCTION"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


ORDER_STATUS_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.CREATED: frozenset({PurchaseOrderStatus.PENDING, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.PENDING: frozenset({PurchaseOrderStatus.CONFIRMED, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.CONFIRMED: frozenset({PurchaseOrderStatus.PRODUCTION, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.PRODUCTION: frozenset({PurchaseOrderStatus.SHIPPED, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.SHIPPED: frozenset({PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.CANCELLED: frozenset(),
}


class SupplyProgressStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    FULLY_SUPPLIED = "FULLY_SUPPLIED"


class PurchaseOrder(db.Model):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(
        ForeignKey("suppliers.supplier_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    operator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        enum_column(PurchaseOrderStatus, 16),
        nullable=False,
        default=PurchaseOrderStatus.CREATED,
        index=True,
    )
    supply_status: Mapped[SupplyProgressStatus] = mapped_column(
        enum_column(SupplyProgressStatus, 16),
        nullable=False,
        default=SupplyProgressStatus.PENDING,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remark: Mapped[str | None] = mapped_column(String(500))
    # Bumped inside every supply write transaction; the UPDATE takes the per-order write lock.
    supply_lock_version: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    shop: Mapped["Shop"] = relationship(lazy="joined")
    supplier: Mapped["Supplier"] = relationship(back_populates="purchase_orders", lazy="joined")
    operator: Mapped["User | None"] = relationship(lazy="joined")
    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderItem.id",
    )

    def can_transition_to(self, to_status: PurchaseOrderStatus) -> bool:
        return to_status in ORDER_STATUS_TRANSITIONS[self.status]

    def transition_to(self, to_status: PurchaseOrderStatus) -> PurchaseOrderStatus:
        if not self.can_transition_to(to_status):
            raise InvalidStatusTransitionError("purchase order", self.status.value, to_status.value)
        previous = self.status
        self.status = to_status
        return previous


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "product_id", name="uq_purchase_order_item_product"),
        CheckConstraint("quantity > 0", name="ck_purchase_order_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    remark: Mapped[str | None] = mapped_column(String(500))

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship(lazy="joined")


from .product import Product  # noqa: E402
from .shop import Shop  # noqa: E402
from .supplier import Supplier  # noqa: E402
from .user import User  # noqa: E402
