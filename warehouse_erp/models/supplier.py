from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_erp.extensions import db


class Supplier(db.Model):
    __tablename__ = "suppliers"

    supplier_id: Mapped[int] = mapped_column(primary_key=True)
    supplier_code: Mapped[str | None] = mapped_column(String(32), unique=True)
    supplier_name: Mapped[str] = mapped_column(String(250), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(100))
    phone_number: Mapped[str | None] = mapped_column(String(32))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    purchase_orders: Mapped[list["PurchaseOrder"]] = relationship(back_populates="supplier", lazy="select")

    def contact_card(self) -> dict[str, str | None]:
        """Contact details shown on purchase orders and to the supplier on the share page."""
        return {
            "supplier_code": self.supplier_code,
            "supplier_name": self.supplier_name,
            "contact_person": self.contact_person,
            "phone_number": self.phone_number,
            "email": self.email,
        }


from .purchase_order import PurchaseOrder  # noqa: E402
