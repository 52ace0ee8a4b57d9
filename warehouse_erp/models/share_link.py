from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_erp.errors import InvalidStatusTransitionError
from warehouse_erp.extensions import db

from .columns import enum_column


class ShareLinkStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class SupplyShareLink(db.Model):
    __tablename__ = "supply_share_links"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", name="uq_supply_share_link_per_order"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    share_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    extract_code: Mapped[str | None] = mapped_column(String(16))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    access_limit: Mapped[int | None] = mapped_column(nullable=True)
    access_count: Mapped[int] = mapped_column(nullable=False, default=0)
    unique_user_count: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[ShareLinkStatus] = mapped_column(
        enum_column(ShareLinkStatus),
        nullable=False,
        default=ShareLinkStatus.ACTIVE,
    )
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def disable(self) -> None:
        if self.status != ShareLinkStatus.ACTIVE:
            raise InvalidStatusTransitionError(
                "share link", self.status.value, ShareLinkStatus.DISABLED.value
            )
        self.status = ShareLinkStatus.DISABLED


class SupplyShareAccess(db.Model):
    __tablename__ = "supply_share_accesses"
    __table_args__ = (
        UniqueConstraint("share_code", "user_fingerprint", name="uq_supply_share_access_visitor"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    share_code: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    user_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    first_access_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    last_access_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    access_count: Mapped[int] = mapped_column(nullable=False, default=1)
