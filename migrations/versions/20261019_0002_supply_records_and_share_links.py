"""supply records and supplier share links

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 09:30:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0002"
down_revision: str | None = "20261019_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "supply_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("share_code", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("supplier_info", sa.JSON(), nullable=True),
        sa.Column("remark", sa.String(length=500), nullable=True),
        sa.Column("replaces_record_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('active', 'disabled')", name="ck_supply_records_status"),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["replaces_record_id"], ["supply_records.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_supply_records_purchase_order_id"), "supply_records", ["purchase_order_id"], unique=False)
    op.create_index(op.f("ix_supply_records_share_code"), "supply_records", ["share_code"], unique=False)
    op.create_index(op.f("ix_supply_records_status"), "supply_records", ["status"], unique=False)

    op.create_table(
        "supply_record_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supply_record_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("total_price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("remark", sa.String(length=500), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_supply_record_items_quantity_positive"),
        sa.ForeignKeyConstraint(["supply_record_id"], ["supply_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_supply_record_items_supply_record_id"), "supply_record_items", ["supply_record_id"], unique=False
    )
    op.create_index(op.f("ix_supply_record_items_product_id"), "supply_record_items", ["product_id"], unique=False)

    op.create_table(
        "supply_share_links",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("share_code", sa.String(length=32), nullable=False),
        sa.Column("extract_code", sa.String(length=16), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_limit", sa.Integer(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_user_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('active', 'disabled')", name="ck_supply_share_links_status"),
        sa.CheckConstraint("access_count >= 0", name="ck_supply_share_links_access_count_non_negative"),
        sa.CheckConstraint(
            "access_limit IS NULL OR access_limit > 0",
            name="ck_supply_share_links_access_limit_positive",
        ),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("purchase_order_id", name="uq_supply_share_link_per_order"),
    )
    op.create_index(op.f("ix_supply_share_links_share_code"), "supply_share_links", ["share_code"], unique=True)

    op.create_table(
        "supply_share_accesses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("share_code", sa.String(length=32), nullable=False),
        sa.Column("user_fingerprint", sa.String(length=64), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("first_access_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_access_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_code", "user_fingerprint", name="uq_supply_share_access_visitor"),
    )
    op.create_index(
        op.f("ix_supply_share_accesses_share_code"), "supply_share_accesses", ["share_code"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_supply_share_accesses_share_code"), table_name="supply_share_accesses")
    op.drop_table("supply_share_accesses")
    op.drop_index(op.f("ix_supply_share_links_share_code"), table_name="supply_share_links")
    op.drop_table("supply_share_links")
    op.drop_index(op.f("ix_supply_record_items_product_id"), table_name="supply_record_items")
    op.drop_index(op.f("ix_supply_record_items_supply_record_id"), table_name="supply_record_items")
    op.drop_table("supply_record_items")
    op.drop_index(op.f("ix_supply_records_status"), table_name="supply_records")
    op.drop_index(op.f("ix_supply_records_share_code"), table_name="supply_records")
    op.drop_index(op.f("ix_supply_records_purchase_order_id"), table_name="supply_records")
    op.drop_table("supply_records")
