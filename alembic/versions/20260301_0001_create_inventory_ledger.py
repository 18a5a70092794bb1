"""create inventory ledger tables

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260301_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "locations"):
        op.create_table(
            "locations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="warehouse"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
        )
        op.create_index("ix_locations_tenant_id", "locations", ["tenant_id"], unique=False)
        op.create_index("ix_locations_tenant_active", "locations", ["tenant_id", "is_active"], unique=False)

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_products_tenant_id", "products", ["tenant_id"], unique=False)

    if not _table_exists(inspector, "product_variants"):
        op.create_table(
            "product_variants",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_product_variants_tenant_id", "product_variants", ["tenant_id"], unique=False)
        op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"], unique=False)
        op.create_index(
            "ix_product_variants_tenant_product",
            "product_variants",
            ["tenant_id", "product_id"],
            unique=False,
        )
        op.create_index(
            "ux_product_variants_tenant_sku_lower",
            "product_variants",
            ["tenant_id", sa.text("lower(sku)")],
            unique=True,
            postgresql_where=sa.text("sku IS NOT NULL"),
            sqlite_where=sa.text("sku IS NOT NULL"),
        )

    if not _table_exists(inspector, "inventory_items"):
        op.create_table(
            "inventory_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("variant_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("on_hand", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("safety_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("channel_buffers", sa.JSON(), nullable=False),
            sa.Column("last_counted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "tenant_id",
                "variant_id",
                "location_id",
                name="uq_inventory_items_tenant_variant_location",
            ),
            sa.CheckConstraint("on_hand >= 0", name="ck_inventory_items_on_hand_non_negative"),
            sa.CheckConstraint("reserved >= 0", name="ck_inventory_items_reserved_non_negative"),
            sa.CheckConstraint("reserved <= on_hand", name="ck_inventory_items_reserved_within_on_hand"),
        )
        op.create_index("ix_inventory_items_tenant_id", "inventory_items", ["tenant_id"], unique=False)
        op.create_index("ix_inventory_items_variant_id", "inventory_items", ["variant_id"], unique=False)
        op.create_index("ix_inventory_items_location_id", "inventory_items", ["location_id"], unique=False)
        op.create_index(
            "ix_inventory_items_tenant_location",
            "inventory_items",
            ["tenant_id", "location_id"],
            unique=False,
        )

    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("variant_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("quantity_delta", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=100), nullable=False),
            sa.Column("reference", sa.String(length=100), nullable=True),
            sa.Column("actor", sa.String(length=64), nullable=False),
            sa.Column("on_hand_after", sa.Integer(), nullable=False),
            sa.Column("reserved_after", sa.Integer(), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stock_movements_tenant_id", "stock_movements", ["tenant_id"], unique=False)
        op.create_index(
            "ix_stock_movements_tenant_variant_location_created_at",
            "stock_movements",
            ["tenant_id", "variant_id", "location_id", "created_at"],
            unique=False,
        )
        op.create_index(
            "ix_stock_movements_tenant_type_created_at",
            "stock_movements",
            ["tenant_id", "type", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "inventory_reservations"):
        op.create_table(
            "inventory_reservations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("variant_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=100), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            _created_at(),
            sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("release_reason", sa.String(length=100), nullable=True),
            sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("quantity > 0", name="ck_inventory_reservations_quantity_positive"),
        )
        op.create_index("ix_inventory_reservations_tenant_id", "inventory_reservations", ["tenant_id"], unique=False)
        op.create_index(
            "ix_inventory_reservations_tenant_order",
            "inventory_reservations",
            ["tenant_id", "order_id"],
            unique=False,
        )
        op.create_index(
            "ix_inventory_reservations_tenant_status_expires_at",
            "inventory_reservations",
            ["tenant_id", "status", "expires_at"],
            unique=False,
        )
        op.create_index(
            "ix_inventory_reservations_tenant_variant_location",
            "inventory_reservations",
            ["tenant_id", "variant_id", "location_id"],
            unique=False,
        )

    if not _table_exists(inspector, "inventory_transfers"):
        op.create_table(
            "inventory_transfers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("variant_id", sa.String(length=36), nullable=False),
            sa.Column("from_location_id", sa.String(length=36), nullable=False),
            sa.Column("to_location_id", sa.String(length=36), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.String(length=100), nullable=False),
            sa.Column("reference", sa.String(length=100), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            _created_at(),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=64), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_by", sa.String(length=64), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("quantity > 0", name="ck_inventory_transfers_quantity_positive"),
            sa.CheckConstraint(
                "from_location_id <> to_location_id",
                name="ck_inventory_transfers_distinct_locations",
            ),
        )
        op.create_index("ix_inventory_transfers_tenant_id", "inventory_transfers", ["tenant_id"], unique=False)
        op.create_index(
            "ix_inventory_transfers_tenant_status_created_at",
            "inventory_transfers",
            ["tenant_id", "status", "created_at"],
            unique=False,
        )
        op.create_index(
            "ix_inventory_transfers_tenant_variant",
            "inventory_transfers",
            ["tenant_id", "variant_id"],
            unique=False,
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("actor", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=100), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
        op.create_index("ix_audit_logs_tenant_created_at", "audit_logs", ["tenant_id", "created_at"], unique=False)
        op.create_index(
            "ix_audit_logs_tenant_action_created_at",
            "audit_logs",
            ["tenant_id", "action", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    for table_name in (
        "audit_logs",
        "inventory_transfers",
        "inventory_reservations",
        "stock_movements",
        "inventory_items",
        "product_variants",
        "products",
        "locations",
    ):
        op.drop_table(table_name)
