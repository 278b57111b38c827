"""Initial schema: tenants, branches, users, products and stock audits

Revision ID: 20261017_stock_audits
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_stock_audits"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tenants_code", "tenants", ["code"], unique=True)
    op.create_index("ix_tenants_is_active", "tenants", ["is_active"])

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "name", name="uq_branches_tenant_name"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_branches_tenant_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_tenant_id", "branches", ["tenant_id"])
    op.create_index("ix_branches_code", "branches", ["code"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("barcode", sa.String(length=64), nullable=True),
        sa.Column("manufacturer_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_price_cents", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])
    op.create_index("ix_products_branch_id", "products", ["branch_id"])
    op.create_index("ix_products_barcode", "products", ["barcode"])
    op.create_index("ix_products_branch_name", "products", ["branch_id", "name"])
    op.create_index("ix_products_branch_status", "products", ["branch_id", "status"])

    op.create_table(
        "stock_audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("audit_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("total_items_audited", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_variance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_value_impact_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("completed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_audits_tenant_id", "stock_audits", ["tenant_id"])
    op.create_index("ix_stock_audits_branch_id", "stock_audits", ["branch_id"])
    op.create_index("ix_stock_audits_status", "stock_audits", ["status"])
    op.create_index(
        "ix_stock_audits_branch_status_created", "stock_audits", ["branch_id", "status", "created_at"]
    )

    op.create_table(
        "stock_audit_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("stock_audits.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("system_stock", sa.Integer(), nullable=False),
        sa.Column("physical_count", sa.Integer(), nullable=True),
        sa.Column("variance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("audited_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("audited_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("audit_id", "product_id", name="uq_stock_audit_items_audit_product"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_audit_items_audit_id", "stock_audit_items", ["audit_id"])
    op.create_index("ix_stock_audit_items_product_id", "stock_audit_items", ["product_id"])

    op.create_table(
        "stock_corrections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("stock_audits.id"), nullable=False),
        sa.Column("audit_item_id", sa.Integer(), sa.ForeignKey("stock_audit_items.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("corrected_quantity", sa.Integer(), nullable=False),
        sa.Column("variance", sa.Integer(), nullable=False),
        sa.Column("correction_reason", sa.String(length=32), nullable=False, server_default="audit_correction"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("corrected_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("corrected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("audit_item_id", name="uq_stock_corrections_audit_item"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_corrections_tenant_id", "stock_corrections", ["tenant_id"])
    op.create_index("ix_stock_corrections_branch_id", "stock_corrections", ["branch_id"])
    op.create_index("ix_stock_corrections_audit_id", "stock_corrections", ["audit_id"])
    op.create_index("ix_stock_corrections_product_id", "stock_corrections", ["product_id"])

    op.create_table(
        "stock_correction_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("audit_id", sa.Integer(), sa.ForeignKey("stock_audits.id"), nullable=False),
        sa.Column("audit_item_id", sa.Integer(), sa.ForeignKey("stock_audit_items.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("corrected_quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("audit_item_id", name="uq_stock_correction_outbox_item"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_correction_outbox_audit_id", "stock_correction_outbox", ["audit_id"])
    op.create_index("ix_stock_correction_outbox_status", "stock_correction_outbox", ["status"])


def downgrade():
    op.drop_table("stock_correction_outbox")
    op.drop_table("stock_corrections")
    op.drop_table("stock_audit_items")
    op.drop_table("stock_audits")
    op.drop_table("products")
    op.drop_table("users")
    op.drop_table("branches")
    op.drop_table("tenants")
