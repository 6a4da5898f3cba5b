"""Initial schema: products, store settings, transactions, transaction lines

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Money is stored as integer cents; VAT rates as basis points (1200 = 12%).
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(120), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_stock", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("is_discountable", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_vat_exemptable", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        sa.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_category", ["category"], unique=False)
        batch_op.create_index("ix_products_status_category", ["status", "category"], unique=False)

    op.create_table(
        "store_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_name", sa.String(120), nullable=False, server_default="Main Store"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="PHP"),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_number", sa.String(32), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("net_sales_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("1200")),
        sa.Column("vat_exempt_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_type", sa.String(16), nullable=False, server_default="regular"),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("cashier_id", sa.String(64), nullable=False),
        sa.Column("cashier_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("total_cents >= 0", name="ck_transactions_total_nonnegative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_cashier_id", ["cashier_id"], unique=False)
        batch_op.create_index("ix_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_transactions_status_created", ["status", "created_at"], unique=False)
        batch_op.create_index("ix_transactions_cashier_created", ["cashier_id", "created_at"], unique=False)

    op.create_table(
        "transaction_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("total_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_exempt", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_applied", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_price_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_transaction_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("transaction_lines", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_lines_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_transaction_lines_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_transaction_lines_txn_line", ["transaction_id", "line_number"], unique=True)


def downgrade():
    with op.batch_alter_table("transaction_lines", schema=None) as batch_op:
        batch_op.drop_index("ix_transaction_lines_txn_line")
        batch_op.drop_index("ix_transaction_lines_product_id")
        batch_op.drop_index("ix_transaction_lines_transaction_id")
    op.drop_table("transaction_lines")

    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_transactions_cashier_created")
        batch_op.drop_index("ix_transactions_status_created")
        batch_op.drop_index("ix_transactions_created_at")
        batch_op.drop_index("ix_transactions_status")
        batch_op.drop_index("ix_transactions_cashier_id")
    op.drop_table("transactions")

    op.drop_table("store_settings")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_status_category")
        batch_op.drop_index("ix_products_category")
    op.drop_table("products")
