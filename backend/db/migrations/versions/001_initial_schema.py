"""
Initial schema - all 13 tables

Revision ID: 001
Revises: None
Create Date: 2026-09-28
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # 1. Profiles
    op.create_table(
        "profiles",
        _id(),
        sa.Column("idstaff", sa.String(50), unique=True),
        sa.Column("full_name", sa.String(255)),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(30)),
        sa.Column("role", sa.String(20), nullable=False, server_default="agent"),
        sa.Column("branch_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("master_agent_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('hq', 'master_agent', 'agent', 'branch', 'marketer', 'logistic')",
            name="ck_profile_role",
        ),
    )
    op.create_index("ix_profiles_role", "profiles", ["role"])

    # 2. Products
    op.create_table(
        "products",
        _id(),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("base_cost", sa.Float),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # 3. Bundles
    op.create_table(
        "bundles",
        _id(),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("units", sa.Integer, nullable=False, server_default="1"),
        sa.Column("agent_price", sa.Float),
        sa.Column("master_agent_price", sa.Float),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # 4. Inventory
    op.create_table(
        "inventory",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "product_id", name="uq_inventory_user_product"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_non_negative"),
    )

    # 5. Pending Orders
    op.create_table(
        "pending_orders",
        _id(),
        sa.Column("order_number", sa.String(50), nullable=False, unique=True),
        sa.Column("buyer_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("bundle_id", UUID(as_uuid=True), sa.ForeignKey("bundles.id"), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Float, nullable=False),
        sa.Column("total_price", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("gateway", sa.String(20), nullable=False, server_default="billplz"),
        sa.Column("transaction_id", sa.String(100)),
        sa.Column("billplz_bill_id", sa.String(100)),
        *_timestamps(),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_pending_order_status"),
        sa.CheckConstraint("gateway IN ('billplz', 'bayarcash')", name="ck_pending_order_gateway"),
    )
    op.create_index("ix_pending_orders_transaction", "pending_orders", ["transaction_id"])
    op.create_index("ix_pending_orders_bill", "pending_orders", ["billplz_bill_id"])
    op.create_index("ix_pending_orders_status_created", "pending_orders", ["status", "created_at"])

    # 6. Transactions
    op.create_table(
        "transactions",
        _id(),
        sa.Column("buyer_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column(
            "pending_order_id",
            UUID(as_uuid=True),
            sa.ForeignKey("pending_orders.id"),
            nullable=True,
            unique=True,
        ),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Float, nullable=False),
        sa.Column("total_price", sa.Float, nullable=False),
        sa.Column("transaction_type", sa.String(30), nullable=False, server_default="purchase"),
        sa.Column("billplz_bill_id", sa.String(100)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_transactions_bill", "transactions", ["billplz_bill_id"])

    # 7. System Settings
    op.create_table(
        "system_settings",
        _id(),
        sa.Column("setting_key", sa.String(100), nullable=False, unique=True),
        sa.Column("setting_value", sa.Text),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 8. Customers
    op.create_table(
        "customers",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(30), nullable=False, unique=True),
        sa.Column("address", sa.Text),
        sa.Column("postcode", sa.String(10)),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        *_timestamps(),
    )

    # 9. Customer Purchases
    op.create_table(
        "customer_purchases",
        _id(),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("seller_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("marketer_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("marketer_id_staff", sa.String(50)),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("phone", sa.String(30)),
        sa.Column("address", sa.Text),
        sa.Column("postcode", sa.String(10)),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("product_name", sa.Text),
        sa.Column("sku", sa.String(255)),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Float),
        sa.Column("total_price", sa.Float),
        sa.Column("profit", sa.Float),
        sa.Column("courier", sa.String(50)),
        sa.Column("id_sale", sa.String(20)),
        sa.Column("tracking_number", sa.String(100)),
        sa.Column("platform", sa.String(50)),
        sa.Column("platform_type", sa.String(50)),
        sa.Column("customer_type", sa.String(10)),
        sa.Column("closing_type", sa.String(50)),
        sa.Column("payment_method", sa.String(10)),
        sa.Column("payment_channel", sa.String(30)),
        sa.Column("payment_date", sa.Date),
        sa.Column("staff_note", sa.Text),
        sa.Column("delivery_status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("date_order", sa.Date),
        sa.Column("date_processed", sa.Date),
        sa.Column("woo_order_id", sa.Integer, unique=True),
        *_timestamps(),
        sa.CheckConstraint(
            "delivery_status IN ('Pending', 'Shipped', 'Returned')",
            name="ck_customer_purchase_delivery_status",
        ),
    )
    op.create_index(
        "ix_customer_purchases_seller_status", "customer_purchases", ["seller_id", "delivery_status"]
    )
    op.create_index("ix_customer_purchases_tracking", "customer_purchases", ["tracking_number"])

    # 10. NinjaVan Config
    op.create_table(
        "ninjavan_config",
        _id(),
        sa.Column("profile_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False, unique=True),
        sa.Column("client_id", sa.String(255), nullable=False),
        sa.Column("client_secret_encrypted", sa.Text, nullable=False),
        sa.Column("sender_name", sa.String(255), nullable=False),
        sa.Column("sender_phone", sa.String(30), nullable=False),
        sa.Column("sender_email", sa.String(255)),
        sa.Column("sender_address1", sa.String(255), nullable=False),
        sa.Column("sender_address2", sa.String(255)),
        sa.Column("sender_postcode", sa.String(10), nullable=False),
        sa.Column("sender_city", sa.String(100), nullable=False),
        sa.Column("sender_state", sa.String(100), nullable=False),
        *_timestamps(),
    )

    # 11. NinjaVan Tokens
    op.create_table(
        "ninjavan_tokens",
        _id(),
        sa.Column("profile_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ninjavan_tokens_profile_expiry", "ninjavan_tokens", ["profile_id", "expires_at"])

    # 12. Webhook Logs
    op.create_table(
        "webhook_logs",
        _id(),
        sa.Column("webhook_type", sa.String(30), nullable=False),
        sa.Column("request_method", sa.String(10)),
        sa.Column("request_body", JSONB),
        sa.Column("request_headers", JSONB),
        sa.Column("profile_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("order_id", UUID(as_uuid=True), nullable=True),
        sa.Column("response_status", sa.Integer, nullable=False, server_default="0"),
        sa.Column("response_body", JSONB),
        sa.Column("error_message", sa.Text),
        sa.Column("processing_time_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_logs_type_created", "webhook_logs", ["webhook_type", "created_at"])

    # 13. ID Sequences
    op.create_table(
        "id_sequences",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("value", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    tables = [
        "id_sequences",
        "webhook_logs",
        "ninjavan_tokens",
        "ninjavan_config",
        "customer_purchases",
        "customers",
        "system_settings",
        "transactions",
        "pending_orders",
        "inventory",
        "bundles",
        "products",
        "profiles",
    ]
    for table in tables:
        op.drop_table(table)
