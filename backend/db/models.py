"""
FulfilOps Database Models

Tables for the distribution back office. Only the tables touched by the
fulfilment services are modelled here; dashboards read the same tables.

Tables:
  Catalog & stock:
  1. profiles            - Users in the HQ → Master Agent → Agent → Branch → Marketer tree
  2. products            - Product catalog
  3. bundles             - Sellable groupings with tier pricing
  4. inventory           - Per-user on-hand quantity per product

  Payments:
  5. pending_orders      - Gateway-bound orders awaiting confirmation
  6. transactions        - Completed buyer/seller stock transfers
  7. system_settings     - Runtime key/value overrides (gateway credentials)

  End-customer sales:
  8. customers           - End customers, keyed by phone
  9. customer_purchases  - Sale records with delivery and payment fields

  Courier & audit:
  10. ninjavan_config    - Per-branch courier credentials and sender address
  11. ninjavan_tokens    - Cached OAuth bearer tokens
  12. webhook_logs       - Audit row per webhook stage
  13. id_sequences       - Named counters for order numbers and sale IDs
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


ROLES = ("hq", "master_agent", "agent", "branch", "marketer", "logistic")


# ─── 1. Profiles ────────────────────────────────────────────────────────────


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    idstaff = Column(String(50), unique=True)
    full_name = Column(String(255))
    email = Column(String(255), nullable=False)
    phone_number = Column(String(30))
    role = Column(String(20), nullable=False, default="agent")
    branch_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    master_agent_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('hq', 'master_agent', 'agent', 'branch', 'marketer', 'logistic')",
            name="ck_profile_role",
        ),
        Index("ix_profiles_role", "role"),
    )


# ─── 2. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    base_cost = Column(Float)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    bundles = relationship("Bundle", back_populates="product")


# ─── 3. Bundles ─────────────────────────────────────────────────────────────


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.id"), nullable=False)
    name = Column(String(255), nullable=False)
    units = Column(Integer, nullable=False, default=1)
    agent_price = Column(Float)
    master_agent_price = Column(Float)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="bundles", lazy="joined")


# ─── 4. Inventory ───────────────────────────────────────────────────────────


class Inventory(Base):
    __tablename__ = "inventory"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("profiles.id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_inventory_user_product"),
        CheckConstraint("quantity >= 0", name="ck_inventory_non_negative"),
    )


# ─── 5. Pending Orders ──────────────────────────────────────────────────────


class PendingOrder(Base):
    __tablename__ = "pending_orders"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(50), nullable=False, unique=True)
    buyer_id = Column(GUID(), ForeignKey("profiles.id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.id"), nullable=False)
    bundle_id = Column(GUID(), ForeignKey("bundles.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    gateway = Column(String(20), nullable=False, default="billplz")
    transaction_id = Column(String(100))  # gateway reference (bill id / trx id)
    billplz_bill_id = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_pending_order_status"),
        CheckConstraint("gateway IN ('billplz', 'bayarcash')", name="ck_pending_order_gateway"),
        Index("ix_pending_orders_transaction", "transaction_id"),
        Index("ix_pending_orders_bill", "billplz_bill_id"),
        Index("ix_pending_orders_status_created", "status", "created_at"),
    )


# ─── 6. Transactions ────────────────────────────────────────────────────────


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    buyer_id = Column(GUID(), ForeignKey("profiles.id"), nullable=False)
    seller_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    product_id = Column(GUID(), ForeignKey("products.id"), nullable=False)
    pending_order_id = Column(GUID(), ForeignKey("pending_orders.id"), nullable=True, unique=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    transaction_type = Column(String(30), nullable=False, default="purchase")
    billplz_bill_id = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_transactions_bill", "billplz_bill_id"),)


# ─── 7. System Settings ─────────────────────────────────────────────────────


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    setting_key = Column(String(100), nullable=False, unique=True)
    setting_value = Column(Text)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 8. Customers ───────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False, unique=True)
    address = Column(Text)
    postcode = Column(String(10))
    city = Column(String(100))
    state = Column(String(100))
    created_by = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 9. Customer Purchases ──────────────────────────────────────────────────


class CustomerPurchase(Base):
    __tablename__ = "customer_purchases"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.id"), nullable=True)
    seller_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)  # branch that ships
    marketer_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    marketer_id_staff = Column(String(50))
    customer_name = Column(String(255))
    phone = Column(String(30))
    address = Column(Text)
    postcode = Column(String(10))
    city = Column(String(100))
    state = Column(String(100))
    product_id = Column(GUID(), ForeignKey("products.id"), nullable=True)
    product_name = Column(Text)
    sku = Column(String(255))  # plain SKU, "SKU-qty" or bundle "SKU-qty + SKU-qty"
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float)
    total_price = Column(Float)
    profit = Column(Float)
    courier = Column(String(50))
    id_sale = Column(String(20))
    tracking_number = Column(String(100))
    platform = Column(String(50))
    platform_type = Column(String(50))
    customer_type = Column(String(10))
    closing_type = Column(String(50))
    payment_method = Column(String(10))  # COD | CASH
    payment_channel = Column(String(30))
    payment_date = Column(Date)
    staff_note = Column(Text)
    delivery_status = Column(String(20), nullable=False, default="Pending")
    date_order = Column(Date)
    date_processed = Column(Date)
    woo_order_id = Column(Integer, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "delivery_status IN ('Pending', 'Shipped', 'Returned')",
            name="ck_customer_purchase_delivery_status",
        ),
        Index("ix_customer_purchases_seller_status", "seller_id", "delivery_status"),
        Index("ix_customer_purchases_tracking", "tracking_number"),
    )


# ─── 10. NinjaVan Config ────────────────────────────────────────────────────


class NinjaVanConfig(Base):
    __tablename__ = "ninjavan_config"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    profile_id = Column(GUID(), ForeignKey("profiles.id"), nullable=False, unique=True)
    client_id = Column(String(255), nullable=False)
    client_secret_encrypted = Column(Text, nullable=False)
    sender_name = Column(String(255), nullable=False)
    sender_phone = Column(String(30), nullable=False)
    sender_email = Column(String(255))
    sender_address1 = Column(String(255), nullable=False)
    sender_address2 = Column(String(255))
    sender_postcode = Column(String(10), nullable=False)
    sender_city = Column(String(100), nullable=False)
    sender_state = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 11. NinjaVan Tokens ────────────────────────────────────────────────────


class NinjaVanToken(Base):
    __tablename__ = "ninjavan_tokens"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    profile_id = Column(GUID(), ForeignKey("profiles.id"), nullable=False)
    access_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_ninjavan_tokens_profile_expiry", "profile_id", "expires_at"),)


# ─── 12. Webhook Logs ───────────────────────────────────────────────────────


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    webhook_type = Column(String(30), nullable=False)
    request_method = Column(String(10))
    request_body = Column(JSON)
    request_headers = Column(JSON)
    profile_id = Column(GUID(), ForeignKey("profiles.id"), nullable=True)
    order_id = Column(GUID(), nullable=True)
    response_status = Column(Integer, nullable=False, default=0)  # 0 = received, not yet answered
    response_body = Column(JSON)
    error_message = Column(Text)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_webhook_logs_type_created", "webhook_type", "created_at"),)


# ─── 13. ID Sequences ───────────────────────────────────────────────────────


class IdSequence(Base):
    __tablename__ = "id_sequences"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
