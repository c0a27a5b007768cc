import enum
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, JSON, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
from app.models.user import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"        # awaiting payment
    PAID = "paid"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


PAYMENT_METHODS = ("card", "bank", "kakao", "naver", "toss", "other")

_JSON = JSON().with_variant(JSONB, "postgresql")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(30), unique=True, nullable=False)  # ORD-YYYYMMDD-NNNNN
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # shipping address fields
    shipping_address_recipient_name = Column(String(100), nullable=False)
    shipping_address_phone = Column(String(50), nullable=False)
    shipping_address_zip_code = Column(String(20), nullable=False)
    shipping_address_address = Column(String(255), nullable=False)
    shipping_address_detail = Column(String(255), default="")
    shipping_address_delivery_request = Column(String(255), default="")

    status = Column(String(20), default=OrderStatus.PENDING.value, index=True)

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, index=True)
    payment_transaction_id = Column(String(100), index=True)
    payment_paid_at = Column(DateTime)
    payment_verified_at = Column(DateTime)
    payment_info = Column(_JSON)  # gateway metadata captured on verification

    pricing_items_price = Column(Integer, nullable=False, default=0)
    pricing_shipping_price = Column(Integer, nullable=False, default=0)
    pricing_discount_amount = Column(Integer, nullable=False, default=0)
    pricing_total_price = Column(Integer, nullable=False, default=0)

    shipping_courier = Column(String(100), default="")
    shipping_tracking_number = Column(String(100), default="")
    shipping_shipped_at = Column(DateTime)
    shipping_delivered_at = Column(DateTime)

    cancellation_reason = Column(String(500), default="")
    cancellation_cancelled_at = Column(DateTime)
    cancellation_refund_amount = Column(Integer, default=0)
    cancellation_refunded_at = Column(DateTime)

    # Cart bookkeeping: only the ordered products are pruned once payment succeeds
    from_cart = Column(Boolean, default=False)
    ordered_product_ids = Column(_JSON, default=list)
    admin_note = Column(String(1000), default="")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    # Optimistic lock: an UPDATE against a row changed since it was loaded fails
    version_id = Column(Integer, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    user = relationship("User")

    __mapper_args__ = {"version_id_col": version_id}


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    # snapshot of the product at the time of order
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    image = Column(String(500), default="")

    order = relationship("Order", back_populates="items")
