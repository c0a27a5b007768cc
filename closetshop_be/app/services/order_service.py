"""
Order service - pricing, status transitions and payment confirmation.

Orders are plain ORM rows; all behaviour lives here. Every public method
commits its own unit of work. Status writes are guarded by the order row's
version counter, so a request racing another one on the same order fails the
transition check instead of overwriting the newer state.
"""
import logging
import math
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings
from app.models.cart import Cart, CartItem
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from app.models.product import Product
from app.models.user import User
from app.utils.errors import (
    DuplicatePayment,
    Forbidden,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    PaymentVerificationError,
)
from app.utils.portone import PortOneClient

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Statuses counted as revenue in the admin statistics
SALES_STATUSES = (
    OrderStatus.PAID.value,
    OrderStatus.PREPARING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
)

SUPERSEDED_REASON = "superseded by new order"
DEFAULT_CANCEL_REASON = "customer request"
DEFAULT_REFUND_REASON = "admin refund"

# Concurrent creates can read the same last order number of the day
ORDER_NUMBER_ATTEMPTS = 3


def calculate_pricing(items: Sequence[Tuple[int, int]], settings: Settings, discount_amount: int = 0) -> dict:
    """Price a list of ``(unit_price, quantity)`` pairs.

    Shipping is free from ``FREE_SHIPPING_THRESHOLD`` up; the total never
    goes below zero.
    """
    items_price = sum(price * quantity for price, quantity in items)
    shipping_price = 0 if items_price >= settings.FREE_SHIPPING_THRESHOLD else settings.SHIPPING_FEE
    total_price = max(0, items_price + shipping_price - discount_amount)
    return {
        "itemsPrice": items_price,
        "shippingPrice": shipping_price,
        "discountAmount": discount_amount,
        "totalPrice": total_price,
    }


def apply_transition(order: Order, new_status, now: Optional[datetime] = None) -> Order:
    """Move ``order`` to ``new_status`` and stamp the matching sub-record.

    Raises InvalidTransition, leaving the order untouched, when the table
    has no such edge.
    """
    current = OrderStatus(order.status)
    target = OrderStatus(new_status)
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)

    now = now or datetime.utcnow()
    order.status = target.value

    if target is OrderStatus.PAID:
        order.payment_status = PaymentStatus.COMPLETED.value
        order.payment_paid_at = now
    elif target is OrderStatus.SHIPPED:
        order.shipping_shipped_at = now
    elif target is OrderStatus.DELIVERED:
        order.shipping_delivered_at = now
    elif target is OrderStatus.CANCELLED:
        order.cancellation_cancelled_at = now
        order.payment_status = PaymentStatus.CANCELLED.value
    elif target is OrderStatus.REFUNDED:
        order.cancellation_refunded_at = now
        order.cancellation_refund_amount = order.pricing_total_price
        order.payment_status = PaymentStatus.REFUNDED.value

    order.updated_at = now
    logger.info("Order %s: %s -> %s", order.order_number, current.value, target.value)
    return order


def generate_order_number(db: Session, today: Optional[datetime] = None) -> str:
    date_str = (today or datetime.utcnow()).strftime("%Y%m%d")
    prefix = f"ORD-{date_str}-"
    last = (
        db.query(Order.order_number)
        .filter(Order.order_number.like(f"{prefix}%"))
        .order_by(Order.order_number.desc())
        .first()
    )
    sequence = int(last[0].rsplit("-", 1)[1]) + 1 if last else 1
    return f"{prefix}{sequence:05d}"


class OrderService:
    """Order use cases for one request.

    ``gateway`` is None when PortOne credentials are not configured; payment
    verification is then skipped.
    """

    def __init__(self, db: Session, settings: Settings, gateway: Optional[PortOneClient] = None):
        self.db = db
        self.settings = settings
        self.gateway = gateway

    # ----- lookups -----

    def _get_order(self, order_id: int) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("Order not found")
        return order

    def _get_visible_order(self, user: User, order_id: int) -> Order:
        order = self._get_order(order_id)
        if order.user_id != user.id and not user.is_admin:
            raise Forbidden()
        return order

    def get_order(self, user: User, order_id: int) -> Order:
        return self._get_visible_order(user, order_id)

    def _commit_transition(self, order: Order, target) -> None:
        """Commit a change to ``order``; a concurrent write to the row makes it an InvalidTransition."""
        order_id = order.id
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            current = self.db.query(Order.status).filter(Order.id == order_id).scalar()
            requested = OrderStatus(target).value
            logger.warning("Order %s changed concurrently; %s -> %s rejected", order_id, current, requested)
            raise InvalidTransition(current, requested)

    # ----- creation -----

    def _supersede_pending(self, user: User, now: datetime) -> None:
        # Committed on its own: a new order attempt retires the old one even if it then fails validation
        for attempt in range(2):
            pending = (
                self.db.query(Order)
                .filter(Order.user_id == user.id, Order.status == OrderStatus.PENDING.value)
                .all()
            )
            if not pending:
                return
            logger.info("Cancelling %d pending order(s) for user %s", len(pending), user.id)
            for order in pending:
                apply_transition(order, OrderStatus.CANCELLED, now)
                order.cancellation_reason = SUPERSEDED_REASON
            try:
                self.db.commit()
                return
            except StaleDataError:
                # one of them was paid or cancelled meanwhile; re-read and try once more
                self.db.rollback()
                if attempt:
                    raise

    def _items_from_cart(self, user: User, selected: Optional[List[int]]) -> List[Tuple[Product, int]]:
        cart = self.db.query(Cart).filter(Cart.user_id == user.id).first()
        if not cart or not cart.items:
            raise InvalidRequest("Cart is empty")

        cart_items = list(cart.items)
        if selected:
            wanted = set(selected)
            cart_items = [i for i in cart_items if i.product_id in wanted]
            if not cart_items:
                raise InvalidRequest("None of the selected products are in the cart")

        resolved = []
        for item in cart_items:
            if item.product is None:
                raise InvalidRequest(f"Product not found: {item.product_id}")
            resolved.append((item.product, item.quantity))
        return resolved

    def _items_from_payload(self, items) -> List[Tuple[Product, int]]:
        product_ids = [i.productId for i in items]
        products = {p.id: p for p in self.db.query(Product).filter(Product.id.in_(product_ids)).all()}
        resolved = []
        for item in items:
            product = products.get(item.productId)
            if not product:
                raise InvalidRequest(f"Product not found: {item.productId}")
            resolved.append((product, item.quantity))
        return resolved

    def create_order(self, user: User, payload) -> Order:
        now = datetime.utcnow()
        self._supersede_pending(user, now)

        if payload.useCart:
            resolved = self._items_from_cart(user, payload.selectedItems)
        elif payload.items:
            resolved = self._items_from_payload(payload.items)
        else:
            raise InvalidRequest("Order items are required")

        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            order = self._build_order(user, payload, resolved, now)
            order_number = order.order_number
            self.db.add(order)
            try:
                # Cart is left alone until payment succeeds
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                if attempt == ORDER_NUMBER_ATTEMPTS - 1:
                    raise
                logger.warning("Order number %s already taken, retrying", order_number)

        self.db.refresh(order)
        logger.info("Created order %s for user %s (total=%s)", order.order_number, user.id, order.pricing_total_price)
        return order

    def _build_order(self, user: User, payload, resolved: List[Tuple[Product, int]], now: datetime) -> Order:
        pricing = calculate_pricing([(p.price, qty) for p, qty in resolved], self.settings)
        address = payload.shippingAddress

        return Order(
            order_number=generate_order_number(self.db, now),
            user_id=user.id,
            shipping_address_recipient_name=address.recipientName,
            shipping_address_phone=address.phone,
            shipping_address_zip_code=address.zipCode,
            shipping_address_address=address.address,
            shipping_address_detail=address.addressDetail,
            shipping_address_delivery_request=address.deliveryRequest,
            status=OrderStatus.PENDING.value,
            payment_method=payload.paymentMethod,
            payment_status=PaymentStatus.PENDING.value,
            pricing_items_price=pricing["itemsPrice"],
            pricing_shipping_price=pricing["shippingPrice"],
            pricing_discount_amount=pricing["discountAmount"],
            pricing_total_price=pricing["totalPrice"],
            from_cart=bool(payload.useCart),
            ordered_product_ids=[p.id for p, _ in resolved] if payload.useCart else [],
            created_at=now,
            updated_at=now,
            items=[
                OrderItem(product_id=p.id, name=p.name, price=p.price, quantity=qty, image=p.main_image)
                for p, qty in resolved
            ],
        )

    # ----- payment -----

    def _prune_cart(self, order: Order) -> None:
        if not order.from_cart or not order.ordered_product_ids:
            return
        cart = self.db.query(Cart).filter(Cart.user_id == order.user_id).first()
        if not cart:
            return
        (
            self.db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_id.in_(order.ordered_product_ids))
            .delete(synchronize_session=False)
        )

    def pay_order(self, user: User, order_id: int, transaction_id: Optional[str]) -> Order:
        if not transaction_id:
            raise InvalidRequest("transactionId is required")

        order = self._get_order(order_id)
        if order.user_id != user.id:
            raise Forbidden()

        existing = (
            self.db.query(Order.id)
            .filter(Order.payment_transaction_id == transaction_id)
            .first()
        )
        if existing:
            raise DuplicatePayment(transaction_id)

        if order.status != OrderStatus.PENDING.value:
            raise InvalidTransition(order.status, OrderStatus.PAID.value)

        now = datetime.utcnow()
        if self.gateway is not None:
            # GatewayUnavailable propagates and leaves the order pending for a retry
            try:
                payment = self.gateway.verify_payment(transaction_id, order.pricing_total_price)
            except PaymentVerificationError as e:
                logger.warning("Payment verification failed for order %s: %s", order.order_number, e.message)
                apply_transition(order, OrderStatus.CANCELLED, now)
                order.cancellation_reason = f"verification failed: {e.message}"
                order.payment_status = PaymentStatus.FAILED.value
                self._commit_transition(order, OrderStatus.CANCELLED)
                raise

            order.payment_verified_at = now
            order.payment_info = {
                "pgProvider": payment.get("pg_provider"),
                "payMethod": payment.get("pay_method"),
                "cardName": payment.get("card_name"),
                "buyerName": payment.get("buyer_name"),
                "buyerEmail": payment.get("buyer_email"),
                "buyerTel": payment.get("buyer_tel"),
            }
        else:
            logger.warning(
                "PortOne credentials are not configured; accepting payment %s for order %s "
                "without verification (unsafe development fallback)",
                transaction_id, order.order_number,
            )

        order.payment_transaction_id = transaction_id
        apply_transition(order, OrderStatus.PAID, now)
        self._prune_cart(order)
        self._commit_transition(order, OrderStatus.PAID)
        self.db.refresh(order)
        return order

    # ----- cancellation / refunds -----

    def cancel_order(self, user: User, order_id: int, reason: Optional[str] = None) -> Order:
        order = self._get_visible_order(user, order_id)
        apply_transition(order, OrderStatus.CANCELLED)
        order.cancellation_reason = reason or DEFAULT_CANCEL_REASON
        self._commit_transition(order, OrderStatus.CANCELLED)
        self.db.refresh(order)
        return order

    def refund_order(self, order_id: int, reason: Optional[str] = None) -> Order:
        order = self._get_order(order_id)
        apply_transition(order, OrderStatus.REFUNDED)
        order.cancellation_reason = reason or DEFAULT_REFUND_REASON
        self._commit_transition(order, OrderStatus.REFUNDED)
        self.db.refresh(order)
        return order

    # ----- admin -----

    def change_status(self, order_id: int, status: str, admin_note: Optional[str] = None) -> Order:
        order = self._get_order(order_id)
        apply_transition(order, status)
        if admin_note:
            order.admin_note = admin_note
        self._commit_transition(order, status)
        self.db.refresh(order)
        return order

    def update_shipping_info(self, order_id: int, courier: str, tracking_number: str,
                             auto_change_status: bool = True) -> Order:
        order = self._get_order(order_id)
        order.shipping_courier = courier
        order.shipping_tracking_number = tracking_number
        order.updated_at = datetime.utcnow()

        if auto_change_status:
            if order.status == OrderStatus.PAID.value:
                apply_transition(order, OrderStatus.PREPARING)
            if order.status == OrderStatus.PREPARING.value:
                apply_transition(order, OrderStatus.SHIPPED)

        self._commit_transition(order, order.status)
        self.db.refresh(order)
        return order

    # ----- listings -----

    @staticmethod
    def _paginate(query, page: int, limit: int):
        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        }
        return orders, pagination

    def list_user_orders(self, user: User, page: int = 1, limit: Optional[int] = None,
                         status: Optional[str] = None):
        query = self.db.query(Order).filter(Order.user_id == user.id)
        if status:
            query = query.filter(Order.status == status)
        return self._paginate(query, page, limit or self.settings.ORDERS_PAGE_SIZE)

    def list_orders(self, page: int = 1, limit: Optional[int] = None, status: Optional[str] = None,
                    start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                    search: Optional[str] = None):
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if start_date:
            query = query.filter(Order.created_at >= start_date)
        if end_date:
            query = query.filter(Order.created_at <= end_date)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Order.order_number.ilike(pattern),
                Order.shipping_address_recipient_name.ilike(pattern),
            ))
        return self._paginate(query, page, limit or self.settings.ADMIN_ORDERS_PAGE_SIZE)

    def stats(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today.replace(day=1)

        total_orders = self.db.query(func.count(Order.id)).scalar() or 0
        today_orders = self.db.query(func.count(Order.id)).filter(Order.created_at >= today).scalar() or 0
        monthly_orders = self.db.query(func.count(Order.id)).filter(Order.created_at >= month_start).scalar() or 0
        status_counts = {
            status: count
            for status, count in self.db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        }
        monthly_sales = (
            self.db.query(func.coalesce(func.sum(Order.pricing_total_price), 0))
            .filter(Order.status.in_(SALES_STATUSES), Order.created_at >= month_start)
            .scalar()
        )
        return {
            "totalOrders": total_orders,
            "todayOrders": today_orders,
            "monthlyOrders": monthly_orders,
            "statusCounts": status_counts,
            "monthlySales": int(monthly_sales or 0),
        }
