from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.config import Settings, get_settings
from app.models.user import User, get_db
from app.models.order import Order
from app.schemas.order import (
    OrderCreate,
    OrderOut,
    OrderItemOut,
    OrderListOut,
    OrderPay,
    OrderCancel,
    OrderRefund,
    OrderStatsOut,
    OrderStatus,
    OrderStatusUpdate,
    ShippingInfoUpdate,
)
from app.services.order_service import OrderService
from app.utils.portone import PortOneClient
from app.utils.security import get_current_user


router = APIRouter()
admin_router = APIRouter()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def map_order_to_out(order: Order) -> OrderOut:
    shipping_address = {
        "recipientName": order.shipping_address_recipient_name,
        "phone": order.shipping_address_phone,
        "zipCode": order.shipping_address_zip_code,
        "address": order.shipping_address_address,
        "addressDetail": order.shipping_address_detail or "",
        "deliveryRequest": order.shipping_address_delivery_request or "",
    }
    items = [
        OrderItemOut(
            id=i.id,
            productId=i.product_id,
            name=i.name,
            price=i.price,
            quantity=i.quantity,
            image=i.image,
        )
        for i in order.items
    ]
    return OrderOut(
        id=order.id,
        orderNumber=order.order_number,
        userId=order.user_id,
        user={"name": order.user.name, "email": order.user.email} if order.user else None,  # type: ignore
        items=items,
        shippingAddress=shipping_address,  # type: ignore
        status=order.status,  # type: ignore
        payment={
            "method": order.payment_method,
            "status": order.payment_status,
            "transactionId": order.payment_transaction_id,
            "paidAt": _iso(order.payment_paid_at),
            "verifiedAt": _iso(order.payment_verified_at),
            "paymentInfo": order.payment_info,
        },  # type: ignore
        pricing={
            "itemsPrice": order.pricing_items_price,
            "shippingPrice": order.pricing_shipping_price,
            "discountAmount": order.pricing_discount_amount,
            "totalPrice": order.pricing_total_price,
        },  # type: ignore
        shipping={
            "courier": order.shipping_courier or "",
            "trackingNumber": order.shipping_tracking_number or "",
            "shippedAt": _iso(order.shipping_shipped_at),
            "deliveredAt": _iso(order.shipping_delivered_at),
        },  # type: ignore
        cancellation={
            "reason": order.cancellation_reason or "",
            "cancelledAt": _iso(order.cancellation_cancelled_at),
            "refundAmount": order.cancellation_refund_amount or 0,
            "refundedAt": _iso(order.cancellation_refunded_at),
        },  # type: ignore
        fromCart=bool(order.from_cart),
        orderedProductIds=order.ordered_product_ids or [],
        adminNote=order.admin_note or "",
        createdAt=order.created_at.isoformat(),
        updatedAt=order.updated_at.isoformat(),
    )


def get_gateway(settings: Settings = Depends(get_settings)) -> Optional[PortOneClient]:
    if not settings.payment_verification_enabled:
        return None
    return PortOneClient.from_settings(settings)


def get_order_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: Optional[PortOneClient] = Depends(get_gateway),
) -> OrderService:
    return OrderService(db, settings, gateway)


def _get_user(db: Session, email: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def _get_admin(db: Session, email: str) -> User:
    user = _get_user(db, email)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# Create Order
@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    user = _get_user(db, current_user_email)
    order = service.create_order(user, payload)
    return map_order_to_out(order)


# Get My Orders
@router.get("/my", response_model=OrderListOut)
def get_my_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[OrderStatus] = Query(None),
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    user = _get_user(db, current_user_email)
    orders, pagination = service.list_user_orders(user, page=page, limit=limit, status=status)
    return {"data": [map_order_to_out(o) for o in orders], "pagination": pagination}


# Get Order by ID (owner or admin)
@router.get("/{id}", response_model=OrderOut)
def get_order_by_id(
    id: int,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    user = _get_user(db, current_user_email)
    return map_order_to_out(service.get_order(user, id))


# Confirm Payment
@router.put("/{id}/pay", response_model=OrderOut)
def pay_order(
    id: int,
    payload: OrderPay,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    user = _get_user(db, current_user_email)
    order = service.pay_order(user, id, payload.transactionId)
    return map_order_to_out(order)


# Cancel Order (owner or admin)
@router.put("/{id}/cancel", response_model=OrderOut)
def cancel_order(
    id: int,
    payload: Optional[OrderCancel] = None,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    user = _get_user(db, current_user_email)
    reason = payload.reason if payload else None
    return map_order_to_out(service.cancel_order(user, id, reason))


# Admin: Order Statistics
@admin_router.get("/stats", response_model=OrderStatsOut)
def get_order_stats(
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    _get_admin(db, current_user_email)
    return service.stats()


# Admin: All Orders
@admin_router.get("/", response_model=OrderListOut)
def get_all_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[OrderStatus] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    _get_admin(db, current_user_email)
    orders, pagination = service.list_orders(
        page=page,
        limit=limit,
        status=status,
        start_date=startDate,
        end_date=endDate,
        search=search,
    )
    return {"data": [map_order_to_out(o) for o in orders], "pagination": pagination}


# Admin: Update Order Status
@admin_router.put("/{id}/status", response_model=OrderOut)
def admin_update_order_status(
    id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    _get_admin(db, current_user_email)
    return map_order_to_out(service.change_status(id, payload.status, payload.adminNote))


# Admin: Update Shipping Info
@admin_router.put("/{id}/shipping", response_model=OrderOut)
def admin_update_shipping_info(
    id: int,
    payload: ShippingInfoUpdate,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    _get_admin(db, current_user_email)
    order = service.update_shipping_info(id, payload.courier, payload.trackingNumber, payload.autoChangeStatus)
    return map_order_to_out(order)


# Admin: Refund Order
@admin_router.put("/{id}/refund", response_model=OrderOut)
def admin_refund_order(
    id: int,
    payload: Optional[OrderRefund] = None,
    db: Session = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    current_user_email: str = Depends(get_current_user),
):
    _get_admin(db, current_user_email)
    reason = payload.reason if payload else None
    return map_order_to_out(service.refund_order(id, reason))
