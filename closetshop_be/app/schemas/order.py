from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Literal


PaymentMethod = Literal["card", "bank", "kakao", "naver", "toss", "other"]
OrderStatus = Literal["pending", "paid", "preparing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded", "cancelled"]


class ShippingAddress(BaseModel):
    recipientName: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    zipCode: str = Field(min_length=1)
    address: str = Field(min_length=1)
    addressDetail: str = ""
    deliveryRequest: str = ""


class OrderItemIn(BaseModel):
    productId: int
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    shippingAddress: ShippingAddress
    paymentMethod: PaymentMethod
    useCart: bool = False
    # Optional subset of cart product ids; empty means the whole cart
    selectedItems: Optional[List[int]] = None
    items: Optional[List[OrderItemIn]] = None


class OrderPay(BaseModel):
    transactionId: Optional[str] = None


class OrderCancel(BaseModel):
    reason: Optional[str] = None


class OrderRefund(BaseModel):
    reason: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    adminNote: Optional[str] = None


class ShippingInfoUpdate(BaseModel):
    courier: str
    trackingNumber: str
    autoChangeStatus: bool = True


class OrderItemOut(BaseModel):
    id: int
    productId: int
    name: str
    price: int
    quantity: int
    image: Optional[str] = None


class PaymentOut(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    transactionId: Optional[str] = None
    paidAt: Optional[str] = None
    verifiedAt: Optional[str] = None
    paymentInfo: Optional[Dict[str, Optional[str]]] = None


class PricingOut(BaseModel):
    itemsPrice: int
    shippingPrice: int
    discountAmount: int
    totalPrice: int


class ShippingInfoOut(BaseModel):
    courier: str = ""
    trackingNumber: str = ""
    shippedAt: Optional[str] = None
    deliveredAt: Optional[str] = None


class CancellationOut(BaseModel):
    reason: str = ""
    cancelledAt: Optional[str] = None
    refundAmount: int = 0
    refundedAt: Optional[str] = None


class OrderUserOut(BaseModel):
    name: Optional[str] = None
    email: str


class OrderOut(BaseModel):
    id: int
    orderNumber: str
    userId: int
    user: Optional[OrderUserOut] = None
    items: List[OrderItemOut]
    shippingAddress: ShippingAddress
    status: OrderStatus
    payment: PaymentOut
    pricing: PricingOut
    shipping: ShippingInfoOut
    cancellation: CancellationOut
    fromCart: bool
    orderedProductIds: List[int]
    adminNote: str = ""
    createdAt: str
    updatedAt: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class OrderListOut(BaseModel):
    data: List[OrderOut]
    pagination: Pagination


class OrderStatsOut(BaseModel):
    totalOrders: int
    todayOrders: int
    monthlyOrders: int
    statusCounts: Dict[str, int]
    monthlySales: int
