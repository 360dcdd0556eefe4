"""订单与支付 API 的请求/响应模型"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, PlainSerializer, field_validator
from typing_extensions import Annotated

from booknest.models.order import CheckoutState, OrderStatus, PaymentMethod, PaymentStatus
from booknest.schemas.base import BaseResponse, CamelModel

# 金额在 JSON 中以数字输出
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# ==================== 请求模型 ====================

class ShippingAddress(CamelModel):
    """收货地址"""
    street: str = Field(..., max_length=255, examples=["12 MG Road"])
    city: str = Field(..., max_length=100, examples=["Bengaluru"])
    state: str = Field(..., max_length=100, examples=["Karnataka"])
    zip_code: str = Field(..., max_length=20, examples=["560001"])
    country: str = Field("India", max_length=100)

    @field_validator("street", "city", "state", "zip_code", "country")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CreatePaymentOrderRequest(CamelModel):
    """创建在线支付订单请求"""
    shipping_address: ShippingAddress = Field(
        ...,
        description="收货地址"
    )


class VerifyPaymentRequest(CamelModel):
    """支付回调校验请求"""
    gateway_order_id: str = Field(..., min_length=1, max_length=64, examples=["order_O1"])
    gateway_payment_id: str = Field(..., min_length=1, max_length=64, examples=["pay_P1"])
    gateway_signature: str = Field(..., min_length=1, max_length=256)
    order_id: str = Field(..., min_length=1, max_length=36)


class PaymentFailureRequest(CamelModel):
    """支付失败/取消请求"""
    order_id: str = Field(..., min_length=1, max_length=36)


class CashOrderRequest(CamelModel):
    """货到付款下单请求"""
    shipping_address: ShippingAddress
    payment_method: Literal["cash"] = Field(
        "cash",
        description="仅支持 cash，在线支付请使用 /payment/create-order"
    )


# ==================== 详细信息模型 ====================

class OrderItemDetail(CamelModel):
    book_id: str
    title: str
    quantity: int
    unit_price: Money
    discount_percent: Money


class OrderDetail(CamelModel):
    """订单详情"""
    id: str
    buyer_id: str
    items: List[OrderItemDetail] = []
    shipping_address: dict
    subtotal: Money
    shipping_cost: Money
    tax: Money
    total: Money
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    checkout_state: CheckoutState
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TotalsDetail(CamelModel):
    subtotal: Money
    shipping_cost: Money
    tax: Money
    total: Money


class PreviewLine(CamelModel):
    book_id: str
    title: str
    quantity: int
    unit_price: Money
    discount_percent: Money
    in_stock: bool


class StockShortfallDetail(CamelModel):
    book_id: str
    title: str
    quantity: int
    available: Optional[int] = None


# ==================== 响应模型 ====================

class CreatePaymentOrderResponse(BaseResponse):
    """创建在线支付订单响应"""
    gateway_order_id: str = Field(..., description="网关订单ID")
    amount: int = Field(..., description="金额（最小货币单位）")
    currency: str
    order_id: str = Field(..., description="本系统订单ID")
    key_id: Optional[str] = Field(None, description="前端支付组件使用的公钥ID")


class OrderResponse(BaseResponse):
    order: OrderDetail


class ConfirmPaymentResponse(OrderResponse):
    stock_shortfalls: List[StockShortfallDetail] = []


class OrderListResponse(BaseResponse):
    data: List[OrderDetail] = []


class CheckoutPreviewResponse(BaseResponse):
    items: List[PreviewLine] = []
    totals: TotalsDetail


class ExpireOrdersResponse(BaseResponse):
    expired_count: int = Field(..., ge=0, description="被取消的超时订单数量")


class CeleryTaskResponse(BaseResponse):
    task_id: Optional[str] = Field(None, description="任务ID")


class TaskStatusResponse(CamelModel):
    """任务状态响应"""
    task_id: str
    status: str
    state: str
