"""在线支付 API 路由（Razorpay 三步协议）"""

from typing import Optional
import logging

from fastapi import APIRouter, Body, Header

from booknest.core.dependencies import CheckoutServiceDep, CurrentUserDep
from booknest.core.security import UserIdentity
from booknest.schemas.base import BaseResponse
from booknest.schemas.order import (
    ConfirmPaymentResponse,
    CreatePaymentOrderRequest,
    CreatePaymentOrderResponse,
    OrderDetail,
    PaymentFailureRequest,
    StockShortfallDetail,
    VerifyPaymentRequest,
)
from booknest.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/payment",
    tags=["在线支付"],
    responses={
        400: {"description": "请求参数错误或签名校验失败"},
        401: {"description": "未登录"},
        404: {"description": "订单不存在"},
        409: {"description": "结算正在进行中"},
        500: {"description": "服务器内部错误"},
        502: {"description": "支付网关不可用"},
    }
)


@router.post(
    "/create-order",
    status_code=201,
    response_model=CreatePaymentOrderResponse,
    summary="创建待支付订单",
    description="""校验购物车与库存，按当前价格快照生成订单，并在 Razorpay 创建支付意图。

    **注意：**
    - 此时不扣减库存
    - 网关失败时不会写入订单，可以安全重试
    - 携带 `Idempotency-Key` 请求头的重试会返回首次结果
    """,
    responses={
        201: {
            "description": "创建成功",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "gatewayOrderId": "order_O1",
                        "amount": 19800,
                        "currency": "INR",
                        "orderId": "3f0c2a8e-6d5b-4f7e-9a51-2c4a1f0e8b77",
                        "keyId": "rzp_test_xxx"
                    }
                }
            }
        }
    }
)
def create_payment_order(
    request: CreatePaymentOrderRequest = Body(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=64),
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    result = service.initiate_checkout(
        user,
        request.shipping_address.model_dump(by_alias=True),
        idempotency_key=idempotency_key,
    )
    return CreatePaymentOrderResponse(success=True, **result)


@router.post(
    "/verify",
    response_model=ConfirmPaymentResponse,
    summary="校验支付回调",
    description="""校验 Razorpay 回调签名并确认订单。

    **顺序保证：**
    - 签名校验先于任何库存与购物车变更
    - 签名不匹配时订单被置为 failed，库存与购物车不变
    - 重复回调为幂等空操作，库存只扣减一次
    """,
)
def verify_payment(
    request: VerifyPaymentRequest = Body(...),
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    result = service.confirm_payment(
        user,
        request.order_id,
        request.gateway_order_id,
        request.gateway_payment_id,
        request.gateway_signature,
    )
    message = "Payment already processed" if result.already_finalized else "Payment verified and order confirmed!"
    return ConfirmPaymentResponse(
        success=True,
        message=message,
        order=OrderDetail.model_validate(result.order),
        stock_shortfalls=[StockShortfallDetail.model_validate(s) for s in result.stock_shortfalls],
    )


@router.post(
    "/failure",
    response_model=BaseResponse,
    summary="支付失败/取消",
    description="用户关闭支付窗口或网关回调失败时调用；已支付订单不会被修改。",
)
def payment_failure(
    request: PaymentFailureRequest = Body(...),
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    service.abort_payment(user, request.order_id)
    return BaseResponse(success=True, message="Order marked as failed/cancelled")
