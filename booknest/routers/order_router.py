"""订单 API 路由（货到付款、结算预览、订单查询与运维）"""

import logging

from fastapi import APIRouter, Body, Path, Query

from booknest.core.dependencies import AdminDep, CheckoutServiceDep, CurrentUserDep
from booknest.core.security import UserIdentity
from booknest.schemas.order import (
    CashOrderRequest,
    CeleryTaskResponse,
    CheckoutPreviewResponse,
    ConfirmPaymentResponse,
    ExpireOrdersResponse,
    OrderDetail,
    OrderListResponse,
    OrderResponse,
    PreviewLine,
    StockShortfallDetail,
    TaskStatusResponse,
    TotalsDetail,
)
from booknest.services.checkout_service import CheckoutService
from celery_app import app as celery
from tasks.payment_tasks import expire_stale_orders as celery_expire_task

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/orders",
    tags=["订单"],
    responses={
        400: {"description": "请求参数错误"},
        401: {"description": "未登录"},
        403: {"description": "无权限"},
        404: {"description": "订单不存在"},
        500: {"description": "服务器内部错误"},
    }
)


@router.post(
    "",
    status_code=201,
    response_model=OrderResponse,
    summary="货到付款下单",
    description="""使用购物车内容创建货到付款订单并清空购物车。

    库存在收款确认（cash-collected）时才扣减。
    """,
)
def place_cash_order(
    request: CashOrderRequest = Body(...),
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    order = service.place_cash_order(user, request.shipping_address.model_dump(by_alias=True))
    return OrderResponse(success=True, message="Order placed successfully", order=OrderDetail.model_validate(order))


@router.get(
    "",
    response_model=OrderListResponse,
    summary="我的订单",
)
def list_my_orders(
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    orders = service.list_orders(user)
    return OrderListResponse(success=True, data=[OrderDetail.model_validate(o) for o in orders])


@router.get(
    "/checkout/preview",
    response_model=CheckoutPreviewResponse,
    summary="结算预览",
    description="返回购物车明细与金额，金额计算与下单扣款使用同一计价函数。",
)
def checkout_preview(
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    preview = service.preview_checkout(user)
    return CheckoutPreviewResponse(
        success=True,
        items=[PreviewLine.model_validate(line) for line in preview["items"]],
        totals=TotalsDetail.model_validate(preview["totals"]),
    )


@router.post(
    "/maintenance/expire",
    response_model=ExpireOrdersResponse,
    summary="手动取消超时未支付订单",
)
def expire_stale_orders(
    batch_size: int = Query(500, ge=1, le=10000, description="批处理大小"),
    admin: UserIdentity = AdminDep,
    service: CheckoutService = CheckoutServiceDep,
):
    count = service.expire_stale_orders(batch_size=batch_size)
    logger.info(f"Manual stale order expiry by {admin.id}: {count} order(s)")
    return ExpireOrdersResponse(success=True, message="Expiry finished", expired_count=count)


@router.post(
    "/maintenance/expire/celery",
    response_model=CeleryTaskResponse,
    summary="提交异步超时订单清理任务",
)
def expire_stale_orders_async(
    batch_size: int = Query(500, ge=1, le=10000, description="批处理大小"),
    admin: UserIdentity = AdminDep,
):
    task = celery_expire_task.delay(batch_size)
    return CeleryTaskResponse(success=True, message="Expiry task submitted", task_id=task.id)


@router.get(
    "/maintenance/tasks/{task_id}",
    response_model=TaskStatusResponse,
    summary="查询异步任务状态",
)
def get_task_status(
    task_id: str = Path(..., description="任务ID"),
    admin: UserIdentity = AdminDep,
):
    task = celery.AsyncResult(task_id)

    if task.state == 'PENDING':
        status = "Task pending"
    elif task.state == 'SUCCESS':
        status = f"Task finished: {task.result}"
    elif task.state == 'FAILURE':
        status = f"Task failed: {str(task.info)}"
    else:
        status = f"Task state: {task.state}"

    return TaskStatusResponse(task_id=task_id, status=status, state=task.state)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="订单详情",
)
def get_order(
    order_id: str = Path(..., max_length=36, description="订单ID"),
    user: UserIdentity = CurrentUserDep,
    service: CheckoutService = CheckoutServiceDep,
):
    order = service.get_order(order_id, user)
    return OrderResponse(success=True, order=OrderDetail.model_validate(order))


@router.post(
    "/{order_id}/cash-collected",
    response_model=ConfirmPaymentResponse,
    summary="确认货到付款已收款",
    description="管理员操作：货到付款订单 pending→paid，并按订单明细扣减库存（仅一次）。",
)
def cash_collected(
    order_id: str = Path(..., max_length=36, description="订单ID"),
    admin: UserIdentity = AdminDep,
    service: CheckoutService = CheckoutServiceDep,
):
    result = service.settle_cash_order(order_id)
    logger.info(f"Cash collection recorded by {admin.id} for order {order_id}")
    return ConfirmPaymentResponse(
        success=True,
        message="Payment already processed" if result.already_finalized else "Cash payment recorded",
        order=OrderDetail.model_validate(result.order),
        stock_shortfalls=[StockShortfallDetail.model_validate(s) for s in result.stock_shortfalls],
    )
