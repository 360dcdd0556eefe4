"""结算与支付领域异常

每个异常携带 HTTP 状态码和稳定的错误码，由 main 中的全局异常处理器统一
转换为 {"success": false, "message": ..., "code": ...} 响应。
"""


class CheckoutError(Exception):
    """结算领域异常基类"""

    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    """请求内容不合法（地址缺失、购物车为空等）"""

    code = "validation_error"


class StockUnavailable(CheckoutError):
    """库存不足"""

    code = "stock_unavailable"

    def __init__(self, title: str, requested: int = None, available: int = None):
        super().__init__(f'Insufficient stock for "{title}"')
        self.title = title
        self.requested = requested
        self.available = available


class GatewayUnavailable(CheckoutError):
    """支付网关调用失败或超时，可安全重试"""

    status_code = 502
    code = "gateway_unavailable"


class SignatureMismatch(CheckoutError):
    """支付回调签名校验失败"""

    code = "signature_mismatch"

    def __init__(self, message: str = "Payment verification failed. Invalid signature."):
        super().__init__(message)


class OrderNotFound(CheckoutError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__("Order not found")
        self.order_id = order_id


class CheckoutInProgress(CheckoutError):
    """同一买家的结算正在进行中"""

    status_code = 409
    code = "checkout_in_progress"

    def __init__(self, message: str = "A checkout for this cart is already in progress, please retry shortly"):
        super().__init__(message)


class AuthenticationFailed(CheckoutError):
    status_code = 401
    code = "not_authenticated"


class PermissionDenied(CheckoutError):
    status_code = 403
    code = "permission_denied"

    def __init__(self, message: str = "Not authorized as an admin"):
        super().__init__(message)
