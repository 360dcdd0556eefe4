"""Razorpay 支付网关适配器

整个结算流程中只有这里会访问第三方网络。签名计算是纯本地 HMAC，
不依赖网关即可测试。
"""

import hashlib
import hmac
import logging

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from booknest.core.exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


def compute_signature(intent_id: str, payment_id: str, secret: str) -> str:
    """计算回调签名：hex(HMAC-SHA256(secret, "intent_id|payment_id"))"""
    message = f"{intent_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    """Razorpay 网关客户端（进程启动时构造并注入）"""

    def __init__(self, key_id: str, key_secret: str, timeout: float = 10.0, client: razorpay.Client = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_intent(self, amount_minor_units: int, currency: str, correlation_id: str, notes: dict = None) -> str:
        """创建网关订单（支付意图），返回网关订单ID"""
        payload = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": correlation_id,
            "notes": {"orderId": correlation_id, **(notes or {})},
        }

        try:
            intent = self.client.order.create(data=payload, timeout=self.timeout)
        except (BadRequestError, GatewayError, ServerError) as e:
            logger.error(f"Razorpay rejected intent for order {correlation_id}: {e}")
            raise GatewayUnavailable("Could not create payment order") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay unreachable for order {correlation_id}: {e}")
            raise GatewayUnavailable("Payment gateway is unavailable, please retry") from e

        intent_id = intent.get("id") if isinstance(intent, dict) else None
        if not intent_id:
            raise GatewayUnavailable("Payment gateway returned an invalid response")

        logger.info(f"Razorpay order created: {intent_id} for {amount_minor_units} {currency} (order {correlation_id})")
        return intent_id

    def compute_signature(self, intent_id: str, payment_id: str) -> str:
        return compute_signature(intent_id, payment_id, self.key_secret)

    def verify_signature(self, intent_id: str, payment_id: str, signature: str) -> bool:
        """常量时间比较回调签名"""
        if not (intent_id and payment_id and signature):
            return False
        expected = self.compute_signature(intent_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
