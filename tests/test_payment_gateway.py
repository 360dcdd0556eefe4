"""支付网关适配器单元测试"""
import hashlib
import hmac
from unittest.mock import Mock

import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from booknest.core.exceptions import GatewayUnavailable
from booknest.services.payment_gateway import RazorpayGateway, compute_signature


class TestSignature:
    """签名计算与校验测试类"""

    def test_signature_scenario(self):
        """测试 O1|P1 使用密钥 s 的签名"""
        expected = hmac.new(b"s", b"O1|P1", hashlib.sha256).hexdigest()

        assert compute_signature("O1", "P1", "s") == expected

    def test_verify_exact_signature(self, gateway):
        signature = compute_signature("O1", "P1", "s")

        assert gateway.verify_signature("O1", "P1", signature) is True

    def test_verify_rejects_any_single_changed_character(self, gateway):
        """测试任意单个字符被篡改都会失败"""
        signature = compute_signature("O1", "P1", "s")

        for index in range(len(signature)):
            replacement = "0" if signature[index] != "0" else "1"
            tampered = signature[:index] + replacement + signature[index + 1:]
            assert gateway.verify_signature("O1", "P1", tampered) is False

    def test_verify_rejects_swapped_ids_and_wrong_secret(self, gateway):
        signature = compute_signature("O1", "P1", "s")

        assert gateway.verify_signature("P1", "O1", signature) is False
        assert gateway.verify_signature("O1", "P1", compute_signature("O1", "P1", "other")) is False

    def test_verify_rejects_empty_and_non_ascii(self, gateway):
        assert gateway.verify_signature("O1", "P1", "") is False
        assert gateway.verify_signature("O1", "P1", "签名") is False


class TestCreateIntent:
    """创建支付意图测试类"""

    def test_create_intent_success(self, gateway, razorpay_client):
        intent_id = gateway.create_intent(19800, "INR", "order-uuid", notes={"userId": "user-1"})

        assert intent_id == "order_1"
        razorpay_client.order.create.assert_called_once_with(
            data={
                "amount": 19800,
                "currency": "INR",
                "receipt": "order-uuid",
                "notes": {"orderId": "order-uuid", "userId": "user-1"},
            },
            timeout=5,
        )

    @pytest.mark.parametrize("error", [
        BadRequestError("amount invalid"),
        ServerError("razorpay down"),
        requests.exceptions.Timeout("read timed out"),
        requests.exceptions.ConnectionError("connection refused"),
    ])
    def test_create_intent_failures_become_gateway_unavailable(self, error):
        client = Mock()
        client.order.create.side_effect = error
        gateway = RazorpayGateway("rzp_test_key", "s", client=client)

        with pytest.raises(GatewayUnavailable) as exc_info:
            gateway.create_intent(100, "INR", "order-uuid")

        assert exc_info.value.status_code == 502
        assert exc_info.value.__cause__ is error

    def test_create_intent_invalid_response(self):
        client = Mock()
        client.order.create.return_value = {"status": "created"}
        gateway = RazorpayGateway("rzp_test_key", "s", client=client)

        with pytest.raises(GatewayUnavailable):
            gateway.create_intent(100, "INR", "order-uuid")
