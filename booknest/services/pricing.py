"""订单计价引擎

结算预览、货到付款下单与在线支付下单共用同一个 compute_totals，
保证用户看到的金额与实际扣款金额一致。
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from booknest.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    unit_price: Decimal
    discount_percent: Decimal
    quantity: int


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricingPolicy:
    free_shipping_threshold: Decimal
    flat_shipping_fee: Decimal
    tax_rate: Decimal

    @classmethod
    def from_settings(cls, config=settings) -> "PricingPolicy":
        return cls(
            free_shipping_threshold=Decimal(config.FREE_SHIPPING_THRESHOLD),
            flat_shipping_fee=Decimal(config.FLAT_SHIPPING_FEE),
            tax_rate=Decimal(config.TAX_RATE),
        )


def line_amount(line: PricedLine) -> Decimal:
    """单行折后金额（未取整）"""
    unit_price = Decimal(line.unit_price)
    discount = Decimal(line.discount_percent or 0)
    return unit_price * (Decimal(100) - discount) / Decimal(100) * line.quantity


def compute_totals(line_items: Iterable[PricedLine], policy: Optional[PricingPolicy] = None) -> OrderTotals:
    """计算小计、运费、税费与总额

    小计严格大于免运费门槛时免运费，恰好等于门槛仍收取固定运费。
    四个金额均取整到分，总额由取整后的三项相加得到。
    """
    policy = policy or PricingPolicy.from_settings()

    subtotal = _money(sum((line_amount(line) for line in line_items), ZERO))
    shipping_cost = ZERO if subtotal > policy.free_shipping_threshold else _money(policy.flat_shipping_fee)
    tax = _money(subtotal * policy.tax_rate)
    total = subtotal + shipping_cost + tax

    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=total,
    )


def to_minor_units(amount: Decimal) -> int:
    """换算为网关的最小货币单位（如 ₹ → paise）"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
