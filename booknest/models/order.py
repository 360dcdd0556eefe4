import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Numeric,
    TIMESTAMP,
    text,
    Enum,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from booknest.db.base import Base, JSONType


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# 1️ 支付方式 / 支付状态 / 履约状态枚举

class PaymentMethod(str, enum.Enum):
    GATEWAY = "gateway"   # Razorpay 在线支付
    CASH = "cash"         # 货到付款


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"   # 待支付
    PAID = "paid"         # 已支付（终态）
    FAILED = "failed"     # 支付失败/取消（终态）


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CheckoutState(str, enum.Enum):
    """由支付字段推导出的结算协议状态"""
    CREATED = "CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    FAILED = "FAILED"


# 2️ 订单表

class Order(Base):
    __tablename__ = "orders"

    id = Column(
        String(36),
        primary_key=True,
        comment="订单ID（UUID，在调用网关前生成）",
    )

    buyer_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="买家ID",
    )

    buyer_email = Column(
        String(255),
        nullable=True,
        comment="下单时的买家邮箱快照",
    )

    shipping_address = Column(
        JSONType,
        nullable=False,
        comment="收货地址快照",
    )

    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    currency = Column(
        String(3),
        nullable=False,
        default="INR",
    )

    payment_method = Column(
        Enum(
            PaymentMethod,
            name="payment_method_type",
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    payment_status = Column(
        Enum(
            PaymentStatus,
            name="payment_status_type",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="支付状态",
    )

    order_status = Column(
        Enum(
            OrderStatus,
            name="order_status_type",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="履约状态",
    )

    gateway_order_id = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="网关订单ID（支付意图）",
    )

    gateway_payment_id = Column(
        String(64),
        nullable=True,
        comment="网关支付ID",
    )

    paid_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    @property
    def checkout_state(self) -> CheckoutState:
        if self.payment_status == PaymentStatus.PAID:
            return CheckoutState.PAID
        if self.payment_status == PaymentStatus.FAILED:
            return CheckoutState.FAILED
        if self.gateway_order_id:
            return CheckoutState.AWAITING_PAYMENT
        return CheckoutState.CREATED


# 3️ 订单明细表（价格在下单时快照，不随目录价格变化）

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position = Column(
        Integer,
        nullable=False,
        comment="明细在订单中的顺序",
    )

    book_id = Column(
        String(36),
        ForeignKey("books.id"),
        nullable=False,
        comment="图书ID",
    )

    title = Column(
        String(255),
        nullable=False,
        comment="书名快照",
    )

    quantity = Column(
        Integer,
        nullable=False,
    )

    unit_price = Column(
        Numeric(12, 2),
        nullable=False,
        comment="下单时单价",
    )

    discount_percent = Column(
        Numeric(5, 2),
        nullable=False,
        default=0,
        comment="下单时折扣百分比",
    )

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint(
            "quantity >= 1",
            name="ck_order_items_quantity_positive",
        ),
    )


# 4️ 高频查询优化索引

Index(
    "idx_orders_status_created",
    Order.payment_status,
    Order.created_at,
)
