"""结算请求幂等记录

客户端带 Idempotency-Key 重试 create-order 时，同一买家同一 Key 只会创建一张订单；
成功后保存响应快照，重放时直接返回。
"""
import enum

from sqlalchemy import Column, String, TIMESTAMP, text, Enum, Index

from booknest.db.base import Base, JSONType


class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"  # 结算进行中，同 Key 并发请求返回 409
    SUCCESS = "SUCCESS"        # 已创建订单，可重放快照
    FAILED = "FAILED"          # 网关或校验失败，允许同 Key 重试


class IdempotencyKey(Base):
    __tablename__ = "checkout_idempotency_keys"

    # checkout:买家ID:客户端Key，超长截断到 128
    key = Column(String(128), primary_key=True, comment="结算幂等键")

    buyer_id = Column(String(64), nullable=False, comment="发起结算的买家ID")

    # 成功后回填，便于按订单追查重放来源
    order_id = Column(String(36), nullable=True, comment="本次结算创建的订单ID")

    status = Column(
        Enum(IdempotencyStatus, name="checkout_idempotency_status"),
        nullable=False,
        default=IdempotencyStatus.PROCESSING,
        comment="结算处理状态",
    )

    # create-order 的响应体（orderId、网关订单号、金额等）
    response_snapshot = Column(JSONType, nullable=True, comment="结算响应快照")

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    # 超时订单清理任务顺带删除过期记录
    expires_at = Column(TIMESTAMP(timezone=True), nullable=True, comment="过期时间")


Index("idx_checkout_idempotency_expires_at", IdempotencyKey.expires_at)
Index("idx_checkout_idempotency_buyer", IdempotencyKey.buyer_id)
