import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    text,
    Enum,
    Index,
)
from booknest.db.base import Base


# 1定义库存变更类型
class ChangeType(str, enum.Enum):
    DECREMENT = "DECREMENT"   # 支付确认后扣减
    SHORTFALL = "SHORTFALL"   # 支付已确认但库存不足，未能扣减


# 2️库存日志表
class StockLog(Base):
    __tablename__ = "stock_logs"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    book_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="图书ID",
    )

    order_id = Column(
        String(36),
        nullable=True,
        index=True,
        comment="订单ID",
    )

    change_type = Column(
        Enum(
            ChangeType,
            name="stock_change_type",
        ),
        nullable=False,
        comment="库存变更类型",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="变更数量（扣减为负数）",
    )

    before_stock = Column(
        Integer,
        nullable=True,
        comment="变更前库存",
    )

    after_stock = Column(
        Integer,
        nullable=True,
        comment="变更后库存",
    )

    source = Column(
        String(50),
        nullable=True,
        comment="来源：gateway_verify / cash_settlement",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


# 3️组合索引（高频查询优化）

Index(
    "idx_stock_logs_book_created_desc",
    StockLog.book_id,
    StockLog.created_at.desc(),
)
