from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    TIMESTAMP,
    text,
    CheckConstraint,
    Index,
)
from booknest.db.base import Base


class Book(Base):
    __tablename__ = "books"

    id = Column(
        String(36),
        primary_key=True,
        comment="图书ID",
    )

    title = Column(
        String(255),
        nullable=False,
        comment="书名",
    )

    price = Column(
        Numeric(12, 2),
        nullable=False,
        comment="当前售价",
    )

    discount = Column(
        Numeric(5, 2),
        nullable=False,
        default=0,
        server_default="0",
        comment="折扣百分比（0-100）",
    )

    stock = Column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="当前可售库存",
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

    __table_args__ = (
        CheckConstraint(
            "stock >= 0",
            name="ck_books_stock_non_negative",
        ),
        CheckConstraint(
            "discount >= 0 AND discount <= 100",
            name="ck_books_discount_range",
        ),
    )


Index(
    "idx_books_title",
    Book.title,
)
