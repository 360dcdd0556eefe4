from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from booknest.db.base import Base


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    user_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="买家ID",
    )

    book_id = Column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
        comment="图书ID",
    )

    quantity = Column(
        Integer,
        nullable=False,
        default=1,
        comment="购买数量",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    book = relationship("Book", lazy="joined")

    # 同一买家同一本书只保留一行
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "book_id",
            name="uq_cart_user_book",
        ),
        CheckConstraint(
            "quantity >= 1",
            name="ck_cart_quantity_positive",
        ),
    )
