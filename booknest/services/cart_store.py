"""购物车访问层"""

from typing import List
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from booknest.models.cart import CartItem

logger = logging.getLogger(__name__)


class CartStore:

    def __init__(self, db: Session):
        self.db = db

    def get_items(self, user_id: str) -> List[CartItem]:
        return list(
            self.db.execute(
                select(CartItem)
                .where(CartItem.user_id == user_id)
                .order_by(CartItem.id)
            ).scalars().unique().all()
        )

    def clear(self, user_id: str) -> int:
        """清空购物车，返回删除的行数"""
        try:
            result = self.db.execute(
                delete(CartItem).where(CartItem.user_id == user_id)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Cart cleared for user {user_id}: {result.rowcount} line(s)")
        return result.rowcount
