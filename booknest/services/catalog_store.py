"""图书库存访问层"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
import logging

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from booknest.models.book import Book
from booknest.models.stock_logs import StockLog, ChangeType

logger = logging.getLogger(__name__)

STOCK_CACHE_TTL = 300


def stock_cache_key(book_id: str) -> str:
    return f"stock:available:{book_id}"


@dataclass
class StockDecrement:
    """单行库存扣减结果"""
    book_id: str
    quantity: int
    applied: bool
    remaining: Optional[int] = None


class CatalogStore:
    """图书库存存储（展示读取带缓存，扣减为数据库原子条件更新）"""

    def __init__(self, db: Session, redis: Redis = None):
        self.db = db
        self.redis = redis

    def get_books(self, book_ids: Iterable[str]) -> Dict[str, Book]:
        """按ID批量读取图书（不走缓存，用于下单校验与价格快照）"""
        ids = list(book_ids)
        if not ids:
            return {}
        books = self.db.execute(
            select(Book)
            .where(Book.id.in_(ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {book.id: book for book in books}

    def get_stock(self, book_id: str) -> int:
        """查询图书可用库存（带缓存，Redis 故障时直接读数据库）"""
        cache_key = stock_cache_key(book_id)

        # 先查缓存
        if self.redis:
            try:
                cached = self.redis.get(cache_key)
            except RedisError as e:
                logger.warning(f"Stock cache read failed for book {book_id}: {e}")
                cached = None
            if cached is not None:
                logger.debug(f"Cache hit for book {book_id}")
                return int(cached)

        # 缓存未命中，查询数据库
        stock = self.db.execute(select(Book.stock).where(Book.id == book_id)).scalar_one_or_none()
        available = stock if stock is not None else 0

        if self.redis:
            try:
                self.redis.setex(cache_key, STOCK_CACHE_TTL, available)
                logger.debug(f"Cache set for book {book_id}: {available}")
            except RedisError as e:
                logger.warning(f"Stock cache write failed for book {book_id}: {e}")

        return available

    def batch_get_stocks(self, book_ids: List[str]) -> Dict[str, int]:
        """批量获取库存（带缓存优化）"""
        if not book_ids:
            return {}

        results = {}
        uncached_ids = list(book_ids)

        if self.redis:
            try:
                cached_values = self.redis.mget([stock_cache_key(bid) for bid in book_ids])
            except RedisError as e:
                logger.warning(f"Stock cache batch read failed, reading {len(book_ids)} book(s) from database: {e}")
                cached_values = [None] * len(book_ids)
            uncached_ids = []
            for bid, cached in zip(book_ids, cached_values):
                if cached is not None:
                    results[bid] = int(cached)
                else:
                    uncached_ids.append(bid)

        if uncached_ids:
            rows = self.db.execute(
                select(Book.id, Book.stock).where(Book.id.in_(uncached_ids))
            ).all()
            stock_map = {row.id: row.stock for row in rows}

            pipe = self.redis.pipeline() if self.redis else None
            for bid in uncached_ids:
                available = stock_map.get(bid, 0)
                results[bid] = available
                if pipe is not None:
                    pipe.setex(stock_cache_key(bid), STOCK_CACHE_TTL, available)
            if pipe is not None:
                try:
                    pipe.execute()
                except RedisError as e:
                    logger.warning(f"Stock cache batch write failed: {e}")

        return results

    def decrement_stock(self, book_id: str, quantity: int, order_id: str, source: str) -> StockDecrement:
        """原子扣减库存：仅当 stock >= quantity 时扣减

        每次调用单独提交；扣减失败（库存不足）记录 SHORTFALL 日志而不是抛出，
        由调用方决定如何上报。数据库异常回滚本步后继续向上抛出。
        """
        try:
            result = self.db.execute(
                update(Book)
                .where(Book.id == book_id, Book.stock >= quantity)
                .values(stock=Book.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount == 1

            remaining = self.db.execute(select(Book.stock).where(Book.id == book_id)).scalar_one_or_none()

            if applied:
                log = StockLog(
                    book_id=book_id,
                    order_id=order_id,
                    change_type=ChangeType.DECREMENT,
                    quantity=-quantity,
                    before_stock=remaining + quantity,
                    after_stock=remaining,
                    source=source,
                )
            else:
                log = StockLog(
                    book_id=book_id,
                    order_id=order_id,
                    change_type=ChangeType.SHORTFALL,
                    quantity=-quantity,
                    before_stock=remaining,
                    after_stock=remaining,
                    source=source,
                )
            self.db.add(log)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Stock decrement failed: order_id={order_id}, book_id={book_id}, error={str(e)}")
            raise

        self.invalidate(book_id)

        if applied:
            logger.info(f"Stock decremented: order_id={order_id}, book_id={book_id}, quantity={quantity}, remaining={remaining}")
        return StockDecrement(book_id=book_id, quantity=quantity, applied=applied, remaining=remaining)

    def invalidate(self, book_id: str):
        """删除库存缓存；失败只记录，缓存随 TTL 过期"""
        if not self.redis:
            return
        try:
            self.redis.delete(stock_cache_key(book_id))
            logger.debug(f"Cache invalidated for book {book_id}")
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for book {book_id}: {e}")
