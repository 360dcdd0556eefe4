"""图书库存与购物车访问层测试"""
from unittest.mock import Mock

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from booknest.models.stock_logs import ChangeType, StockLog
from booknest.services.cart_store import CartStore
from booknest.services.catalog_store import STOCK_CACHE_TTL, CatalogStore, stock_cache_key


class TestCatalogStore:
    """图书库存存储测试类"""

    def test_get_stock_cache_hit(self, db_session, mock_redis):
        """测试缓存命中时不查询数据库"""
        mock_redis.get.return_value = "7"
        store = CatalogStore(db_session, mock_redis)

        assert store.get_stock("book-1") == 7
        mock_redis.setex.assert_not_called()

    def test_get_stock_cache_miss(self, db_session, mock_redis, add_book):
        add_book(stock=4)
        store = CatalogStore(db_session, mock_redis)

        assert store.get_stock("book-1") == 4
        mock_redis.setex.assert_called_once_with("stock:available:book-1", STOCK_CACHE_TTL, 4)

    def test_get_stock_unknown_book(self, db_session):
        assert CatalogStore(db_session).get_stock("missing") == 0

    def test_batch_get_stocks_mixes_cache_and_database(self, db_session, mock_redis, add_book):
        add_book("book-1", stock=4)
        add_book("book-2", title="Dune", stock=9)
        mock_redis.mget.side_effect = None
        mock_redis.mget.return_value = ["2", None]
        pipe = Mock()
        mock_redis.pipeline.return_value = pipe
        store = CatalogStore(db_session, mock_redis)

        stocks = store.batch_get_stocks(["book-1", "book-2"])

        assert stocks == {"book-1": 2, "book-2": 9}
        pipe.setex.assert_called_once_with(stock_cache_key("book-2"), STOCK_CACHE_TTL, 9)
        pipe.execute.assert_called_once()

    def test_batch_get_stocks_without_redis(self, db_session, add_book):
        add_book(stock=3)

        assert CatalogStore(db_session).batch_get_stocks(["book-1", "missing"]) == {"book-1": 3, "missing": 0}

    def test_get_stock_falls_back_when_redis_down(self, db_session, mock_redis, add_book):
        """测试 Redis 故障时直接读取数据库库存"""
        add_book(stock=4)
        mock_redis.get.side_effect = RedisConnectionError("down")
        mock_redis.setex.side_effect = RedisConnectionError("down")
        store = CatalogStore(db_session, mock_redis)

        assert store.get_stock("book-1") == 4

    def test_batch_get_stocks_falls_back_when_redis_down(self, db_session, mock_redis, add_book):
        add_book("book-1", stock=4)
        add_book("book-2", title="Dune", stock=9)
        mock_redis.mget.side_effect = RedisConnectionError("down")
        pipe = Mock()
        pipe.execute.side_effect = RedisConnectionError("down")
        mock_redis.pipeline.return_value = pipe
        store = CatalogStore(db_session, mock_redis)

        assert store.batch_get_stocks(["book-1", "book-2"]) == {"book-1": 4, "book-2": 9}

    def test_decrement_stock_success(self, db_session, mock_redis, add_book, stock_of):
        """测试库存充足时扣减并写入日志"""
        add_book(stock=5)
        store = CatalogStore(db_session, mock_redis)

        outcome = store.decrement_stock("book-1", 2, "order-1", "gateway_verify")

        assert outcome.applied is True
        assert outcome.remaining == 3
        assert stock_of("book-1") == 3
        log = db_session.execute(select(StockLog)).scalar_one()
        assert log.change_type == ChangeType.DECREMENT
        assert (log.before_stock, log.after_stock, log.quantity) == (5, 3, -2)
        mock_redis.delete.assert_called_once_with("stock:available:book-1")

    def test_decrement_stock_when_cache_invalidation_fails(self, db_session, mock_redis, add_book, stock_of):
        """测试缓存删除失败不影响已提交的扣减"""
        add_book(stock=5)
        mock_redis.delete.side_effect = RedisConnectionError("down")
        store = CatalogStore(db_session, mock_redis)

        outcome = store.decrement_stock("book-1", 2, "order-1", "gateway_verify")

        assert outcome.applied is True
        assert stock_of("book-1") == 3
        assert db_session.execute(select(StockLog)).scalar_one().change_type == ChangeType.DECREMENT

    def test_decrement_stock_never_goes_negative(self, db_session, add_book, stock_of):
        """测试库存不足时不扣减，记录 SHORTFALL"""
        add_book(stock=1)
        store = CatalogStore(db_session)

        outcome = store.decrement_stock("book-1", 2, "order-1", "gateway_verify")

        assert outcome.applied is False
        assert outcome.remaining == 1
        assert stock_of("book-1") == 1
        log = db_session.execute(select(StockLog)).scalar_one()
        assert log.change_type == ChangeType.SHORTFALL

    def test_get_books_sees_fresh_stock(self, db_session, add_book):
        book = add_book(stock=5)
        store = CatalogStore(db_session)

        store.decrement_stock("book-1", 1, "order-1", "cash_settlement")

        assert store.get_books(["book-1"])["book-1"].stock == 4
        assert book.stock == 4


class TestCartStore:
    """购物车存储测试类"""

    def test_get_items_and_clear(self, db_session, add_book, add_to_cart):
        add_book("book-1")
        add_book("book-2", title="Dune")
        add_to_cart("user-1", "book-1", quantity=1)
        add_to_cart("user-1", "book-2", quantity=2)
        add_to_cart("user-2", "book-1", quantity=1)
        store = CartStore(db_session)

        items = store.get_items("user-1")

        assert [item.book.title for item in items] == ["The Hobbit", "Dune"]
        assert store.clear("user-1") == 2
        assert store.get_items("user-1") == []
        assert len(store.get_items("user-2")) == 1
