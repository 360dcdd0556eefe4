"""测试配置和 fixtures"""
import itertools
from decimal import Decimal
from unittest.mock import Mock

import pytest
from redis import Redis
from redlock import Redlock
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booknest.core.security import IdentityProvider, UserIdentity
from booknest.db import init_db
from booknest.db.base import Base
from booknest.models.book import Book
from booknest.models.cart import CartItem
from booknest.services.checkout_service import CheckoutService
from booknest.services.payment_gateway import RazorpayGateway
from booknest.services.pricing import PricingPolicy

TEST_JWT_SECRET = "test-booknest-jwt-secret-0123456789abcdef"
GATEWAY_SECRET = "s"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(engine):
    """创建内存 SQLite 数据库会话"""
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端（缓存始终未命中）"""
    redis_mock = Mock(spec=Redis)
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.delete.return_value = 1
    redis_mock.mget.side_effect = lambda keys: [None] * len(keys)
    redis_mock.pipeline.return_value = Mock()
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    redlock_mock.lock.return_value = Mock()
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def razorpay_client():
    """模拟 razorpay.Client，每次创建返回新的网关订单ID"""
    counter = itertools.count(1)
    client = Mock()
    client.order.create.side_effect = lambda data, **kwargs: {
        "id": f"order_{next(counter)}",
        "amount": data["amount"],
        "currency": data["currency"],
        "receipt": data["receipt"],
    }
    return client


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway("rzp_test_key", GATEWAY_SECRET, timeout=5, client=razorpay_client)


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def pricing_policy():
    return PricingPolicy(
        free_shipping_threshold=Decimal("50"),
        flat_shipping_fee=Decimal("5"),
        tax_rate=Decimal("0.10"),
    )


@pytest.fixture
def service(db_session, gateway, mock_redis, mock_redlock, notifier, pricing_policy):
    service = CheckoutService(db_session, gateway=gateway, redis=mock_redis, rlock=mock_redlock, notifier=notifier)
    service.policy = pricing_policy
    return service


@pytest.fixture
def buyer():
    return UserIdentity(id="user-1", email="reader@example.com")


@pytest.fixture
def other_buyer():
    return UserIdentity(id="user-2", email="other@example.com")


@pytest.fixture
def admin():
    return UserIdentity(id="admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def shipping_address():
    return {
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "zipCode": "560001",
        "country": "India",
    }


@pytest.fixture
def add_book(db_session):
    """添加图书"""
    def _add_book(book_id="book-1", title="The Hobbit", price="100.00", discount="10", stock=5):
        book = Book(id=book_id, title=title, price=Decimal(price), discount=Decimal(discount), stock=stock)
        db_session.add(book)
        db_session.commit()
        return book
    return _add_book


@pytest.fixture
def add_to_cart(db_session):
    """加入购物车"""
    def _add_to_cart(user_id, book_id, quantity=1):
        item = CartItem(user_id=user_id, book_id=book_id, quantity=quantity)
        db_session.add(item)
        db_session.commit()
        return item
    return _add_to_cart


@pytest.fixture
def stock_of(db_session):
    """直接从数据库读取当前库存"""
    def _stock_of(book_id):
        return db_session.execute(select(Book.stock).where(Book.id == book_id)).scalar_one()
    return _stock_of


@pytest.fixture
def cart_size(db_session):
    def _cart_size(user_id):
        return len(db_session.execute(select(CartItem.id).where(CartItem.user_id == user_id)).all())
    return _cart_size


@pytest.fixture
def identity_provider():
    return IdentityProvider(TEST_JWT_SECRET)


@pytest.fixture
def client(db_session, gateway, mock_redis, mock_redlock, notifier, identity_provider, pricing_policy, monkeypatch):
    """创建测试客户端，所有外部依赖替换为测试替身"""
    from fastapi.testclient import TestClient

    from booknest.core import dependencies
    from booknest.main import app

    def override_get_db():
        yield db_session

    monkeypatch.setattr(dependencies.settings, "FREE_SHIPPING_THRESHOLD", pricing_policy.free_shipping_threshold)
    monkeypatch.setattr(dependencies.settings, "FLAT_SHIPPING_FEE", pricing_policy.flat_shipping_fee)
    monkeypatch.setattr(dependencies.settings, "TAX_RATE", pricing_policy.tax_rate)

    app.dependency_overrides[dependencies.get_db] = override_get_db
    app.dependency_overrides[dependencies.get_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_redis] = lambda: mock_redis
    app.dependency_overrides[dependencies.get_redlock] = lambda: mock_redlock
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier
    app.dependency_overrides[dependencies.get_identity_provider] = lambda: identity_provider

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(identity_provider):
    """生成 Bearer 认证请求头"""
    def _auth_headers(user: UserIdentity):
        token = identity_provider.issue_token(user.id, email=user.email, role=user.role)
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
