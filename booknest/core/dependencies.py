"""依赖注入配置模块

所有外部客户端由 main.lifespan 在进程启动时构造并挂到 app.state，
这里只负责把它们交给请求处理函数。
"""

import logging
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from redis import Redis
from redlock import Redlock
from sqlalchemy.orm import Session

from booknest.core.config import settings
from booknest.core.exceptions import PermissionDenied
from booknest.core.security import IdentityProvider, UserIdentity
from booknest.db.session import session_scope
from booknest.services.checkout_service import CheckoutService
from booknest.services.payment_gateway import RazorpayGateway
from tasks.notification_tasks import send_order_confirmation

logger = logging.getLogger(__name__)


def get_db(request: Request) -> Generator[Session, None, None]:
    """获取数据库会话"""
    yield from session_scope(request.app.state.session_factory)


def get_redis(request: Request) -> Optional[Redis]:
    """获取 Redis 客户端，不可用时返回 None"""
    client = getattr(request.app.state, "redis", None)
    if client is None:
        return None
    try:
        client.ping()
        return client
    except Exception as e:
        logger.warning(f"Redis unavailable, continuing without cache: {e}")
        return None


def get_redlock(request: Request, redis: Optional[Redis] = Depends(get_redis)) -> Optional[Redlock]:
    """获取 Redlock 分布式锁实例，Redis 不可用或无服务器配置时返回 None"""
    if redis is None:
        return None
    rlock = getattr(request.app.state, "redlock", None)
    if rlock is None or not getattr(rlock, "servers", None):
        return None
    return rlock


def get_gateway(request: Request) -> Optional[RazorpayGateway]:
    """获取支付网关适配器"""
    return getattr(request.app.state, "gateway", None)


def get_notifier():
    """订单确认通知投递函数（Celery 异步任务）"""
    return send_order_confirmation.delay


def get_identity_provider() -> IdentityProvider:
    return IdentityProvider(settings.JWT_SECRET, settings.JWT_ALGORITHM)


def get_current_user(
    authorization: Optional[str] = Header(None),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> UserIdentity:
    """解析当前登录用户"""
    return identity.current_user(authorization)


def require_admin(user: UserIdentity = Depends(get_current_user)) -> UserIdentity:
    if not user.is_admin:
        raise PermissionDenied()
    return user


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: Optional[RazorpayGateway] = Depends(get_gateway),
    redis: Optional[Redis] = Depends(get_redis),
    rlock: Optional[Redlock] = Depends(get_redlock),
    notifier=Depends(get_notifier),
) -> CheckoutService:
    """获取结算服务实例（依赖注入）"""
    return CheckoutService(db=db, gateway=gateway, redis=redis, rlock=rlock, notifier=notifier)


# 常用的依赖注入别名
CurrentUserDep = Depends(get_current_user)
AdminDep = Depends(require_admin)
CheckoutServiceDep = Depends(get_checkout_service)
