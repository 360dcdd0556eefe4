"""支付相关的 Celery 任务"""

import logging

from celery_app import app
from booknest.services.checkout_service import CheckoutService
from tasks.worker_context import get_redis, get_session_factory

logger = logging.getLogger(__name__)


@app.task(name='tasks.payments.expire_stale_orders')
def expire_stale_orders(batch_size: int = 500, older_than_minutes: int = None):
    """取消超时未支付的在线支付订单

    Args:
        batch_size: 批处理大小，默认500条
        older_than_minutes: 超时阈值（分钟），默认使用配置值

    Returns:
        处理结果描述
    """
    db = get_session_factory()()
    try:
        service = CheckoutService(db, redis=get_redis())
        count = service.expire_stale_orders(older_than_minutes, batch_size)
        result = f"Expired {count} stale pending order(s)"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"Stale order expiry task failed: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


__all__ = [
    'expire_stale_orders',
]
