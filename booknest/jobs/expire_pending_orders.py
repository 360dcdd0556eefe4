"""超时未支付订单清理本地执行脚本"""

import argparse
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from booknest.core.config import settings
from booknest.core.redis import create_redis
from booknest.db.session import create_db_engine, create_session_factory
from booknest.models.order import Order, PaymentMethod, PaymentStatus
from booknest.services.checkout_service import CheckoutService

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def count_stale_orders(db, older_than_minutes: int) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    return db.execute(
        select(func.count())
        .select_from(Order)
        .where(
            Order.payment_method == PaymentMethod.GATEWAY,
            Order.payment_status == PaymentStatus.PENDING,
            Order.created_at <= cutoff,
        )
    ).scalar_one()


def run_expiry(session_factory, batch_size: int = 500, older_than_minutes: int = None, dry_run: bool = False) -> int:
    """执行超时订单清理

    Args:
        session_factory: 数据库会话工厂
        batch_size: 批处理大小
        older_than_minutes: 超时阈值（分钟）
        dry_run: 是否为试运行模式（只统计，不修改订单）
    """
    minutes = older_than_minutes if older_than_minutes is not None else settings.PENDING_ORDER_TTL_MINUTES
    db = session_factory()
    try:
        if dry_run:
            count = count_stale_orders(db, minutes)
            logger.info(f"Dry run: {count} stale pending order(s) would be cancelled")
            return count

        service = CheckoutService(db, redis=create_redis(settings))
        count = service.expire_stale_orders(minutes, batch_size)
        logger.info(f"Expiry finished: {count} stale pending order(s) cancelled")
        return count
    except Exception as e:
        logger.error(f"Expiry run failed: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description='Cancel gateway orders left unpaid past the TTL')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=500,
        help='批处理大小 (默认: 500)'
    )
    parser.add_argument(
        '--older-than',
        type=int,
        default=None,
        help=f'超时阈值（分钟，默认: {settings.PENDING_ORDER_TTL_MINUTES}）'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    session_factory = create_session_factory(create_db_engine(settings.database_url))
    try:
        result = run_expiry(session_factory, args.batch_size, args.older_than, args.dry_run)
        if args.dry_run:
            print(f"📊 Dry run: {result} stale order(s) found")
        else:
            print(f"✅ Done: {result} order(s) cancelled")
    except Exception as e:
        print(f"❌ Failed: {str(e)}")
        return 1

    return 0


if __name__ == "__main__":
    exit(main())
