"""Redis 客户端工厂模块

客户端不在导入时创建，由应用生命周期（main.lifespan）或 Celery 任务显式构造。
"""

from redis import Redis
from redlock import Redlock

from booknest.core.config import Settings


def create_redis(settings: Settings) -> Redis:
    """创建同步 Redis 客户端"""
    return Redis.from_url(settings.redis_url, decode_responses=True)


def create_redlock(settings: Settings) -> Redlock:
    """根据配置动态创建 Redlock 实例"""
    if "," in settings.REDIS_HOSTS:  # 多实例模式
        servers = [
            {"host": host.strip(), "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
            for host in settings.REDIS_HOSTS.split(",")
            if host.strip()
        ]
    else:  # 单实例模式
        servers = [
            {"host": settings.REDIS_HOST, "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        ]

    return Redlock(servers)


__all__ = [
    "create_redis",
    "create_redlock",
]
