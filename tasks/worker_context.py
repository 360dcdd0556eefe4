"""Worker 进程内的客户端（首次使用时构造，进程内复用）"""

from functools import lru_cache

from booknest.core.config import settings
from booknest.core.redis import create_redis
from booknest.db.session import create_db_engine, create_session_factory


@lru_cache(maxsize=1)
def get_session_factory():
    return create_session_factory(create_db_engine(settings.database_url))


@lru_cache(maxsize=1)
def get_redis():
    return create_redis(settings)
