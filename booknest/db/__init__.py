from sqlalchemy.engine import Engine

from .base import Base, JSONType
from .session import create_db_engine, create_session_factory


def init_db(engine: Engine):
    # 导入模型以注册到 Base.metadata
    import booknest.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


__all__ = ["Base", "JSONType", "create_db_engine", "create_session_factory", "init_db"]
