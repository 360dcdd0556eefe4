from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# PostgreSQL 下使用 JSONB，其他方言（如测试用 SQLite）退化为通用 JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")
