import os
from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "booknest")

    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    # 逗号分隔时启用多实例 Redlock
    REDIS_HOSTS: str = ""

    # Razorpay 配置
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # 计价配置（与前端结算页保持一致）
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("50")
    FLAT_SHIPPING_FEE: Decimal = Decimal("5")
    TAX_RATE: Decimal = Decimal("0.10")

    # 鉴权配置
    JWT_SECRET: str = "change-me-booknest-jwt-signing-secret"
    JWT_ALGORITHM: str = "HS256"

    # 订单与幂等键过期配置
    PENDING_ORDER_TTL_MINUTES: int = 30
    IDEMPOTENCY_TTL_HOURS: int = 24
    CHECKOUT_LOCK_TTL_MS: int = 15000

    # 邮件通知配置
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    MAIL_FROM: str = "BookNest <no-reply@booknest.local>"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


settings = Settings()
