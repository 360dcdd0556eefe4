from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text

from booknest.core.config import settings
from booknest.core.exceptions import CheckoutError
from booknest.core.redis import create_redis, create_redlock
from booknest.db.session import create_db_engine, create_session_factory
from booknest.routers import order_router, payment_router
from booknest.schemas.base import APIInfoResponse, HealthCheckResponse
from booknest.services.payment_gateway import RazorpayGateway

import uvicorn

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 应用启动时显式构造所有外部客户端
    logger.info("Starting application...")

    engine = create_db_engine(settings.database_url)
    app.state.session_factory = create_session_factory(engine)

    # 数据库连接检查
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        raise

    # Redis 连接检查
    app.state.redis = create_redis(settings)
    app.state.redlock = create_redlock(settings)
    try:
        app.state.redis.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Application will run without Redis caching")

    if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET:
        app.state.gateway = RazorpayGateway(
            settings.RAZORPAY_KEY_ID,
            settings.RAZORPAY_KEY_SECRET,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
        logger.info("✅ Razorpay gateway configured")
    else:
        app.state.gateway = None
        logger.warning("⚠️  Razorpay keys missing, online payment is disabled")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down application...")
    app.state.redis.close()
    engine.dispose()


# 创建 FastAPI 应用
app = FastAPI(
    title="BookNest Checkout API",
    description="BookNest 订单与支付对账服务：下单、Razorpay 支付校验、库存扣减",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境中应该指定具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(payment_router.router, prefix="/api")
app.include_router(order_router.router, prefix="/api")


# 全局异常处理
@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error(f"Checkout error: {exc.status_code} - {exc.code} - {exc.message}")
    else:
        logger.warning(f"Checkout error: {exc.status_code} - {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.message,
            "code": exc.code
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Invalid request data",
            "code": "validation_error",
            "details": jsonable_errors(exc)
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error"
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """只保留可序列化的校验错误字段"""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# 健康检查端点
@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """健康检查接口"""
    return HealthCheckResponse()


@app.get("/", response_model=APIInfoResponse)
async def read_root():
    """API 根路径"""
    return APIInfoResponse()


if __name__ == "__main__":
    uvicorn.run(
        "booknest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
