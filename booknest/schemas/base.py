from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """前端约定使用 camelCase 字段名"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class BaseResponse(CamelModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(
        "healthy",
        description="服务状态"
    )
    service: str = Field(
        "booknest-checkout",
        description="服务名称"
    )
    version: str = Field(
        "1.0.0",
        description="服务版本"
    )


class APIInfoResponse(BaseModel):
    """API信息响应"""
    message: str = Field(
        "Welcome to BookNest API",
        description="欢迎信息"
    )
    docs: str = Field(
        "/docs",
        description="API文档路径"
    )
    health: str = Field(
        "/health",
        description="健康检查路径"
    )
