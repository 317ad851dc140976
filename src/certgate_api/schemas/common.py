"""全局通用结构。

用于定义统一错误响应结构，便于在线接口文档展示与联调。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力。"""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ErrorResponse(BaseSchema):
    """统一错误响应。"""

    status_code: int = Field(alias="statusCode", description="HTTP 状态码。")
    message: str = Field(description="人类可读错误信息。")
    stack: str | None = Field(default=None, description="错误堆栈，仅在开启 include_error_stack 时返回。")
    extra: Any = Field(default=None, description="可选扩展错误细节。")
