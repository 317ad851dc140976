"""接口成功响应结构定义。

字段描述会直接用于 Swagger 展示，便于联调时理解含义。
"""

from typing import Any

from pydantic import Field

from certgate_api.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")


class UserData(BaseSchema):
    """用户完整记录。"""

    id: str = Field(description="证书派生用户 ID（64 位十六进制）。")
    cert: str = Field(description="客户端证书 DER 的 base64 文本。")
    aliases: list[str] = Field(default_factory=list, description="用户别名。")
    info: dict[str, Any] = Field(default_factory=dict, description="用户 info 文档。")


class UserLookupData(BaseSchema):
    """用户公开查询结果。"""

    id: str = Field(description="证书派生用户 ID。")
    aliases: list[str] = Field(default_factory=list, description="用户别名。")
