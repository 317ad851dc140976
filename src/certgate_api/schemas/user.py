"""用户相关请求结构。"""

from typing import Any

from pydantic import BaseModel, Field, StrictBool


class UserCreateRequest(BaseModel):
    """创建用户请求体，证书来自 mTLS 握手，请求体只携带可选别名。"""

    aliases: str | list[str] | None = Field(
        default=None,
        description="单个别名或别名数组。",
        examples=[["alice", "alice-laptop"]],
    )


class UserPatchRequest(BaseModel):
    """更新用户请求体。

    `info` 的解释方式由 Content-Type 决定：
    - application/json-patch+json：RFC6902 操作数组。
    - application/merge-patch+json：只包含变化键的对象，null 表示删除。
    """

    info: dict[str, Any] | list[dict[str, Any]] | None = Field(
        default=None,
        description="info 补丁内容。",
        examples=[{"profile": {"nickname": "ally", "phone": None}}],
    )
    aliases: dict[str, StrictBool] | None = Field(
        default=None,
        description="别名增删：true 保留/新增，false 删除。",
        examples=[{"alice": True, "old-alias": False}],
    )
