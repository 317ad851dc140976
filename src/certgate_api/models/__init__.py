"""ORM 模型导出集合。"""

from certgate_api.models.user import User, UserAlias

__all__ = [
    "User",
    "UserAlias",
]
