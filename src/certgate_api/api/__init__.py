"""路由模块导出集合。"""

from . import health, users

__all__ = ["health", "users"]
