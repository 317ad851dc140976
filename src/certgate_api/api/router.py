"""顶层路由注册。"""

from fastapi import APIRouter

from . import health, users

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(users.router, prefix="/users")
# 单数形式为兼容旧客户端保留，不在接口文档中重复展示。
api_router.include_router(users.router, prefix="/user", include_in_schema=False)
