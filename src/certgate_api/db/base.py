"""数据库基础模型导出。

默认不执行自动建表，数据库结构由迁移脚本维护；
开发环境可通过 CERTGATE_DATABASE_AUTO_CREATE 在启动时建表。
"""

from sqlalchemy.engine import Engine

import certgate_api.models  # noqa: F401
from certgate_api.models.base import Base


def create_schema(bind: Engine) -> None:
    """按 ORM 定义创建缺失的表。"""
    Base.metadata.create_all(bind=bind)


__all__ = ["Base", "create_schema"]
