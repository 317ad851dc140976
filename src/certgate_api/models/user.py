"""证书身份用户模型。"""

from typing import Any

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from certgate_api.models.base import Base, TimestampMixin

# PostgreSQL 使用 JSONB，本地 sqlite 开发库退化为 JSON。
InfoDocument = JSON().with_variant(JSONB(), "postgresql")


class User(Base, TimestampMixin):
    """用户实体，主键由客户端证书派生，创建后不可变。"""

    __tablename__ = "users"

    # SHA-256(base64(证书 DER)) 的小写十六进制。
    id: Mapped[str] = mapped_column(String(64), primary_key=True, comment="证书派生用户 ID。")
    cert: Mapped[str] = mapped_column(Text, nullable=False, comment="客户端证书 base64。")
    info: Mapped[dict[str, Any]] = mapped_column(InfoDocument, nullable=False, default=dict, comment="用户 info 文档。")
    # 乐观并发版本号，每次 info 写入递增。
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, comment="info 版本号。")


class UserAlias(Base, TimestampMixin):
    """用户别名，别名本身即主键，保证全目录唯一。"""

    __tablename__ = "user_aliases"

    alias: Mapped[str] = mapped_column(String(128), primary_key=True, comment="别名。")
    # 逻辑关联 users.id，不声明数据库外键。
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True, comment="用户 ID。")
