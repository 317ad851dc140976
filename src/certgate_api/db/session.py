"""数据库引擎与请求级会话。"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from certgate_api.core.config import get_settings


def build_engine(database_url: str) -> Engine:
    """按连接地址创建引擎，sqlite 仅用于本地开发。"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, connect_args={"check_same_thread": False})
    return create_engine(database_url, future=True, pool_pre_ping=True)


engine = build_engine(get_settings().database_url)
# info 写入走目录层的条件更新，会话本身不自动 flush。
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """每个请求一个会话，请求结束即关闭。"""
    with SessionLocal() as db:
        yield db
