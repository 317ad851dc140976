"""FastAPI 应用入口点。"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from certgate_api.api.router import api_router
from certgate_api.core.config import Settings, get_settings
from certgate_api.db.base import create_schema
from certgate_api.db.session import engine
from certgate_api.exceptions import register_exception_handlers
from certgate_api.middlewares import register_middlewares

logger = logging.getLogger(__name__)


def _setup_logging(settings: Settings) -> None:
    """初始化日志输出格式与级别。"""
    level = logging.WARNING if settings.zone == "test" else settings.log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.database_auto_create:
        logger.info("creating missing tables zone=%s", settings.zone)
        create_schema(engine)
    logger.info("%s started zone=%s prefix=%r", settings.app_name, settings.zone, settings.api_prefix)
    yield


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    settings = get_settings()
    _setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        description=(
            "基于 mTLS 客户端证书的身份服务。\n\n"
            "用户 ID 由客户端证书派生：`sha256(base64(DER))`。\n"
            "证书未链到受信根时仅允许 `POST /users` 注册。\n"
            "错误统一返回：`{statusCode, message, stack?, extra?}`。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "users", "description": "证书用户注册、info 查询与补丁、别名管理。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
