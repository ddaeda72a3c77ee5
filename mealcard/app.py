"""
校园餐卡后端服务 - 主应用入口
提供餐厅订阅、餐次核销与学生钱包的后端API服务

主要功能模块：
- 订阅账本（订阅、扣餐、转赠）
- 学生钱包（充值、互转、点餐扣费）
- 餐厅订单处理
- 流水审计与一致性检查

技术栈：FastAPI + DuckDB + JWT认证
"""

import logging
from contextlib import asynccontextmanager

import duckdb
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_router
from .config.settings import settings
from .core.database import DatabaseManager, db_manager, get_db
from .core.error_handler import (
    application_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import BaseApplicationError, StorageError
from .core.log_config import setup_logging
from .schemas.common import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    setup_logging()
    # 启动时初始化数据库，失败不阻止启动，请求时会再次尝试
    try:
        db_manager.init_database()
        logger.info("database initialized at %s", db_manager.db_path)
    except (StorageError, duckdb.Error) as e:
        logger.error("database initialization failed: %s", e)

    yield

    db_manager.close()


def create_app() -> FastAPI:
    """创建FastAPI应用"""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="校园餐卡订阅与钱包系统API",
        debug=settings.debug,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册异常处理器
    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse)
    def health_check(db: DatabaseManager = Depends(get_db)):
        try:
            db.get_connection().execute("SELECT 1").fetchone()
            return {
                "status": "healthy",
                "version": settings.api_version,
                "database": "connected"
            }
        except (StorageError, duckdb.Error) as e:
            return {
                "status": "unhealthy",
                "version": settings.api_version,
                "database": f"error: {e}"
            }

    @app.get("/")
    async def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "description": "校园餐卡订阅与钱包系统API"
        }

    return app


# 应用实例
app = create_app()
