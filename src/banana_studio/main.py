"""
FastAPI 应用入口

数据库引擎、HTTP 客户端、身份服务、生图模型和对象存储都在 lifespan 中创建，
挂到 app.state 上供路由依赖使用；测试可以通过 create_app 注入替身。
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine

from banana_studio.core import Settings, setup_logging, get_settings, get_logger
from banana_studio.core.database import create_db_engine, init_db
from banana_studio.core.errors import StudioError, ValidationFailed
from banana_studio.api import api_router
from banana_studio.services import (
    AuthService,
    CatalogService,
    GenerationService,
    LedgerService,
    ModerationService,
    SupabaseAuthClient,
)
from banana_studio.services.image_model import GeminiImageClient
from banana_studio.services.storage_service import ObjectStore, create_object_store

# 初始化日志
settings = get_settings()
setup_logging(settings.log_level)

logger = get_logger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    identity_provider=None,
    image_model=None,
    object_store: Optional[ObjectStore] = None,
) -> FastAPI:
    """
    创建应用

    Args:
        app_settings: 配置，默认读取环境变量
        engine: 数据库引擎，默认按 database_url 创建
        identity_provider: 身份服务客户端，默认 Supabase Auth
        image_model: 生图模型客户端，默认 Gemini
        object_store: 对象存储，默认按 storage_backend 创建
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info("🍌 Banana Studio API 启动中...")

        db_engine = engine or create_db_engine(app_settings.database_url)
        init_db(db_engine)
        http_client = httpx.AsyncClient(timeout=30.0)

        ledger_service = LedgerService(db_engine, app_settings)
        moderation_service = ModerationService(db_engine)
        catalog_service = CatalogService(db_engine, app_settings, moderation_service)
        catalog_service.seed_system_templates()
        ledger_service.release_stale_holds()

        app.state.ledger_service = ledger_service
        app.state.moderation_service = moderation_service
        app.state.catalog_service = catalog_service
        app.state.auth_service = AuthService(
            identity_provider or SupabaseAuthClient(
                http_client,
                app_settings.supabase_url,
                app_settings.supabase_anon_key,
            ),
            ledger_service,
            app_settings,
        )
        app.state.generation_service = GenerationService(
            ledger=ledger_service,
            image_model=image_model or GeminiImageClient(http_client, app_settings),
            object_store=object_store or create_object_store(app_settings, http_client),
            settings=app_settings,
        )

        try:
            yield
        finally:
            await http_client.aclose()
            if engine is None:
                db_engine.dispose()
            logger.info("👋 Banana Studio API 关闭")

    app = FastAPI(
        title="Banana Studio API",
        description="模板画廊与积分计费的 AI 生图后端服务",
        version="0.1.0",
        debug=app_settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudioError)
    async def handle_studio_error(request: Request, exc: StudioError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # 只返回出错字段，不回显请求内容
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        error = ValidationFailed(f"请求参数不合法: {', '.join(fields)}" if fields else None)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(f"未处理的异常: {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "服务内部错误"})

    # 注册 API 路由
    app.include_router(api_router)

    # 本地存储的生成图片
    if app_settings.storage_backend == "local":
        static_dir = Path(app_settings.storage_dir)
        static_dir.mkdir(parents=True, exist_ok=True)
        app.mount("/static", StaticFiles(directory=static_dir), name="static")

    @app.get("/")
    async def root():
        """健康检查"""
        return {"status": "ok", "message": "Banana Studio API 运行中"}

    @app.get("/health")
    async def health():
        """健康检查"""
        return {"status": "healthy"}

    return app


app = create_app()


def main() -> None:
    """命令行入口"""
    import uvicorn

    logger.info(f"启动服务: http://{settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "banana_studio.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
