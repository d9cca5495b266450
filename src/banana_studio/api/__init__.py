"""
API 路由模块
"""
from fastapi import APIRouter
from .auth import router as auth_router
from .generations import router as generations_router
from .templates import router as templates_router
from .admin import router as admin_router

# 创建主路由
api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router)
api_router.include_router(generations_router)
api_router.include_router(templates_router)
api_router.include_router(admin_router)

__all__ = ["api_router"]
