"""
路由依赖 - 从 app.state 取出应用入口创建的服务实例，解析当前账户
"""
from typing import Optional

from fastapi import Depends, Header, Request

from banana_studio.core.errors import Unauthorized
from banana_studio.models.account import Account
from banana_studio.services import (
    AuthService,
    CatalogService,
    GenerationService,
    LedgerService,
    ModerationService,
)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_moderation_service(request: Request) -> ModerationService:
    return request.app.state.moderation_service


def get_bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """从 Authorization: Bearer <token> 取出访问令牌"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_account(
    token: Optional[str] = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> Account:
    """必须登录"""
    return await auth_service.current_account(token)


async def get_optional_account(
    token: Optional[str] = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[Account]:
    """可选登录：未登录或令牌无效时返回 None"""
    if not token:
        return None
    try:
        return await auth_service.current_account(token)
    except Unauthorized:
        return None


def account_to_response(account: Account) -> dict:
    """将 Account 转换为响应字典"""
    return {
        "id": account.id,
        "name": account.name,
        "role": account.role,
        "credits": account.credits,
        "unlimited": account.is_admin,
        "avatar": account.avatar_url,
    }
