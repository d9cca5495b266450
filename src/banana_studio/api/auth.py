"""
账户 API 路由 - 注册 / 登录 / 退出 / 当前账户
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from banana_studio.api.deps import (
    account_to_response,
    get_auth_service,
    get_bearer_token,
    get_current_account,
)
from banana_studio.models.account import Account
from banana_studio.services import AuthService

router = APIRouter(prefix="/auth", tags=["账户"])


# ============ 请求/响应模型 ============

class LoginRequest(BaseModel):
    """登录请求"""
    name: str
    password: str


class RegisterRequest(BaseModel):
    """注册请求"""
    name: str
    password: str
    access_code: Optional[str] = None


# ============ API 接口 ============

@router.post("/register")
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """注册（访问码正确时为管理员）"""
    account, token = await auth_service.register(
        name=request.name,
        password=request.password,
        access_code=request.access_code,
    )
    return {"user": account_to_response(account), "access_token": token}


@router.post("/login")
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """登录"""
    account, token = await auth_service.login(request.name, request.password)
    return {"user": account_to_response(account), "access_token": token}


@router.post("/logout")
async def logout(
    token: Optional[str] = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
):
    """退出登录"""
    await auth_service.logout(token)
    return {"status": "ok"}


@router.get("/me")
async def me(account: Account = Depends(get_current_account)):
    """当前账户（含积分余额）"""
    return account_to_response(account)
