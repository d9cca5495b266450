"""
认证服务 - 对接外部身份服务（Supabase Auth）

密码校验与会话签发都由身份服务完成，本服务只负责把身份映射为本地账户。
"""
import asyncio
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import Unauthorized, ValidationFailed
from banana_studio.models.account import Account
from banana_studio.services.ledger_service import LedgerService

logger = get_logger(__name__)


@dataclass
class Identity:
    """身份服务返回的用户"""
    id: str
    name: str
    email: Optional[str] = None
    access_token: Optional[str] = None


class SupabaseAuthClient:
    """Supabase Auth (GoTrue) REST 客户端"""

    def __init__(self, http_client: httpx.AsyncClient, supabase_url: str, anon_key: str):
        self.http_client = http_client
        self.base_url = supabase_url.rstrip("/")
        self.anon_key = anon_key

    def _headers(self, access_token: Optional[str] = None) -> dict:
        headers = {"apikey": self.anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _ensure_configured(self) -> None:
        if not self.base_url or not self.anon_key:
            raise Unauthorized("认证服务不可用")

    @staticmethod
    def _to_identity(user: dict, access_token: Optional[str], fallback_name: str = "") -> Identity:
        metadata = user.get("user_metadata") or {}
        email = user.get("email")
        name = metadata.get("name") or fallback_name or (email or "").split("@")[0]
        return Identity(id=user["id"], name=name, email=email, access_token=access_token)

    async def sign_in(self, email: str, password: str) -> Identity:
        self._ensure_configured()
        try:
            response = await self.http_client.post(
                f"{self.base_url}/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"认证服务请求失败: {e}")
            raise Unauthorized("认证服务不可用")

        if response.status_code != 200:
            raise Unauthorized("用户名或密码错误")

        data = response.json()
        user = data.get("user")
        if not user or not user.get("id"):
            raise Unauthorized("用户名或密码错误")
        return self._to_identity(user, data.get("access_token"))

    async def sign_up(self, email: str, password: str, name: str) -> Identity:
        self._ensure_configured()
        try:
            response = await self.http_client.post(
                f"{self.base_url}/auth/v1/signup",
                json={"email": email, "password": password, "data": {"name": name}},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"认证服务请求失败: {e}")
            raise Unauthorized("注册服务不可用")

        if response.status_code >= 400:
            try:
                message = response.json().get("msg")
            except ValueError:
                message = None
            logger.warning(f"注册失败: status={response.status_code}, msg={message}")
            raise Unauthorized(message or "注册失败")

        data = response.json()
        # 开启邮箱确认时直接返回 user 对象，否则返回 session（含 user）
        user = data.get("user") or data
        if not user.get("id"):
            raise Unauthorized("注册失败")
        return self._to_identity(user, data.get("access_token"), fallback_name=name)

    async def get_user(self, access_token: str) -> Identity:
        self._ensure_configured()
        try:
            response = await self.http_client.get(
                f"{self.base_url}/auth/v1/user",
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as e:
            logger.error(f"认证服务请求失败: {e}")
            raise Unauthorized("认证服务不可用")

        if response.status_code != 200:
            raise Unauthorized("登录已失效，请重新登录")
        return self._to_identity(response.json(), access_token)

    async def sign_out(self, access_token: str) -> None:
        self._ensure_configured()
        try:
            await self.http_client.post(
                f"{self.base_url}/auth/v1/logout",
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as e:
            logger.warning(f"退出登录请求失败: {e}")


class AuthService:
    """
    认证服务

    登录 / 注册 / 解析当前账户；账户记录缺失时自动补齐
    """

    def __init__(self, identity_provider, ledger: LedgerService, settings: Settings):
        self.identity_provider = identity_provider
        self.ledger = ledger
        self.email_domain = settings.login_email_domain

    def username_to_email(self, name: str) -> str:
        """显示名转换为登录邮箱：小写并去掉空白"""
        local = re.sub(r"\s+", "", name or "").lower()
        if not local:
            raise ValidationFailed("用户名不能为空")
        return f"{local}@{self.email_domain}"

    async def login(self, name: str, password: str) -> tuple[Account, Optional[str]]:
        """
        登录

        Returns:
            (账户, 访问令牌)
        """
        if not password:
            raise ValidationFailed("密码不能为空")

        identity = await self.identity_provider.sign_in(self.username_to_email(name), password)
        account = await asyncio.to_thread(
            self.ledger.ensure_account, identity.id, identity.name or name.strip()
        )
        logger.info(f"登录成功: account_id={account.id}")
        return account, identity.access_token

    async def register(
        self,
        name: str,
        password: str,
        access_code: Optional[str] = None,
    ) -> tuple[Account, Optional[str]]:
        """
        注册

        Returns:
            (账户, 访问令牌；身份服务要求邮箱确认时为 None)
        """
        name = (name or "").strip()
        if not password:
            raise ValidationFailed("密码不能为空")

        identity = await self.identity_provider.sign_up(self.username_to_email(name), password, name)
        account = await asyncio.to_thread(
            self.ledger.register_account, identity.id, name, access_code
        )
        return account, identity.access_token

    async def current_account(self, access_token: Optional[str]) -> Account:
        """
        根据访问令牌解析当前账户

        Raises:
            Unauthorized: 未提供令牌或令牌无效
        """
        if not access_token:
            raise Unauthorized()
        identity = await self.identity_provider.get_user(access_token)
        return await asyncio.to_thread(self.ledger.ensure_account, identity.id, identity.name)

    async def logout(self, access_token: Optional[str]) -> None:
        if access_token:
            await self.identity_provider.sign_out(access_token)
