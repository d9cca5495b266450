"""
测试配置
"""
import asyncio
import os
import sys
import uuid

import pytest

# 添加 src 目录到 Python 路径
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# 设置测试环境变量（必须在导入应用前）
os.environ["DATABASE_URL"] = "sqlite:///./data/test_banana_studio.db"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["STORAGE_DIR"] = "./data/test_static"

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from banana_studio.core.config import Settings
from banana_studio.core.errors import ModelUnavailable, StorageFailed, Unauthorized
from banana_studio.models.account import Account, ROLE_ADMIN, ROLE_USER
from banana_studio.services import CatalogService, LedgerService, ModerationService
from banana_studio.services.auth_service import Identity
from banana_studio.services.image_model import ImagePayload
from banana_studio.services.storage_service import ObjectStore

# 1x1 PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


class FakeIdentityProvider:
    """内存版身份服务"""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.tokens: dict[str, str] = {}

    def issue_token(self, user_id: str, name: str) -> str:
        token = f"token-{uuid.uuid4().hex}"
        self.users.setdefault(f"{user_id}@direct", {"id": user_id, "name": name, "password": None})
        self.tokens[token] = user_id
        return token

    def _identity(self, user: dict, token: str):
        return Identity(id=user["id"], name=user["name"], access_token=token)

    async def sign_up(self, email: str, password: str, name: str):
        if email in self.users:
            raise Unauthorized("User already registered")
        user = {"id": uuid.uuid4().hex, "name": name, "password": password}
        self.users[email] = user
        token = f"token-{uuid.uuid4().hex}"
        self.tokens[token] = user["id"]
        return self._identity(user, token)

    async def sign_in(self, email: str, password: str):
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise Unauthorized("用户名或密码错误")
        token = f"token-{uuid.uuid4().hex}"
        self.tokens[token] = user["id"]
        return self._identity(user, token)

    async def get_user(self, access_token: str):
        user_id = self.tokens.get(access_token)
        if user_id is None:
            raise Unauthorized("登录已失效，请重新登录")
        user = next(u for u in self.users.values() if u["id"] == user_id)
        return self._identity(user, access_token)

    async def sign_out(self, access_token: str) -> None:
        self.tokens.pop(access_token, None)


class FakeImageModel:
    """
    按脚本返回结果的生图模型

    脚本动作: image / none / error / unavailable / hang
    """

    def __init__(self, script=None, configured: bool = True):
        self.script = list(script or [])
        self.configured = configured
        self.calls: list[dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, prompt, aspect_ratio, quality_tier, reference_images=None):
        index = len(self.calls)
        self.calls.append(
            {
                "prompt": prompt,
                "aspect_ratio": aspect_ratio,
                "quality_tier": quality_tier,
                "reference_images": list(reference_images or []),
            }
        )
        action = self.script.pop(0) if self.script else "image"
        if action == "none":
            return None
        if action == "error":
            raise RuntimeError("model exploded")
        if action == "unavailable":
            raise ModelUnavailable()
        if action == "hang":
            await asyncio.sleep(3600)
        # 每张图带上序号，便于校验结果顺序
        return ImagePayload(data=PNG_BYTES + bytes([index]), mime_type="image/png")


class MemoryObjectStore(ObjectStore):
    """内存版对象存储，可指定第 N 次上传失败"""

    def __init__(self, fail_on=None):
        self.objects: dict[str, bytes] = {}
        self.fail_on = set(fail_on or [])
        self.upload_count = 0

    async def upload(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        self.upload_count += 1
        if self.upload_count in self.fail_on:
            raise StorageFailed()
        self.objects[key] = data
        return f"https://cdn.test/{key}"


@pytest.fixture
def settings(tmp_path):
    """测试配置（不读取 .env）"""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        gemini_api_key="test-key",
        gemini_timeout_seconds=0.2,
        storage_dir=str(tmp_path / "static"),
        public_base_url="http://testserver",
        supabase_url="",
        supabase_anon_key="",
    )


@pytest.fixture
def test_db():
    """测试数据库 fixture（内存 SQLite，跨线程共享同一连接）"""
    import banana_studio.models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def ledger(test_db, settings):
    return LedgerService(test_db, settings)


@pytest.fixture
def moderation(test_db):
    return ModerationService(test_db)


@pytest.fixture
def catalog(test_db, settings, moderation):
    return CatalogService(test_db, settings, moderation)


@pytest.fixture
def make_account(ledger):
    """创建账户的工厂"""

    def _make(credits: int = 3, role: str = ROLE_USER, name: str = None) -> Account:
        account_id = uuid.uuid4().hex
        account = ledger.ensure_account(account_id, name or f"user-{account_id[:6]}")
        if role == ROLE_ADMIN or credits != account.credits:
            with Session(ledger.engine) as session:
                row = session.get(Account, account_id)
                row.role = role
                row.credits = credits
                session.commit()
                session.refresh(row)
                return row
        return account

    return _make


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()
