"""
对象存储服务 - 生成图片的持久化

local: 写入本地静态目录，由 FastAPI StaticFiles 对外提供
supabase: 上传到 Supabase Storage 公共 bucket
"""
import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import StorageFailed

logger = get_logger(__name__)

_MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}


def build_object_key(account_id: str, mime_type: str = "image/png") -> str:
    """按账户分目录，时间戳 + 随机串避免同一毫秒内的冲突"""
    ext = _MIME_EXTENSIONS.get(mime_type, ".png")
    return f"{account_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


class ObjectStore(ABC):
    """对象存储接口"""

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        """
        上传对象

        Returns:
            公开访问 URL

        Raises:
            StorageFailed: 上传失败
        """


class LocalObjectStore(ObjectStore):
    """本地文件存储"""

    def __init__(self, root_dir: str, public_base_url: str):
        self.root_dir = Path(root_dir)
        self.generated_dir = self.root_dir / "generated"
        self.public_base_url = public_base_url.rstrip("/")

    def _target_path(self, key: str) -> Path:
        target = (self.generated_dir / key).resolve()
        if self.generated_dir.resolve() not in target.parents:
            raise StorageFailed("非法的存储路径")
        return target

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def upload(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        target = self._target_path(key)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            logger.error(f"写入本地存储失败: key={key}, error={e}")
            raise StorageFailed() from e
        return f"{self.public_base_url}/static/generated/{key}"


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        supabase_url: str,
        service_role_key: str,
        bucket: str = "images",
    ):
        self.http_client = http_client
        self.base_url = supabase_url.rstrip("/")
        self.service_role_key = service_role_key
        self.bucket = bucket

    async def upload(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"
        headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
            "Content-Type": content_type,
            "x-upsert": "false",
        }
        try:
            response = await self.http_client.post(url, content=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"上传到 Supabase Storage 失败: key={key}, error={e}")
            raise StorageFailed() from e

        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"


def create_object_store(settings: Settings, http_client: httpx.AsyncClient) -> ObjectStore:
    """根据配置创建对象存储"""
    if settings.storage_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise ValueError("使用 Supabase 存储需要配置 SUPABASE_URL 和 SUPABASE_SERVICE_ROLE_KEY")
        return SupabaseObjectStore(
            http_client=http_client,
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            bucket=settings.supabase_bucket,
        )
    return LocalObjectStore(settings.storage_dir, settings.public_base_url)
