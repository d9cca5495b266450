"""
生图模型客户端 - Gemini generateContent 接口封装

响应按显式的数据结构解析，找不到图片时返回 None（由调用方跳过），
不会因为响应结构异常而抛错。
"""
import base64
import binascii
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import ModelUnavailable

logger = get_logger(__name__)

# 清晰度档位 -> 模型 imageSize 参数
QUALITY_TIER_SIZES = {
    "standard": "1K",
    "high": "2K",
    "ultra": "4K",
}


@dataclass
class ImagePayload:
    """二进制图片及其类型（参考图和生成结果共用）"""

    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


# ============ 响应结构 ============

class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InlineData(_Schema):
    mime_type: str = Field(default="image/png", alias="mimeType")
    data: str = ""


class Part(_Schema):
    text: Optional[str] = None
    inline_data: Optional[InlineData] = Field(default=None, alias="inlineData")


class Content(_Schema):
    parts: list[Part] = []


class Candidate(_Schema):
    content: Optional[Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")


class GenerateContentResponse(_Schema):
    candidates: list[Candidate] = []


def extract_first_image(payload: object) -> Optional[ImagePayload]:
    """
    从模型响应中取出第一张内联图片

    结构不符合预期、没有图片或 base64 无法解码时都返回 None
    """
    try:
        response = GenerateContentResponse.model_validate(payload)
    except ValidationError:
        logger.warning("模型响应结构无法解析，跳过")
        return None

    for candidate in response.candidates:
        if candidate.content is None:
            continue
        for part in candidate.content.parts:
            inline = part.inline_data
            if inline is None or not inline.data:
                continue
            if not inline.mime_type.startswith("image/"):
                continue
            try:
                data = base64.b64decode(inline.data, validate=True)
            except (binascii.Error, ValueError):
                logger.warning("模型返回的图片数据无法解码，跳过")
                continue
            return ImagePayload(data=data, mime_type=inline.mime_type)

    return None


class GeminiImageClient:
    """
    Gemini 生图客户端

    每次调用生成一张图片；HTTP 客户端由应用入口创建并注入
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self.http_client = http_client
        self.api_key = settings.gemini_api_key
        self.base_url = settings.gemini_base_url.rstrip("/")
        self.model = settings.gemini_model
        self.timeout = settings.gemini_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        prompt: str,
        aspect_ratio: str,
        quality_tier: str,
        reference_images: Optional[list[ImagePayload]] = None,
    ) -> Optional[ImagePayload]:
        """
        调用模型生成一张图片

        Args:
            prompt: 图片生成Prompt
            aspect_ratio: 图片比例
            quality_tier: 清晰度档位 standard/high/ultra
            reference_images: 参考图

        Returns:
            生成的图片；响应中没有图片时返回 None

        Raises:
            ModelUnavailable: 未配置 API Key 或鉴权失败
            httpx.HTTPError: 其他网络/接口错误
        """
        if not self.is_configured:
            raise ModelUnavailable("生图服务未配置 API Key")

        parts: list[dict] = [
            {"inlineData": {"mimeType": ref.mime_type, "data": ref.to_base64()}}
            for ref in reference_images or []
        ]
        parts.append({"text": prompt})

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {
                    "aspectRatio": aspect_ratio,
                    "imageSize": QUALITY_TIER_SIZES.get(quality_tier, "1K"),
                },
            },
        }

        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        response = await self.http_client.post(
            url,
            json=payload,
            headers={"x-goog-api-key": self.api_key},
            timeout=self.timeout,
        )

        if response.status_code in (401, 403):
            logger.error(f"生图服务鉴权失败: status={response.status_code}")
            raise ModelUnavailable("生图服务鉴权失败，请检查 API Key 与计费设置")
        response.raise_for_status()

        return extract_first_image(response.json())
