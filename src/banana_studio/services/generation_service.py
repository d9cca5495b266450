"""
图片生成服务 - 积分计费的生成流程编排

流程：校验身份 -> 计算费用并冻结积分 -> 并发调用模型 -> 逐张上传存储 -> 结算扣费
单张失败（无图片 / 超时 / 上传失败）只跳过该张，全部失败才整体报错且不扣费。
"""
import asyncio
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel, Field

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import (
    GenerationFailed,
    InsufficientCredits,
    ModelUnavailable,
    Unauthorized,
    ValidationFailed,
)
from banana_studio.models.account import Account
from banana_studio.services.image_model import ImagePayload
from banana_studio.services.ledger_service import (
    LedgerService,
    calculate_cost,
    clamp_image_count,
    per_image_cost,
)
from banana_studio.services.storage_service import ObjectStore, build_object_key

logger = get_logger(__name__)

AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
QualityTier = Literal["standard", "high", "ultra"]

_DATA_URL_PATTERN = re.compile(r"^data:(image/[\w.+-]+);base64$")


class GenerationRequest(BaseModel):
    """生成请求（不落库）"""
    prompt: str
    aspect_ratio: AspectRatio = "1:1"
    quality_tier: QualityTier = "standard"
    image_count: int = 1
    reference_images: list[str] = Field(default_factory=list, description="参考图，data URL 或 base64")
    reference_image: Optional[str] = Field(default=None, description="兼容字段，单张参考图")

    def all_reference_images(self) -> list[str]:
        images = list(self.reference_images)
        if self.reference_image:
            images.insert(0, self.reference_image)
        return images


@dataclass
class GeneratedArtifact:
    """一张生成结果：base64 data URL + 持久化后的公开 URL"""
    base64: str
    url: str


@dataclass
class GenerationResult:
    """生成结果"""
    images: list[GeneratedArtifact]
    requested: int
    cost: int
    charged: int
    remaining_credits: Optional[int]

    @property
    def succeeded(self) -> int:
        return len(self.images)

    @property
    def outcome(self) -> str:
        return "full" if self.succeeded == self.requested else "partial"


@dataclass
class _BranchOutcome:
    artifact: Optional[GeneratedArtifact] = None
    reason: str = ""


def decode_reference_image(value: str) -> ImagePayload:
    """
    解析参考图

    支持 data:image/...;base64,xxx 以及纯 base64（按 PNG 处理）

    Raises:
        ValidationFailed: 编码无效
    """
    if not value or not value.strip():
        raise ValidationFailed("参考图不能为空")

    mime_type = "image/png"
    encoded = value.strip()
    if encoded.startswith("data:"):
        header, sep, encoded = encoded.partition(",")
        match = _DATA_URL_PATTERN.match(header)
        if not sep or match is None:
            raise ValidationFailed("参考图格式无效，应为 base64 图片")
        mime_type = match.group(1)

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("参考图 base64 编码无效")
    if not data:
        raise ValidationFailed("参考图不能为空")

    return ImagePayload(data=data, mime_type=mime_type)


class GenerationService:
    """
    图片生成服务

    依赖全部通过构造函数注入：积分服务、生图模型、对象存储
    """

    def __init__(
        self,
        ledger: LedgerService,
        image_model,
        object_store: ObjectStore,
        settings: Settings,
    ):
        self.ledger = ledger
        self.image_model = image_model
        self.object_store = object_store
        self.charge_full_cost_on_partial = settings.charge_full_cost_on_partial
        self.call_timeout = settings.gemini_timeout_seconds

    def quote(self, quality_tier: str, image_count: int) -> dict:
        """报价（无副作用）"""
        count = clamp_image_count(image_count)
        return {
            "quality_tier": quality_tier,
            "image_count": count,
            "per_image": per_image_cost(quality_tier),
            "cost": calculate_cost(quality_tier, count),
        }

    async def generate(
        self,
        account: Optional[Account],
        request: GenerationRequest,
    ) -> GenerationResult:
        """
        执行一次生成请求

        Args:
            account: 当前账户（未登录为 None）
            request: 生成请求

        Returns:
            GenerationResult，图片顺序与模型调用发起顺序一致

        Raises:
            Unauthorized / ValidationFailed / InsufficientCredits /
            ModelUnavailable / GenerationFailed
        """
        # 1. 校验身份与参数
        if account is None:
            raise Unauthorized()

        prompt = (request.prompt or "").strip()
        if not prompt:
            raise ValidationFailed("Prompt 不能为空")

        image_count = clamp_image_count(request.image_count)
        references = [decode_reference_image(v) for v in request.all_reference_images()]

        # 2. 计算费用并校验余额
        cost = calculate_cost(request.quality_tier, image_count)
        allowed = await asyncio.to_thread(self.ledger.authorize, account.id, cost)
        if not allowed:
            balance = await asyncio.to_thread(self.ledger.check_balance, account.id)
            available = self.ledger.available_credits(balance)
            logger.info(f"积分不足: account_id={account.id}, needed={cost}, available={available}")
            raise InsufficientCredits(needed=cost, available=available)

        if not self.image_model.is_configured:
            raise ModelUnavailable("生图服务未配置 API Key")

        await asyncio.to_thread(self.ledger.hold, account.id, cost)
        logger.info(
            f"开始生成: account_id={account.id}, count={image_count}, "
            f"tier={request.quality_tier}, ratio={request.aspect_ratio}, cost={cost}"
        )

        settled = False
        try:
            # 3. 并发调用模型，每个分支独立上传
            outcomes = await asyncio.gather(
                *[
                    self._run_branch(
                        index=index,
                        account_id=account.id,
                        prompt=prompt,
                        request=request,
                        references=references,
                    )
                    for index in range(image_count)
                ]
            )

            # 4. 汇总结果
            artifacts = [o.artifact for o in outcomes if o.artifact is not None]
            if not artifacts:
                reasons = [o.reason for o in outcomes]
                logger.error(f"生成全部失败: account_id={account.id}, reasons={reasons}")
                if all(reason == "unavailable" for reason in reasons):
                    raise ModelUnavailable()
                raise GenerationFailed()

            # 5. 结算（部分成功默认仍按请求张数全额扣费）
            if self.charge_full_cost_on_partial:
                charge = cost
            else:
                charge = per_image_cost(request.quality_tier) * len(artifacts)

            remaining: Optional[int] = None
            try:
                remaining = await asyncio.to_thread(self.ledger.settle, account.id, cost, charge)
                settled = True
            except Exception:
                # 扣费失败不回滚已生成的图片
                logger.error(f"积分结算失败: account_id={account.id}, charge={charge}", exc_info=True)

            charged = charge if settled else 0
            logger.info(
                f"生成完成: account_id={account.id}, succeeded={len(artifacts)}/{image_count}, "
                f"charged={charged}, remaining={remaining}"
            )
            return GenerationResult(
                images=artifacts,
                requested=image_count,
                cost=cost,
                charged=charged,
                remaining_credits=remaining,
            )
        finally:
            if not settled:
                await self._release_hold(account.id, cost)

    async def _run_branch(
        self,
        index: int,
        account_id: str,
        prompt: str,
        request: GenerationRequest,
        references: list[ImagePayload],
    ) -> _BranchOutcome:
        """单张图片：调用模型 -> 上传存储，任何一步失败都只跳过该张"""
        try:
            image = await asyncio.wait_for(
                self.image_model.generate(
                    prompt=prompt,
                    aspect_ratio=request.aspect_ratio,
                    quality_tier=request.quality_tier,
                    reference_images=references,
                ),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"第 {index + 1} 张生成超时，跳过")
            return _BranchOutcome(reason="timeout")
        except ModelUnavailable as e:
            logger.warning(f"第 {index + 1} 张生成失败，模型不可用: {e.message}")
            return _BranchOutcome(reason="unavailable")
        except Exception as e:
            logger.warning(f"第 {index + 1} 张生成失败，跳过: {e}")
            return _BranchOutcome(reason="model_error")

        if image is None:
            logger.warning(f"第 {index + 1} 张模型未返回图片，跳过")
            return _BranchOutcome(reason="no_image")

        key = build_object_key(account_id, image.mime_type)
        try:
            url = await self.object_store.upload(key, image.data, image.mime_type)
        except Exception as e:
            logger.warning(f"第 {index + 1} 张上传存储失败，跳过: {e}")
            return _BranchOutcome(reason="storage")

        return _BranchOutcome(artifact=GeneratedArtifact(base64=image.to_data_url(), url=url))

    async def _release_hold(self, account_id: str, held: int) -> None:
        try:
            await asyncio.to_thread(self.ledger.release, account_id, held)
        except Exception:
            logger.error(f"释放冻结积分失败: account_id={account_id}, held={held}", exc_info=True)
