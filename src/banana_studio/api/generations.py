"""
图片生成 API
"""
from fastapi import APIRouter, Depends, Query

from banana_studio.api.deps import get_current_account, get_generation_service
from banana_studio.models.account import Account
from banana_studio.services import GenerationRequest, GenerationService
from banana_studio.services.generation_service import QualityTier

router = APIRouter(prefix="/generations", tags=["图片生成"])


@router.post("")
async def create_generation(
    request: GenerationRequest,
    account: Account = Depends(get_current_account),
    generation_service: GenerationService = Depends(get_generation_service),
):
    """
    生成图片

    按清晰度档位和张数扣费；部分图片失败时仍返回成功的图片
    """
    result = await generation_service.generate(account, request)
    return {
        "images": [{"base64": image.base64, "url": image.url} for image in result.images],
        "requested": result.requested,
        "succeeded": result.succeeded,
        "outcome": result.outcome,
        "cost": result.cost,
        "charged": result.charged,
        "remaining_credits": result.remaining_credits,
    }


@router.get("/cost")
async def get_generation_cost(
    quality_tier: QualityTier = "standard",
    image_count: int = Query(default=1),
    generation_service: GenerationService = Depends(get_generation_service),
):
    """费用报价（不校验余额、不扣费）"""
    return generation_service.quote(quality_tier, image_count)
