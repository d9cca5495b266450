"""
模板 API 路由 - 保存作品、公开画廊、我的作品
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from banana_studio.api.deps import (
    get_catalog_service,
    get_current_account,
    get_optional_account,
)
from banana_studio.models.account import Account
from banana_studio.models.template import Template
from banana_studio.services import CatalogService, TemplatePage

router = APIRouter(prefix="/templates", tags=["模板"])


# ============ 请求/响应模型 ============

class CreateTemplateRequest(BaseModel):
    """保存模板请求"""
    title: str
    prompt: str
    image_url: str
    aspect_ratio: Literal["1:1", "3:4", "4:3", "9:16", "16:9"] = "1:1"
    reference_images: list[str] = []
    is_published: bool = True
    author: Optional[str] = None


def template_to_response(template: Template) -> dict:
    """将 Template 转换为响应字典"""
    return {
        "id": template.id,
        "title": template.title,
        "prompt": template.prompt,
        "aspect_ratio": template.aspect_ratio,
        "image_url": template.image_url,
        "reference_images": template.reference_image_list(),
        "author": template.author,
        "owner_id": template.owner_id,
        "is_published": template.is_published,
        "status": template.effective_status,
        "created_at": template.created_at.isoformat() if template.created_at else None,
    }


def page_to_response(page: TemplatePage) -> dict:
    return {
        "items": [template_to_response(t) for t in page.items],
        "page": page.page,
        "page_size": page.page_size,
        "has_more": page.has_more,
    }


# ============ API 接口 ============

@router.post("")
async def create_template(
    request: CreateTemplateRequest,
    account: Account = Depends(get_current_account),
    catalog_service: CatalogService = Depends(get_catalog_service),
):
    """保存生成结果为模板（非管理员进入待审核）"""
    template = catalog_service.create_template(
        actor=account,
        title=request.title,
        prompt=request.prompt,
        image_url=request.image_url,
        aspect_ratio=request.aspect_ratio,
        reference_images=request.reference_images,
        is_published=request.is_published,
        author=request.author,
    )
    return template_to_response(template)


@router.get("")
async def list_public_templates(
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    q: Optional[str] = None,
    catalog_service: CatalogService = Depends(get_catalog_service),
):
    """公开画廊"""
    return page_to_response(catalog_service.list_public(page=page, page_size=page_size, query=q))


@router.get("/mine")
async def list_my_templates(
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    q: Optional[str] = None,
    account: Account = Depends(get_current_account),
    catalog_service: CatalogService = Depends(get_catalog_service),
):
    """我的作品（含私有、待审核、已拒绝）"""
    return page_to_response(
        catalog_service.list_personal(account, page=page, page_size=page_size, query=q)
    )


@router.get("/{template_id:int}")
async def get_template(
    template_id: int,
    account: Optional[Account] = Depends(get_optional_account),
    catalog_service: CatalogService = Depends(get_catalog_service),
):
    """模板详情"""
    return template_to_response(catalog_service.get_template(template_id, viewer=account))
