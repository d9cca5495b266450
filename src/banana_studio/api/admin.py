"""
管理员 API - 模板审核与积分发放
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from banana_studio.api.deps import (
    get_catalog_service,
    get_current_account,
    get_ledger_service,
    get_moderation_service,
)
from banana_studio.api.templates import page_to_response, template_to_response
from banana_studio.models.account import Account
from banana_studio.services import CatalogService, LedgerService, ModerationService

router = APIRouter(prefix="/admin", tags=["管理员"])


class GrantCreditsRequest(BaseModel):
    """发放积分请求"""
    amount: int
    note: Optional[str] = None


@router.get("/templates/pending")
async def list_pending_templates(
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    q: Optional[str] = None,
    account: Account = Depends(get_current_account),
    catalog_service: CatalogService = Depends(get_catalog_service),
):
    """待审核队列（非管理员返回空列表）"""
    return page_to_response(
        catalog_service.list_review(account, page=page, page_size=page_size, query=q)
    )


@router.post("/templates/{template_id:int}/approve")
async def approve_template(
    template_id: int,
    account: Account = Depends(get_current_account),
    moderation_service: ModerationService = Depends(get_moderation_service),
):
    """审核通过"""
    return template_to_response(moderation_service.approve(template_id, account))


@router.post("/templates/{template_id:int}/reject")
async def reject_template(
    template_id: int,
    account: Account = Depends(get_current_account),
    moderation_service: ModerationService = Depends(get_moderation_service),
):
    """审核拒绝"""
    return template_to_response(moderation_service.reject(template_id, account))


@router.post("/accounts/{account_id}/credits")
async def grant_credits(
    account_id: str,
    request: GrantCreditsRequest,
    account: Account = Depends(get_current_account),
    ledger_service: LedgerService = Depends(get_ledger_service),
):
    """发放积分"""
    balance = ledger_service.grant(account_id, request.amount, actor=account, note=request.note)
    return {"account_id": account_id, "credits": balance}


@router.post("/accounts/{account_id}/holds/clear")
async def clear_credit_holds(
    account_id: str,
    account: Account = Depends(get_current_account),
    ledger_service: LedgerService = Depends(get_ledger_service),
):
    """清除冻结积分（生成中断遗留）"""
    cleared = ledger_service.clear_holds(account_id, actor=account)
    return {
        "account_id": cleared.id,
        "credits": cleared.credits,
        "reserved_credits": cleared.reserved_credits,
    }
