"""
模板数据模型 - Prompt + 图片的创作单元
"""
import json
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

SYSTEM_OWNER = "system"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")


class Template(SQLModel, table=True):
    """
    模板模型

    公开画廊可见 当且仅当 is_published 且审核通过（系统内置模板视为已通过，status 为空）
    """
    __tablename__ = "templates"

    # 主键
    id: Optional[int] = Field(default=None, primary_key=True)

    # 内容
    title: str = Field(index=True, description="模板标题")
    prompt: str = Field(description="生成Prompt")
    aspect_ratio: str = Field(default="1:1", description="图片比例")
    image_url: str = Field(description="主图URL")
    reference_images: Optional[str] = Field(default=None, description="参考图（JSON 数组）")

    # 归属
    author: Optional[str] = Field(default=None, description="作者显示名")
    owner_id: str = Field(index=True, description="所属账户ID，系统模板为 system")

    # 发布与审核
    is_published: bool = Field(default=True, description="用户选择公开/私有")
    status: Optional[str] = Field(
        default=STATUS_PENDING,
        index=True,
        description="审核状态: pending/approved/rejected，系统模板为空"
    )

    # 时间戳（内置模板可能没有）
    created_at: Optional[datetime] = Field(default_factory=datetime.now, description="创建时间")

    @property
    def is_system(self) -> bool:
        return self.owner_id == SYSTEM_OWNER

    @property
    def effective_status(self) -> str:
        """系统模板永久视为已通过"""
        if self.is_system and self.status is None:
            return STATUS_APPROVED
        return self.status or STATUS_PENDING

    @property
    def is_publicly_visible(self) -> bool:
        return bool(self.is_published) and self.effective_status == STATUS_APPROVED

    def reference_image_list(self) -> list[str]:
        if not self.reference_images:
            return []
        try:
            data = json.loads(self.reference_images)
        except json.JSONDecodeError:
            return [self.reference_images]
        return [item for item in data if isinstance(item, str)] if isinstance(data, list) else []
