"""
模板目录服务 - 模板创建、公开画廊 / 我的作品 / 待审核 三种分页视图
"""
import json
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import and_, func, insert, or_
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import NotFound, ValidationFailed
from banana_studio.models.account import Account
from banana_studio.models.template import (
    ASPECT_RATIOS,
    STATUS_APPROVED,
    STATUS_PENDING,
    SYSTEM_OWNER,
    Template,
)
from banana_studio.services.moderation_service import ModerationService

logger = get_logger(__name__)


# 内置展示模板（owner 为 system，无审核状态，视为已公开）
SYSTEM_TEMPLATES = [
    {
        "title": "Neon Cyber Samurai",
        "prompt": "A close-up portrait of a futuristic samurai with neon glowing armor, rain-slicked streets in the background, cyberpunk aesthetic, high detail, 8k resolution, cinematic lighting, teal and magenta color palette.",
        "aspect_ratio": "3:4",
        "image_url": "https://picsum.photos/600/800?random=1",
    },
    {
        "title": "Ethereal Glass Sculpture",
        "prompt": "A complex geometric sculpture made of iridescent glass, floating in a void, soft studio lighting, caustics, dispersion of light, minimal background, photorealistic.",
        "aspect_ratio": "1:1",
        "image_url": "https://picsum.photos/600/600?random=2",
    },
    {
        "title": "Vaporwave Sunset",
        "prompt": "A retro 80s vaporwave landscape, grid floor, purple mountains, large sun on the horizon, palm trees silhouetted, glitch art aesthetic, grainy texture.",
        "aspect_ratio": "16:9",
        "image_url": "https://picsum.photos/800/450?random=3",
    },
    {
        "title": "Minimalist Architecture",
        "prompt": "White minimalist concrete architecture against a deep blue sky, strong shadows, geometric shapes, brutalist influence, ultra-wide angle shot.",
        "aspect_ratio": "4:3",
        "image_url": "https://picsum.photos/800/600?random=4",
    },
    {
        "title": "Fantasy Forest Spirit",
        "prompt": "A tiny glowing spirit creature resting on a mossy mushroom in an ancient forest, bokeh background, magical sparkles, macro photography, soft warm light.",
        "aspect_ratio": "1:1",
        "image_url": "https://picsum.photos/600/600?random=5",
    },
]


@dataclass
class TemplatePage:
    """分页结果；has_more 仅表示本页已满，可能还有下一页，并非精确总数"""

    items: list[Template]
    page: int
    page_size: int
    has_more: bool


def _is_valid_image_url(url: str) -> bool:
    if url.startswith("data:image/"):
        return True
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


class CatalogService:
    """模板目录服务"""

    def __init__(self, engine: Engine, settings: Settings, moderation: ModerationService):
        self.engine = engine
        self.moderation = moderation
        self.default_page_size = settings.catalog_page_size
        self.max_page_size = settings.catalog_max_page_size

    # ============ 创建 ============

    def create_template(
        self,
        actor: Account,
        title: str,
        prompt: str,
        image_url: str,
        aspect_ratio: str = "1:1",
        reference_images: Optional[list[str]] = None,
        is_published: bool = True,
        author: Optional[str] = None,
    ) -> Template:
        """
        将一次生成结果保存为模板

        Args:
            actor: 当前账户
            title: 模板标题
            prompt: 生成Prompt
            image_url: 主图URL
            aspect_ratio: 图片比例
            reference_images: 参考图列表
            is_published: 是否公开
            author: 作者显示名，默认使用账户名称

        Returns:
            Template 对象，status 由审核状态机决定
        """
        if not title or not title.strip():
            raise ValidationFailed("模板标题不能为空")
        if not prompt or not prompt.strip():
            raise ValidationFailed("Prompt 不能为空")
        if not image_url or not _is_valid_image_url(image_url):
            raise ValidationFailed("图片地址无效")
        if aspect_ratio not in ASPECT_RATIOS:
            raise ValidationFailed(f"不支持的图片比例: {aspect_ratio}")

        status = self.moderation.initial_status(actor)

        with Session(self.engine) as session:
            template = Template(
                title=title.strip(),
                prompt=prompt.strip(),
                aspect_ratio=aspect_ratio,
                image_url=image_url,
                reference_images=json.dumps(reference_images) if reference_images else None,
                author=(author or "").strip() or actor.name,
                owner_id=actor.id,
                is_published=is_published,
                status=status,
            )
            session.add(template)
            session.commit()
            session.refresh(template)

        logger.info(
            f"创建模板: template_id={template.id}, owner={actor.id}, "
            f"published={is_published}, status={status}"
        )
        return template

    # ============ 查询 ============

    def get_template(self, template_id: int, viewer: Optional[Account] = None) -> Template:
        """
        获取模板详情

        公开可见、本人所有或管理员可以查看，否则视为不存在
        """
        with Session(self.engine) as session:
            template = session.get(Template, template_id)

        if template is None:
            raise NotFound("模板不存在")
        if template.is_publicly_visible:
            return template
        if viewer is not None and (viewer.is_admin or viewer.id == template.owner_id):
            return template
        raise NotFound("模板不存在")

    def list_public(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        query: Optional[str] = None,
    ) -> TemplatePage:
        """公开画廊：已发布且审核通过（含系统模板）"""
        condition = and_(
            col(Template.is_published) == True,  # noqa: E712
            or_(
                col(Template.status) == STATUS_APPROVED,
                and_(
                    col(Template.owner_id) == SYSTEM_OWNER,
                    col(Template.status).is_(None),
                ),
            ),
        )
        return self._paginate(condition, page, page_size, query)

    def list_personal(
        self,
        actor: Account,
        page: int = 1,
        page_size: Optional[int] = None,
        query: Optional[str] = None,
    ) -> TemplatePage:
        """我的作品：本人的全部模板，不区分发布与审核状态"""
        return self._paginate(col(Template.owner_id) == actor.id, page, page_size, query)

    def list_review(
        self,
        actor: Optional[Account],
        page: int = 1,
        page_size: Optional[int] = None,
        query: Optional[str] = None,
    ) -> TemplatePage:
        """待审核队列：仅管理员可见，非管理员返回空页"""
        page, page_size = self._normalize_paging(page, page_size)
        if actor is None or not actor.is_admin:
            return TemplatePage(items=[], page=page, page_size=page_size, has_more=False)
        return self._paginate(col(Template.status) == STATUS_PENDING, page, page_size, query)

    def _normalize_paging(self, page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
        page = max(1, page or 1)
        page_size = page_size or self.default_page_size
        page_size = max(1, min(self.max_page_size, page_size))
        return page, page_size

    def _paginate(self, condition, page, page_size, query) -> TemplatePage:
        page, page_size = self._normalize_paging(page, page_size)

        statement = select(Template).where(condition)

        # 标题或 Prompt 模糊搜索（不区分大小写）
        if query and query.strip():
            keyword = query.strip().lower()
            statement = statement.where(
                or_(
                    func.lower(col(Template.title)).contains(keyword, autoescape=True),
                    func.lower(col(Template.prompt)).contains(keyword, autoescape=True),
                )
            )

        statement = (
            statement
            .order_by(col(Template.created_at).desc().nulls_last(), col(Template.id).desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        with Session(self.engine) as session:
            items = list(session.exec(statement).all())

        return TemplatePage(
            items=items,
            page=page,
            page_size=page_size,
            has_more=len(items) == page_size,
        )

    # ============ 内置模板 ============

    def seed_system_templates(self) -> int:
        """
        写入内置展示模板

        已存在系统模板时跳过，返回新写入的条数
        """
        with Session(self.engine) as session:
            existing = session.exec(
                select(Template).where(col(Template.owner_id) == SYSTEM_OWNER).limit(1)
            ).first()
            if existing is not None:
                return 0

        # ORM 会对 None 字段套用列默认值，这里用 Core insert 显式写入 NULL
        rows = [
            {
                **item,
                "reference_images": None,
                "author": "System",
                "owner_id": SYSTEM_OWNER,
                "is_published": True,
                "status": None,
                "created_at": None,
            }
            for item in SYSTEM_TEMPLATES
        ]
        with self.engine.begin() as conn:
            conn.execute(insert(Template), rows)

        logger.info(f"已写入 {len(SYSTEM_TEMPLATES)} 个内置模板")
        return len(SYSTEM_TEMPLATES)
