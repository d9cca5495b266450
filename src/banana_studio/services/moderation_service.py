"""
审核服务 - 模板审核状态机

pending -> approved / rejected，只有管理员可以流转；
系统内置模板不进入状态机，永久视为已通过。
"""
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session

from banana_studio.core import get_logger
from banana_studio.core.errors import Forbidden, InvalidTransition, NotFound
from banana_studio.models.account import Account
from banana_studio.models.template import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Template,
)

logger = get_logger(__name__)


class ModerationService:
    """审核服务"""

    def __init__(self, engine: Engine):
        self.engine = engine

    @staticmethod
    def initial_status(creator: Account) -> str:
        """管理员创建的模板直接通过，其他用户进入待审核"""
        return STATUS_APPROVED if creator.is_admin else STATUS_PENDING

    def approve(self, template_id: int, actor: Account) -> Template:
        """审核通过（重复通过视为成功）"""
        return self._transition(template_id, actor, STATUS_APPROVED)

    def reject(self, template_id: int, actor: Account) -> Template:
        """审核拒绝（重复拒绝视为成功）"""
        return self._transition(template_id, actor, STATUS_REJECTED)

    def _transition(self, template_id: int, actor: Account, target: str) -> Template:
        """
        pending -> target 的条件更新

        UPDATE ... WHERE id = ? AND status = 'pending'，影响行数为 0 时
        重新读取：已是目标状态视为成功，否则不允许流转
        """
        if actor is None or not actor.is_admin:
            raise Forbidden("只有管理员可以审核模板")

        with self.engine.begin() as conn:
            result = conn.execute(
                update(Template)
                .where(Template.id == template_id)
                .where(Template.status == STATUS_PENDING)
                .values(status=target)
            )
            changed = bool(result.rowcount)

        with Session(self.engine) as session:
            template = session.get(Template, template_id)

        if template is None:
            raise NotFound("模板不存在")

        if changed:
            logger.info(f"模板审核: template_id={template_id}, pending -> {target}, by={actor.id}")
            return template

        current = template.effective_status
        if current == target:
            logger.info(f"模板审核状态未变化: template_id={template_id}, status={target}")
            return template
        raise InvalidTransition(f"模板当前状态为 {current}，不能变更为 {target}")
