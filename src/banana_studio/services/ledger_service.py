"""
积分服务 - 账户角色与积分余额的唯一权威

所有积分写操作都走本模块：冻结(hold) / 释放(release) / 扣减(debit) / 结算(settle) / 发放(grant)。
扣减使用数据库原子条件更新，避免「先查余额再扣减」的并发超扣。
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, insert, or_, select as sa_select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from banana_studio.core import Settings, get_logger
from banana_studio.core.errors import Forbidden, InsufficientCredits, NotFound, ValidationFailed
from banana_studio.models.account import Account, CreditTransaction, ROLE_ADMIN, ROLE_USER

logger = get_logger(__name__)

# 单张图片基础积分（按清晰度档位）
QUALITY_TIER_COSTS = {
    "standard": 1,
    "high": 2,
    "ultra": 4,
}

MIN_IMAGE_COUNT = 1
MAX_IMAGE_COUNT = 3


def clamp_image_count(image_count: Optional[int]) -> int:
    """图片张数限制在 [1, 3]，超出范围直接截断而不是报错"""
    if image_count is None:
        return MIN_IMAGE_COUNT
    return max(MIN_IMAGE_COUNT, min(MAX_IMAGE_COUNT, int(image_count)))


def per_image_cost(quality_tier: str) -> int:
    try:
        return QUALITY_TIER_COSTS[quality_tier]
    except KeyError:
        raise ValidationFailed(f"不支持的清晰度档位: {quality_tier}")


def calculate_cost(quality_tier: str, image_count: int) -> int:
    """
    计算生成请求的积分消耗

    cost = 单张基础积分 × 张数（张数先截断到 [1, 3]）
    """
    return per_image_cost(quality_tier) * clamp_image_count(image_count)


class LedgerService:
    """
    积分服务

    只依赖注入的数据库引擎，不持有任何跨请求的内存状态
    """

    def __init__(self, engine: Engine, settings: Settings):
        self.engine = engine
        self.default_credits = settings.default_credits
        self.admin_credits = settings.admin_credits
        self.admin_access_code = settings.admin_access_code
        self.hold_ttl = timedelta(seconds=settings.hold_ttl_seconds)

    # ============ 查询 ============

    def check_balance(self, account_id: str) -> Account:
        """
        查询账户角色与余额

        Raises:
            NotFound: 账户不存在
        """
        with Session(self.engine) as session:
            account = session.get(Account, account_id)
            if account is None:
                raise NotFound("账户不存在")
            return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with Session(self.engine) as session:
            return session.get(Account, account_id)

    def authorize(self, account_id: str, cost: int) -> bool:
        """管理员或可用积分 >= cost 时返回 True，无副作用（失效的冻结不计入）"""
        account = self.check_balance(account_id)
        if account.is_admin:
            return True
        return self.available_credits(account) >= cost

    def available_credits(self, account: Account) -> int:
        if self._is_stale(account.reserved_at):
            return account.credits
        return account.available_credits

    def _is_stale(self, reserved_at: Optional[datetime]) -> bool:
        return reserved_at is not None and reserved_at < datetime.now() - self.hold_ttl

    # ============ 开户 ============

    def ensure_account(self, account_id: str, name: str) -> Account:
        """
        获取账户，不存在时按默认角色和积分自动创建

        已登录但缺少账户记录时自动补齐，重复调用结果一致
        """
        with Session(self.engine) as session:
            account = session.get(Account, account_id)
            if account is not None:
                return account

            account = Account(
                id=account_id,
                name=name,
                role=ROLE_USER,
                credits=self.default_credits,
            )
            session.add(account)
            try:
                session.commit()
            except IntegrityError:
                # 并发登录时另一请求已建好账户
                session.rollback()
                return session.get(Account, account_id)

            session.refresh(account)
            logger.info(f"自动创建账户: account_id={account_id}, credits={self.default_credits}")
            return account

    def register_account(
        self,
        account_id: str,
        name: str,
        access_code: Optional[str] = None,
    ) -> Account:
        """
        注册账户

        访问码与配置一致时授予管理员角色和管理员积分，否则为普通用户
        """
        is_admin = bool(access_code) and access_code == self.admin_access_code
        role = ROLE_ADMIN if is_admin else ROLE_USER
        credits = self.admin_credits if is_admin else self.default_credits

        with Session(self.engine) as session:
            account = session.get(Account, account_id)
            if account is None:
                account = Account(id=account_id, name=name, role=role, credits=credits)
                session.add(account)
            else:
                account.name = name
                account.role = role
                account.credits = credits
                account.updated_at = datetime.now()
            session.commit()
            session.refresh(account)

        logger.info(f"注册账户: account_id={account_id}, role={role}")
        return account

    # ============ 冻结 / 释放 ============

    def hold(self, account_id: str, cost: int) -> None:
        """
        原子冻结积分

        UPDATE ... WHERE role = 'admin' OR credits - reserved >= cost，
        影响行数为 0 时说明余额不足（或账户不存在）。
        冻结前先在同一事务内回收该账户已失效的冻结。

        Raises:
            NotFound: 账户不存在
            InsufficientCredits: 可用积分不足
        """
        now = datetime.now()
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .where(
                or_(
                    Account.role == ROLE_ADMIN,
                    Account.credits - Account.reserved_credits >= cost,
                )
            )
            .values(
                reserved_credits=Account.reserved_credits + cost,
                reserved_at=now,
                updated_at=now,
            )
        )
        with self.engine.begin() as conn:
            self._expire_stale(conn, Account.id == account_id)
            result = conn.execute(stmt)
            if result.rowcount:
                logger.debug(f"冻结积分: account_id={account_id}, cost={cost}")
                return

            row = conn.execute(
                sa_select(Account.credits, Account.reserved_credits).where(Account.id == account_id)
            ).first()

        if row is None:
            raise NotFound("账户不存在")
        raise InsufficientCredits(needed=cost, available=max(0, row.credits - row.reserved_credits))

    def release(self, account_id: str, held: int) -> None:
        """释放冻结积分（不扣费）"""
        with self.engine.begin() as conn:
            conn.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(updated_at=datetime.now(), **self._released(held))
            )
        logger.debug(f"释放冻结积分: account_id={account_id}, held={held}")

    def release_stale_holds(self) -> int:
        """
        回收所有超过保留时间的冻结（进程在生成途中退出时遗留）

        Returns:
            被回收的账户数
        """
        with self.engine.begin() as conn:
            count = self._expire_stale(conn)
        if count:
            logger.warning(f"回收失效的冻结积分: accounts={count}")
        return count

    def clear_holds(self, account_id: str, actor: Account) -> Account:
        """
        管理员清空某账户的全部冻结

        Raises:
            Forbidden: 操作者不是管理员
            NotFound: 账户不存在
        """
        if not actor.is_admin:
            raise Forbidden("只有管理员可以清除冻结积分")

        with self.engine.begin() as conn:
            result = conn.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(reserved_credits=0, reserved_at=None, updated_at=datetime.now())
            )
            if not result.rowcount:
                raise NotFound("账户不存在")

        logger.info(f"清除冻结积分: account_id={account_id}, by={actor.id}")
        return self.check_balance(account_id)

    def _expire_stale(self, conn: Connection, *criteria) -> int:
        cutoff = datetime.now() - self.hold_ttl
        stmt = (
            update(Account)
            .where(Account.reserved_credits > 0)
            .where(Account.reserved_at < cutoff)
            .values(reserved_credits=0, reserved_at=None)
        )
        if criteria:
            stmt = stmt.where(*criteria)
        return conn.execute(stmt).rowcount

    # ============ 扣减 / 结算 ============

    def debit(self, account_id: str, cost: int) -> int:
        """
        扣减积分，余额最低为 0；管理员不扣减

        Returns:
            扣减后的余额
        """
        with self.engine.begin() as conn:
            return self._apply_debit(conn, account_id, cost)

    def settle(self, account_id: str, held: int, charge: int) -> int:
        """
        结算一次生成请求：释放冻结并扣减实际费用，两步在同一事务内完成

        Returns:
            结算后的余额
        """
        with self.engine.begin() as conn:
            conn.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(**self._released(held))
            )
            return self._apply_debit(conn, account_id, charge)

    def _apply_debit(self, conn: Connection, account_id: str, cost: int) -> int:
        if cost < 0:
            raise ValidationFailed("扣减积分不能为负数")

        new_credits = case(
            (Account.role == ROLE_ADMIN, Account.credits),
            (Account.credits > cost, Account.credits - cost),
            else_=0,
        )
        result = conn.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(credits=new_credits, updated_at=datetime.now())
        )
        if not result.rowcount:
            raise NotFound("账户不存在")

        row = conn.execute(
            sa_select(Account.credits, Account.role).where(Account.id == account_id)
        ).one()

        if row.role != ROLE_ADMIN and cost > 0:
            conn.execute(
                insert(CreditTransaction).values(
                    account_id=account_id,
                    kind="debit",
                    amount=-cost,
                    balance_after=row.credits,
                    created_at=datetime.now(),
                )
            )
            logger.info(f"扣减积分: account_id={account_id}, cost={cost}, balance={row.credits}")

        return row.credits

    @staticmethod
    def _released(held: int) -> dict:
        """释放 held 后的冻结值，冻结清零时一并清空冻结时间"""
        still_held = Account.reserved_credits > held
        return {
            "reserved_credits": case((still_held, Account.reserved_credits - held), else_=0),
            "reserved_at": case((still_held, Account.reserved_at), else_=None),
        }

    # ============ 管理员发放 ============

    def grant(self, account_id: str, amount: int, actor: Account, note: Optional[str] = None) -> int:
        """
        管理员发放积分

        Raises:
            Forbidden: 操作者不是管理员
            ValidationFailed: 发放数量不合法
            NotFound: 账户不存在
        """
        if not actor.is_admin:
            raise Forbidden("只有管理员可以发放积分")
        if amount <= 0:
            raise ValidationFailed("发放积分必须大于 0")

        with self.engine.begin() as conn:
            result = conn.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(credits=Account.credits + amount, updated_at=datetime.now())
            )
            if not result.rowcount:
                raise NotFound("账户不存在")

            balance = conn.execute(
                sa_select(Account.credits).where(Account.id == account_id)
            ).scalar_one()
            conn.execute(
                insert(CreditTransaction).values(
                    account_id=account_id,
                    kind="grant",
                    amount=amount,
                    balance_after=balance,
                    note=note or f"granted by {actor.id}",
                    created_at=datetime.now(),
                )
            )

        logger.info(f"发放积分: account_id={account_id}, amount={amount}, by={actor.id}")
        return balance
