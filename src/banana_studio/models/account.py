"""
账户数据模型 - 角色与积分余额
"""
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class Account(SQLModel, table=True):
    """
    账户模型

    主键沿用身份服务返回的用户ID；积分只能通过积分服务的扣减/发放接口修改
    """
    __tablename__ = "accounts"

    # 主键（身份服务用户ID）
    id: str = Field(primary_key=True, max_length=64)

    # 显示名称
    name: str = Field(index=True, description="显示名称")

    # 角色
    role: str = Field(default=ROLE_USER, description="角色: user/admin")

    # 积分
    credits: int = Field(default=0, ge=0, description="积分余额")
    reserved_credits: int = Field(default=0, ge=0, description="进行中的生成请求冻结的积分")
    reserved_at: Optional[datetime] = Field(default=None, description="最近一次冻结时间，用于回收失效的冻结")

    # 时间戳
    created_at: datetime = Field(default_factory=datetime.now, description="创建时间")
    updated_at: datetime = Field(default_factory=datetime.now, description="更新时间")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def available_credits(self) -> int:
        """可用积分 = 余额 - 冻结"""
        return max(0, self.credits - self.reserved_credits)

    @property
    def avatar_url(self) -> str:
        return f"https://api.dicebear.com/7.x/avataaars/svg?seed={self.name}"


class CreditTransaction(SQLModel, table=True):
    """积分流水表"""

    __tablename__ = "credit_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(foreign_key="accounts.id", index=True, description="账户ID")

    kind: str = Field(description="类型: debit/grant")
    amount: int = Field(description="变动积分（扣减为负数）")
    balance_after: int = Field(description="变动后余额")
    note: Optional[str] = Field(default=None, max_length=200, description="备注")

    created_at: datetime = Field(default_factory=datetime.now)
