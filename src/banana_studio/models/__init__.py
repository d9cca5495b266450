"""
数据模型模块
"""
from .account import Account, CreditTransaction
from .template import Template

__all__ = [
    "Account",
    "CreditTransaction",
    "Template",
]
