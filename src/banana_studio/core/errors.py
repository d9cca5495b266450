"""
业务异常定义

服务层抛出这些异常，由应用入口统一转换为 HTTP 响应，
对外只暴露简短的中文提示，不泄漏内部细节。
"""
from typing import Optional


class StudioError(Exception):
    """业务异常基类"""

    status_code: int = 500
    default_message: str = "服务内部错误"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message}


class Unauthorized(StudioError):
    """没有有效的登录身份"""

    status_code = 401
    default_message = "请先登录"


class Forbidden(StudioError):
    """已登录但权限不足"""

    status_code = 403
    default_message = "没有权限执行该操作"


class NotFound(StudioError):
    """引用的账户或模板不存在"""

    status_code = 404
    default_message = "资源不存在"


class ValidationFailed(StudioError):
    """请求参数不合法"""

    status_code = 400
    default_message = "请求参数不合法"


class InsufficientCredits(StudioError):
    """积分余额不足"""

    status_code = 402

    def __init__(self, needed: int, available: int):
        self.needed = needed
        self.available = available
        super().__init__(f"积分不足：需要 {needed} 积分，当前可用 {available} 积分")

    def to_dict(self) -> dict:
        return {"detail": self.message, "needed": self.needed, "available": self.available}


class ModelUnavailable(StudioError):
    """生图模型未配置或不可用"""

    status_code = 503
    default_message = "生图服务暂不可用"


class GenerationFailed(StudioError):
    """所有图片都生成失败"""

    status_code = 502
    default_message = "图片生成失败，请稍后重试"


class StorageFailed(StudioError):
    """图片上传存储失败（单张失败会被吸收，不直接返回给调用方）"""

    status_code = 502
    default_message = "图片保存失败"


class InvalidTransition(StudioError):
    """审核状态不允许该流转"""

    status_code = 409
    default_message = "当前审核状态不允许该操作"


__all__ = [
    "StudioError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "ValidationFailed",
    "InsufficientCredits",
    "ModelUnavailable",
    "GenerationFailed",
    "StorageFailed",
    "InvalidTransition",
]
