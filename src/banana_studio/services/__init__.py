"""
服务模块
"""
from .ledger_service import LedgerService, calculate_cost, clamp_image_count
from .moderation_service import ModerationService
from .catalog_service import CatalogService, TemplatePage
from .generation_service import GenerationService, GenerationRequest, GenerationResult
from .auth_service import AuthService, SupabaseAuthClient

__all__ = [
    "LedgerService",
    "calculate_cost",
    "clamp_image_count",
    "ModerationService",
    "CatalogService",
    "TemplatePage",
    "GenerationService",
    "GenerationRequest",
    "GenerationResult",
    "AuthService",
    "SupabaseAuthClient",
]
