"""
配置管理 - 类似 Java 的 @ConfigurationProperties
"""
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """应用配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API 配置
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = True
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    # Gemini 生图配置
    # 保留 API_KEY / GOOGLE_API_KEY 作为兼容别名，沿用历史部署的环境变量。
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"),
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_model: str = Field(
        default="gemini-3-pro-image-preview",
        validation_alias=AliasChoices("GEMINI_MODEL", "GEMINI_MODEL_NAME"),
    )
    gemini_timeout_seconds: float = 120.0

    # 对象存储配置
    storage_backend: Literal["local", "supabase"] = "local"
    storage_dir: str = "./data/static"
    public_base_url: str = "http://localhost:8000"

    # Supabase 配置（认证 + Storage）
    supabase_url: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    supabase_anon_key: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    )
    supabase_service_role_key: str = ""
    supabase_bucket: str = "images"

    # 账户与积分
    default_credits: int = 3
    admin_credits: int = 9999
    admin_access_code: str = "BANANA_MASTER"
    login_email_domain: str = "nanobanana.app"

    # 计费策略：部分成功时是否按请求张数全额扣费
    charge_full_cost_on_partial: bool = True
    # 冻结积分的最长保留时间（秒），超时视为进程异常退出遗留
    hold_ttl_seconds: int = 900

    # 模板分页
    catalog_page_size: int = 20
    catalog_max_page_size: int = 100

    # 数据库配置
    database_url: str = "sqlite:///./data/banana_studio.db"

    # 日志配置
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
