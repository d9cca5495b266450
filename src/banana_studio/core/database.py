"""
数据库连接管理 - 引擎由应用入口创建并注入，不再使用模块级全局引擎
"""
from pathlib import Path

from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine

from banana_studio.core.logging import get_logger

logger = get_logger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    创建数据库引擎

    SQLite 文件库会自动创建所在目录，并允许跨线程使用连接
    （服务层通过 asyncio.to_thread 调用同步数据库操作）。
    """
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, echo=echo, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    """创建所有数据表"""
    # 导入模型以注册到 metadata
    import banana_studio.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("数据表已就绪")


__all__ = ["create_db_engine", "init_db"]
