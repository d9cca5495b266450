"""
创建数据库表并写入内置模板
"""
from banana_studio.core import get_settings, setup_logging
from banana_studio.core.database import create_db_engine, init_db
from banana_studio.services import CatalogService, ModerationService

settings = get_settings()

if __name__ == "__main__":
    setup_logging(settings.log_level)

    # 创建引擎
    engine = create_db_engine(settings.database_url, echo=True)

    # 创建所有表
    init_db(engine)

    # 写入内置模板
    catalog = CatalogService(engine, settings, ModerationService(engine))
    seeded = catalog.seed_system_templates()

    print(f"✅ 数据库表创建完成，新增内置模板 {seeded} 个")
