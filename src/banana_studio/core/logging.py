"""
日志配置 - 控制台输出，统一格式
"""
import logging
import sys


def setup_logging(log_level: str = "INFO") -> None:
    """
    配置日志系统

    重复调用不会叠加 handler
    """
    # 日志格式
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    # 根日志记录器
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not any(getattr(h, "_banana_studio", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._banana_studio = True
        root_logger.addHandler(console_handler)

    # 设置第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    获取日志记录器

    用法:
        logger = get_logger(__name__)
        logger.info("信息日志")
    """
    return logging.getLogger(name)
