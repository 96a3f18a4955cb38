"""
日志模块

使用 loguru 提供统一的日志记录功能，可选地把镜像过程写入镜像目录下的日志文件。
"""

import os
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

DEBUG_ENV = "BREWMIRROR_DEBUG"

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"


def is_debug() -> bool:
    """是否处于调试模式"""
    return os.environ.get(DEBUG_ENV, "0") == "1"


def setup_logger(
    level: Optional[str] = None,
    sink=sys.stdout,
    enqueue: bool = True,
    colorize: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    设置日志记录器

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        sink: 控制台输出目标
        enqueue: 是否启用队列（线程安全）
        colorize: 是否启用颜色
        log_file: 额外写入的日志文件（按 10 MB 轮转）
    """
    if level is None:
        level = "DEBUG" if is_debug() else "INFO"

    logger.remove()

    logger.add(
        sink=sink,
        format=LOG_FORMAT,
        enqueue=enqueue,
        level=level,
        colorize=colorize,
        backtrace=(level == "DEBUG"),
        diagnose=(level == "DEBUG"),
    )

    if log_file is not None:
        logger.add(
            sink=str(log_file),
            format=LOG_FORMAT,
            enqueue=enqueue,
            level=level,
            rotation="10 MB",
            encoding="utf-8",
        )

    if level == "DEBUG":
        logger.debug("DEBUG 模式已启用")


__all__ = ["logger", "setup_logger", "is_debug"]
