"""
日志配置工具。

为 toolbridge 及其依赖（mcp SDK、httpx）提供统一的日志初始化。
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# 第三方库默认只输出 WARNING 及以上
NOISY_LOGGERS = ("httpx", "httpcore", "mcp")


def setup_logging(
    level: int = logging.INFO,
    log_file: str = "",
    debug: bool = False,
) -> logging.Logger:
    """
    初始化日志。

    Args:
        level: 默认日志级别。
        log_file: 日志文件路径（为空则仅输出到终端），按 5MB 轮转。
        debug: 开启后 toolbridge 与第三方库都输出 DEBUG（含 MCP 协议细节）。

    Returns:
        ``toolbridge`` Logger 实例。
    """
    if debug:
        level = logging.DEBUG

    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)

    noisy_level = logging.DEBUG if debug else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        fh.setLevel(level)
        logging.getLogger().addHandler(fh)

    return logging.getLogger("toolbridge")
