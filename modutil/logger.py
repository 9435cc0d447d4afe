"""
日志模块

使用 loguru 提供统一的日志记录功能，以及供界面显示的状态行缓冲。
"""

import os
import sys
from collections import deque
from typing import List, Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"


def setup_logger(
    level: Optional[str] = None,
    sink=sys.stdout,
    enqueue: bool = True,
    colorize: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    设置日志记录器

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        sink: 输出目标
        enqueue: 是否启用队列（线程安全）
        colorize: 是否启用颜色
        log_file: 额外写入的日志文件路径

    Raises:
        OSError: 日志文件无法打开
    """
    # 从环境变量获取日志级别
    if level is None:
        level = "DEBUG" if os.environ.get("MODUTIL_DEBUG", "0") == "1" else "INFO"

    # 移除默认处理器
    logger.remove()

    # 添加控制台处理器
    logger.add(
        sink=sink,
        format=LOG_FORMAT,
        enqueue=enqueue,
        level=level,
        colorize=colorize,
        backtrace=(level == "DEBUG"),
        diagnose=(level == "DEBUG"),
    )

    if log_file:
        logger.add(
            sink=log_file,
            format=LOG_FORMAT,
            enqueue=enqueue,
            level="DEBUG",
            encoding="utf-8",
        )

    if level == "DEBUG":
        logger.debug("DEBUG 模式已启用")


class StatusLog:
    """
    最近 N 条状态信息

    作为 loguru sink 使用，只收集 modutil 自身发出的 INFO 及以上日志，
    并记录最后一条的严重级别，供界面按颜色显示。
    """

    def __init__(self, maxlen: int = 4):
        self._lines: deque = deque(maxlen=maxlen)
        self.severity = "INFO"
        self._handler_id: Optional[int] = None

    def write(self, message) -> None:
        record = message.record
        level = record["level"].name
        if level == "SUCCESS":
            level = "INFO"
        self._lines.append(f"[{level}] {record['message']}")
        self.severity = level

    def lines(self) -> List[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()
        self.severity = "INFO"

    def attach(self, level: str = "INFO") -> None:
        if self._handler_id is None:
            self._handler_id = logger.add(
                self.write, level=level, format="{message}", filter="modutil"
            )

    def detach(self) -> None:
        if self._handler_id is None:
            return
        handler_id, self._handler_id = self._handler_id, None
        try:
            logger.remove(handler_id)
        except ValueError:
            # setup_logger() 已经移除了全部处理器
            pass


# 导出 logger
__all__ = ["logger", "setup_logger", "StatusLog"]
