"""运行日志服务：按目的地（master / worker）分文件写入。"""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DEST_MASTER = "master"
LOG_DEST_WORKER = "worker"
LOG_DESTINATIONS = (LOG_DEST_MASTER, LOG_DEST_WORKER)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def destination_logger(destination: str) -> logging.Logger:
    """返回目的地对应的 logger，未知目的地归入 master。"""

    name = destination if destination in LOG_DESTINATIONS else LOG_DEST_MASTER
    return logging.getLogger(f"topicjobs.{name}")


def resolve_level(level: str | int) -> int:
    """把字符串级别转换为 logging 级别，无法识别时返回 INFO。"""

    if isinstance(level, int):
        return level
    return _LEVELS.get(str(level).strip().lower(), logging.INFO)


def setup_logging(log_path: Path | None = None, level: str = "INFO") -> None:
    """初始化控制台与文件日志（可重复调用）。"""

    logging.basicConfig(level=resolve_level(level), format=LOG_FORMAT)
    logging.getLogger("topicjobs").setLevel(resolve_level(level))
    if log_path is None:
        return

    log_path.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)
    for destination in LOG_DESTINATIONS:
        logger = destination_logger(destination)
        target = str((log_path / f"{destination}.log").resolve())
        exists = any(
            isinstance(handler, logging.FileHandler) and handler.baseFilename == target
            for handler in logger.handlers
        )
        if exists:
            continue
        handler = logging.FileHandler(target, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


def log_event(message: str, level: str = "info", destination: str = LOG_DEST_MASTER) -> None:
    """写入一条运行日志。"""

    destination_logger(destination).log(resolve_level(level), message)
