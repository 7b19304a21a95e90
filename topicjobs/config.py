"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


def _to_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """安全解析整数环境变量。"""

    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_float(value: str | None, default: float, *, minimum: float = 0.0) -> float:
    """安全解析浮点环境变量。"""

    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_bool(value: str | None, default: bool = False) -> bool:
    """安全解析布尔环境变量。"""

    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


def _to_path(value: str | None, default: Path) -> Path:
    """解析目录配置，相对路径以项目根目录为基准。"""

    raw = str(value or "").strip()
    if not raw:
        return default
    path = Path(raw).expanduser()
    return path if path.is_absolute() else BASE_DIR / path


PID_DIR = _to_path(os.getenv("PTJ_PID_DIR"), BASE_DIR / "runtime")
PROCESS_NAME = os.getenv("PTJ_PROCESS_NAME") or ":pyTopicJobs"
LOG_PATH = _to_path(os.getenv("PTJ_LOG_PATH"), BASE_DIR / "runtime" / "logs")
LOG_LEVEL = os.getenv("PTJ_LOG_LEVEL", "INFO").strip().upper() or "INFO"
DAEMONIZE = _to_bool(os.getenv("PTJ_DAEMONIZE"), default=True)

TOPICS = os.getenv("PTJ_TOPICS", "").strip()
WORKER_TASK = os.getenv("PTJ_WORKER_TASK", "").strip() or "topicjobs.services.job_runner:run_topic"
SHUTDOWN_DELAY = _to_float(os.getenv("PTJ_SHUTDOWN_DELAY"), 1.0)
POLL_INTERVAL = _to_float(os.getenv("PTJ_POLL_INTERVAL"), 0.5, minimum=0.05)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "ptj")

QUEUE_MAX_RETRIES = _to_int(os.getenv("QUEUE_MAX_RETRIES"), 3, minimum=0)
QUEUE_BLOCK_MS = _to_int(os.getenv("QUEUE_BLOCK_MS"), 1500, minimum=100)
WORKER_MAX_POP = _to_int(os.getenv("WORKER_MAX_POP"), 100, minimum=1)
