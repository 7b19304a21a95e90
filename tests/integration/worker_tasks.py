"""集成测试用的 worker 任务入口。"""

from __future__ import annotations

import time


def short_task(_topic: str) -> None:
    time.sleep(0.3)


def long_task(_topic: str) -> None:
    time.sleep(30)
