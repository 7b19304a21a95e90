"""通过 pid 文件向运行中的 master 发送控制信号。"""

from __future__ import annotations

import logging
import os
import signal
from typing import Callable

from topicjobs.services.pid_service import PidFile

logger = logging.getLogger(__name__)

COMMAND_SIGNALS = {
    "stop": signal.SIGTERM,
    "drain": signal.SIGUSR1,
}


def master_status(pid_file: PidFile) -> int | None:
    """返回存活 master 的 pid，未运行时返回 None。"""

    return pid_file.running_pid()


def send_master_signal(
    pid_file: PidFile,
    signum: int,
    *,
    kill: Callable[[int, int], None] = os.kill,
) -> bool:
    """向 master 发送信号，master 未运行时返回 False。"""

    pid = pid_file.running_pid()
    if pid is None:
        logger.warning("master 未运行 pid_file=%s", pid_file.path)
        return False
    try:
        kill(pid, signum)
    except ProcessLookupError:
        logger.warning("master 已退出 pid=%d", pid)
        return False
    logger.info("已发送信号 signal=%s pid=%d", signal.Signals(signum).name, pid)
    return True
