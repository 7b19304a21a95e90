"""进程相关工具：存活探测、进程改名、守护化。"""

from __future__ import annotations

import os
import sys

import psutil
import setproctitle


def is_process_alive(pid: int) -> bool:
    """判断 pid 对应进程是否存活（僵尸进程视为已退出）。"""

    if pid <= 0:
        return False
    if not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.Error:
        # 无权限读取状态时，按存活处理
        return True


def set_process_title(title: str) -> bool:
    """设置进程名，macOS 或不支持时静默跳过。"""

    if sys.platform == "darwin":
        return False
    setproctitle.setproctitle(title)
    return True


def daemonize() -> None:
    """两次 fork 脱离终端，标准输入输出重定向到 /dev/null。"""

    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)

    os.chdir("/")
    os.umask(0o022)
    sys.stdout.flush()
    sys.stderr.flush()
    with open(os.devnull, "rb", 0) as devnull_in, open(os.devnull, "ab", 0) as devnull_out:
        os.dup2(devnull_in.fileno(), sys.stdin.fileno())
        os.dup2(devnull_out.fileno(), sys.stdout.fileno())
        os.dup2(devnull_out.fileno(), sys.stderr.fileno())
