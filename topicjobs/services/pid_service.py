"""master.pid 文件管理：单实例校验与写入/清理。"""

from __future__ import annotations

import os
from pathlib import Path
import tempfile
from typing import Callable

from topicjobs.services.process_utils import is_process_alive

PID_FILE_NAME = "master.pid"


class MasterAlreadyRunningError(RuntimeError):
    """已有存活的 master 持有 pid 文件。"""

    def __init__(self, pid: int, pid_path: Path) -> None:
        super().__init__(f"已有进程运行中(pid={pid})，请先结束或重启: {pid_path}")
        self.pid = pid
        self.pid_path = pid_path


class PidFile:
    """记录 master 进程 pid 的文件，方便 systemd / 脚本管理。"""

    def __init__(
        self,
        pid_dir: Path,
        *,
        name: str = PID_FILE_NAME,
        pid_exists: Callable[[int], bool] = is_process_alive,
    ) -> None:
        self.path = Path(pid_dir) / name
        self._pid_exists = pid_exists

    def read(self) -> int | None:
        """读取 pid，文件不存在或内容非法时返回 None。"""

        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def running_pid(self) -> int | None:
        """返回 pid 文件中仍存活的进程号。"""

        pid = self.read()
        if pid is None or not self._pid_exists(pid):
            return None
        return pid

    def ensure_not_running(self) -> None:
        """存在存活的其他 master 时抛出异常；文件缺失或过期则放行。"""

        pid = self.running_pid()
        if pid is not None and pid != os.getpid():
            raise MasterAlreadyRunningError(pid, self.path)

    def write(self, pid: int) -> None:
        """原子写入 pid（临时文件 + rename）。"""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".master.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(int(pid)))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self) -> None:
        """删除 pid 文件，不存在时忽略。"""

        self.path.unlink(missing_ok=True)
