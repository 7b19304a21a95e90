"""master 进程编排：按 topic 拉起 worker，死亡自动重启，支持平滑/强制退出。"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import enum
import json
import os
from pathlib import Path
import signal
import subprocess
import sys
import time
from typing import Any, Callable

from topicjobs.config import (
    BASE_DIR,
    DAEMONIZE,
    LOG_PATH,
    PID_DIR,
    POLL_INTERVAL,
    PROCESS_NAME,
    SHUTDOWN_DELAY,
    WORKER_TASK,
)
from topicjobs.services import process_utils
from topicjobs.services.log_service import LOG_DEST_MASTER, LOG_DEST_WORKER, destination_logger
from topicjobs.services.pid_service import PidFile
from topicjobs.services.topic_source import TopicSource
from topicjobs.services.worker_spec import resolve_worker_slots

logger = destination_logger(LOG_DEST_MASTER)
worker_logger = destination_logger(LOG_DEST_WORKER)

CHILD_SIGNALS = (signal.SIGCHLD,)
DRAIN_SIGNALS = (signal.SIGUSR1,)
# SIGKILL 无法捕获，SIGINT 作为第二个强制退出信号
STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SupervisorStatus(str, enum.Enum):
    """master 状态，只能朝退出方向迁移。"""

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class SupervisorConfig:
    """master 进程运行配置。"""

    pid_dir: Path
    process_name: str
    log_path: Path
    daemonize: bool
    worker_task: str
    shutdown_delay: float = 1.0
    poll_interval: float = 0.5
    kill_signal: int = signal.SIGTERM


def load_supervisor_config(*, foreground: bool = False) -> SupervisorConfig:
    """从全局配置读取 master 参数。"""

    return SupervisorConfig(
        pid_dir=PID_DIR,
        process_name=PROCESS_NAME,
        log_path=LOG_PATH,
        daemonize=DAEMONIZE and not foreground,
        worker_task=WORKER_TASK,
        shutdown_delay=max(SHUTDOWN_DELAY, 0.0),
        poll_interval=max(POLL_INTERVAL, 0.05),
    )


def build_worker_command() -> list[str]:
    """构建 worker 子进程命令（以 worker 模式重新进入程序）。"""

    return [sys.executable, "-m", "topicjobs.workers.topic_worker"]


class WorkerProcess:
    """一个 worker 槽位，重启时复用，只更新 last_pid。"""

    def __init__(
        self,
        slot_id: int,
        topic: str,
        task: str,
        *,
        master_pid: int,
        process_name: str,
        popen_factory: Callable[..., Any] = subprocess.Popen,
        command: list[str] | None = None,
        log_path: Path | None = None,
    ) -> None:
        self.slot_id = slot_id
        self.topic = topic
        self.task = task
        self.master_pid = master_pid
        self.process_name = process_name
        self.log_path = log_path
        self.command = command or build_worker_command()
        self.last_pid: int | None = None
        self.process: Any = None
        self.spawn_count = 0
        self._popen_factory = popen_factory

    def __repr__(self) -> str:
        return f"WorkerProcess(slot_id={self.slot_id}, topic={self.topic!r}, last_pid={self.last_pid})"

    def env_overrides(self) -> dict[str, str]:
        """传给子进程的身份信息。"""

        overrides = {
            "PTJ_WORKER_SLOT": str(self.slot_id),
            "PTJ_WORKER_TOPIC": self.topic,
            "PTJ_WORKER_TASK": self.task,
            "PTJ_MASTER_PID": str(self.master_pid),
            "PTJ_PROCESS_NAME": self.process_name,
        }
        if self.log_path is not None:
            overrides["PTJ_LOG_PATH"] = str(self.log_path)
        return overrides

    def spawn(self) -> int:
        """启动子进程并返回新 pid。"""

        env = os.environ.copy()
        env.update(self.env_overrides())
        self.process = self._popen_factory(self.command, env=env, cwd=str(BASE_DIR))
        self.last_pid = int(self.process.pid)
        self.spawn_count += 1
        worker_logger.info("worker id: %d pid: %d topic: %s is start...", self.slot_id, self.last_pid, self.topic)
        return self.last_pid

    def poll(self) -> int | None:
        """返回最近一次启动的子进程退出码，未退出为 None。"""

        if self.process is None:
            return None
        return self.process.poll()


class WorkerRegistry:
    """存活子进程 pid 到 worker 的映射，只由 master 修改。"""

    def __init__(self) -> None:
        self._workers: dict[int, WorkerProcess] = {}

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, pid: object) -> bool:
        return pid in self._workers

    def add(self, pid: int, worker: WorkerProcess) -> None:
        self._workers[int(pid)] = worker

    def get(self, pid: int) -> WorkerProcess | None:
        return self._workers.get(int(pid))

    def pop(self, pid: int) -> WorkerProcess | None:
        return self._workers.pop(int(pid), None)

    def pids(self) -> list[int]:
        return list(self._workers)

    def items(self) -> list[tuple[int, WorkerProcess]]:
        return list(self._workers.items())

    def clear(self) -> None:
        self._workers.clear()


def exit_signal_of(return_code: int | None) -> int:
    """Popen 返回码为负数时表示被信号杀死。"""

    if return_code is None or return_code >= 0:
        return 0
    return -return_code


class ProcessSupervisor:
    """负责拉起并守护 topic worker 进程。"""

    def __init__(
        self,
        config: SupervisorConfig,
        topic_source: TopicSource,
        *,
        popen_factory: Callable[..., Any] = subprocess.Popen,
        kill: Callable[[int, int], None] = os.kill,
        sleep: Callable[[float], None] = time.sleep,
        pid_exists: Callable[[int], bool] = process_utils.is_process_alive,
        daemonize: Callable[[], None] = process_utils.daemonize,
        set_title: Callable[[str], bool] = process_utils.set_process_title,
    ) -> None:
        self.config = config
        self.topic_source = topic_source
        self.pid_file = PidFile(config.pid_dir, pid_exists=pid_exists)
        self.pid: int | None = None
        self.status = SupervisorStatus.RUNNING
        self.registry = WorkerRegistry()
        self.workers: list[WorkerProcess] = []
        self._popen_factory = popen_factory
        self._kill = kill
        self._sleep = sleep
        self._daemonize = daemonize
        self._set_title = set_title
        self._pending_signals: deque[int] = deque()
        self._dispatching = False
        self._exited = False
        self._owns_pid_file = False
        self._previous_handlers: dict[int, Any] = {}

    @property
    def exited(self) -> bool:
        """final_shutdown 是否已执行。"""

        return self._exited

    def acquire_pid_file(self) -> None:
        """单实例校验通过后（可选守护化）写入自身 pid。"""

        self.pid_file.ensure_not_running()
        if self.config.daemonize:
            self._daemonize()
        self.pid = os.getpid()
        self.pid_file.write(self.pid)
        self._owns_pid_file = True
        self._set_title(f"job master {self.pid}{self.config.process_name}")
        logger.info("master 启动 pid=%d pid_file=%s", self.pid, self.pid_file.path)

    def start(self) -> None:
        """按当前 topic 快照启动全部 worker。"""

        if self.pid is None:
            self.pid = os.getpid()
        topics = list(self.topic_source.get_topics() or [])
        logger.info("topics: %s", json.dumps(topics, ensure_ascii=False, default=str))

        # 启动期间到达的信号先排队，全部拉起后再处理
        self._dispatching = True
        try:
            for slot in resolve_worker_slots(topics):
                if self.status is not SupervisorStatus.RUNNING:
                    break
                worker = WorkerProcess(
                    slot.slot_id,
                    slot.topic,
                    self.config.worker_task,
                    master_pid=self.pid,
                    process_name=self.config.process_name,
                    popen_factory=self._popen_factory,
                    log_path=self.config.log_path,
                )
                self.workers.append(worker)
                self.registry.add(worker.spawn(), worker)
        finally:
            self._dispatching = False
        worker_logger.info("Worker count: %d", len(self.registry))
        self._drain_pending_signals()

    def install_signal_handlers(self) -> None:
        """所有信号统一注册到 handle_signal。"""

        for signum in (*CHILD_SIGNALS, *DRAIN_SIGNALS, *STOP_SIGNALS):
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)

    def restore_signal_handlers(self) -> None:
        """恢复安装前的信号处理函数。"""

        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def handle_signal(self, signum: int, _frame: object = None) -> None:
        """信号入口：排队后逐个分发，重入时只排队。"""

        self._pending_signals.append(int(signum))
        if not self._dispatching:
            self._drain_pending_signals()

    def _drain_pending_signals(self) -> None:
        while self._pending_signals:
            self._dispatching = True
            try:
                while self._pending_signals:
                    self.dispatch(self._pending_signals.popleft())
            finally:
                self._dispatching = False

    def dispatch(self, signum: int) -> None:
        """按信号类型执行状态迁移。"""

        if signum in CHILD_SIGNALS:
            self.reap_children()
        elif signum in DRAIN_SIGNALS:
            self.request_drain()
        elif signum in STOP_SIGNALS:
            self.force_stop()
        else:
            logger.warning("忽略未处理的信号 signal=%s", signum)

    def reap_children(self) -> int:
        """反复回收已退出的子进程，直到一轮内没有可回收的，返回回收数量。"""

        reaped = 0
        while True:
            count = self._reap_once()
            reaped += count
            # 排队中的停止/平滑退出优先于继续回收
            if not count or any(signum not in CHILD_SIGNALS for signum in self._pending_signals):
                return reaped

    def _reap_once(self) -> int:
        reaped = 0
        for pid, worker in self.registry.items():
            if worker.last_pid != pid:
                continue
            return_code = worker.poll()
            if return_code is None:
                continue
            self.handle_child_exit(pid, exit_signal_of(return_code))
            reaped += 1
        return reaped

    def handle_child_exit(self, pid: int, signal_number: int = 0) -> None:
        """处理一个子进程退出：running 时原槽位重启，否则只移除。"""

        worker = self.registry.get(pid)
        if worker is None:
            logger.debug("忽略未登记的子进程退出 pid=%s", pid)
            return

        if self.status is SupervisorStatus.RUNNING:
            try:
                new_pid = worker.spawn()
            except OSError:
                logger.exception("Worker Restart 失败 slot=%d topic=%s", worker.slot_id, worker.topic)
            else:
                worker_logger.info("Worker Restart, kill_signal=%s PID=%s", signal_number, new_pid)
                self.registry.add(new_pid, worker)

        worker_logger.info("Worker Exit, kill_signal=%s PID=%s", signal_number, pid)
        self.registry.pop(pid)
        worker_logger.info("Worker count: %d", len(self.registry))

        if not self.registry and self.status is SupervisorStatus.DRAINING:
            worker_logger.info("主进程收到所有子进程的退出信号，子进程安全退出完成")
            self.final_shutdown()

    def request_drain(self) -> None:
        """平滑退出：不再重启 worker，等待现有 worker 自然结束。"""

        if self.status is not SupervisorStatus.RUNNING:
            logger.info("当前状态=%s，忽略平滑退出请求", self.status.value)
            return
        self.status = SupervisorStatus.DRAINING
        logger.info("收到平滑退出信号，等待 %d 个 worker 结束", len(self.registry))
        if not self.registry:
            self.final_shutdown()

    def force_stop(self) -> None:
        """强制退出：杀掉全部 worker 后立即退出 master。"""

        if self._exited:
            return
        self.status = SupervisorStatus.STOPPED
        for pid in self.registry.pids():
            try:
                self._kill(pid, self.config.kill_signal)
            except ProcessLookupError:
                logger.debug("子进程已不存在 pid=%d", pid)
            self.registry.pop(pid)
            worker_logger.info("主进程收到退出信号, [%d] 子进程跟着退出", pid)
            worker_logger.info("Worker count: %d", len(self.registry))
        self.registry.clear()
        self.final_shutdown()

    def final_shutdown(self) -> None:
        """删除 pid 文件、记录退出日志并标记 master 结束。"""

        if self._exited:
            return
        self.status = SupervisorStatus.STOPPED
        if self._owns_pid_file:
            self.pid_file.remove()
        worker_logger.info("Time: %.6f 主进程 %s 退出", time.time(), self.pid)
        # 留出时间让日志落盘
        self._sleep(self.config.shutdown_delay)
        self._exited = True

    def run(self) -> int:
        """启动并守护全部 worker，直到收到退出信号，返回退出码。"""

        self.acquire_pid_file()
        self.install_signal_handlers()
        try:
            self.start()
            while not self._exited:
                self._sleep(self.config.poll_interval)
                # 兜底回收：多个 SIGCHLD 可能被合并
                if not self._exited and self.status is not SupervisorStatus.STOPPED:
                    self.handle_signal(signal.SIGCHLD)
        except Exception:
            logger.exception("master 异常退出 pid=%s", self.pid)
            self.force_stop()
            raise
        finally:
            self.restore_signal_handlers()
        return 0
