"""topic worker 子进程入口。"""

from __future__ import annotations

from dataclasses import dataclass
import asyncio
import importlib
import inspect
import os
from pathlib import Path
from typing import Any, Callable, Mapping

from topicjobs.config import LOG_LEVEL, LOG_PATH, PROCESS_NAME, WORKER_TASK
from topicjobs.services.log_service import LOG_DEST_WORKER, destination_logger, log_event, setup_logging
from topicjobs.services.process_utils import set_process_title

logger = destination_logger(LOG_DEST_WORKER)


class TaskLoadError(RuntimeError):
    """任务入口无法导入。"""


@dataclass(frozen=True, slots=True)
class WorkerIdentity:
    """worker 身份信息（由 master 通过环境变量传入）。"""

    slot_id: int
    topic: str
    task: str
    master_pid: int
    process_name: str
    log_path: Path


def read_worker_identity(environ: Mapping[str, str] | None = None) -> WorkerIdentity:
    """读取 worker 身份信息。"""

    env = os.environ if environ is None else environ
    try:
        slot_id = int(env.get("PTJ_WORKER_SLOT", "0"))
    except ValueError:
        slot_id = 0
    try:
        master_pid = int(env.get("PTJ_MASTER_PID", "0"))
    except ValueError:
        master_pid = 0
    raw_log_path = str(env.get("PTJ_LOG_PATH", "")).strip()
    return WorkerIdentity(
        slot_id=slot_id,
        topic=str(env.get("PTJ_WORKER_TOPIC", "")).strip(),
        task=str(env.get("PTJ_WORKER_TASK", "")).strip() or WORKER_TASK,
        master_pid=master_pid,
        process_name=str(env.get("PTJ_PROCESS_NAME", "")) or PROCESS_NAME,
        log_path=Path(raw_log_path) if raw_log_path else LOG_PATH,
    )


def load_task(path: str) -> Callable[[str], Any]:
    """按 "module:attr" 导入任务函数。"""

    module_name, _, attr = str(path).partition(":")
    if not module_name or not attr:
        raise TaskLoadError(f"任务入口格式应为 module:attr，实际为 {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise TaskLoadError(f"无法导入任务模块 {module_name}: {exc}") from exc
    task = getattr(module, attr, None)
    if not callable(task):
        raise TaskLoadError(f"任务入口不可调用: {path}")
    return task


def run_worker(identity: WorkerIdentity, task: Callable[[str], Any]) -> int:
    """执行任务，业务异常只记录不外抛。"""

    try:
        result = task(identity.topic)
        if inspect.isawaitable(result):

            async def _await_result() -> Any:
                return await result

            asyncio.run(_await_result())
    except Exception as exc:
        logger.error("worker id: %d topic: %s 任务异常: %s", identity.slot_id, identity.topic, exc, exc_info=True)
    log_event(f"worker id: {identity.slot_id} is done!!!", "info", LOG_DEST_WORKER)
    return 0


def main() -> int:
    """worker 同步入口。"""

    identity = read_worker_identity()
    setup_logging(identity.log_path, LOG_LEVEL)
    set_process_title(
        f"job {identity.slot_id} {identity.topic} master-{identity.master_pid}{identity.process_name}"
    )

    try:
        task = load_task(identity.task)
    except TaskLoadError as exc:
        logger.error("worker id: %d 启动失败: %s", identity.slot_id, exc)
        return 1

    try:
        return run_worker(identity, task)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
