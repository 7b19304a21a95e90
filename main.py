"""项目主启动入口（master 进程与控制命令）。"""

from __future__ import annotations

import argparse
import logging
import sys

from topicjobs.config import LOG_LEVEL
from topicjobs.services.control_service import COMMAND_SIGNALS, master_status, send_master_signal
from topicjobs.services.log_service import LOG_DEST_MASTER, log_event, setup_logging
from topicjobs.services.pid_service import MasterAlreadyRunningError, PidFile
from topicjobs.services.process_supervisor import ProcessSupervisor, load_supervisor_config
from topicjobs.services.topic_source import build_topic_source

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令参数。"""

    parser = argparse.ArgumentParser(description="topic 队列 worker 进程管理")
    parser.add_argument(
        "command",
        nargs="?",
        default="start",
        choices=["start", "stop", "drain", "status"],
        help="start 启动 master；stop 强制退出；drain 平滑退出；status 查看状态",
    )
    parser.add_argument("--foreground", action="store_true", help="前台运行，不脱离终端")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """命令入口。"""

    args = parse_args(argv)
    config = load_supervisor_config(foreground=args.foreground)
    setup_logging(config.log_path, LOG_LEVEL)
    pid_file = PidFile(config.pid_dir)

    if args.command == "status":
        pid = master_status(pid_file)
        if pid is None:
            print("master 未运行")
            return 1
        print(f"master 运行中 pid={pid}")
        return 0

    if args.command in COMMAND_SIGNALS:
        return 0 if send_master_signal(pid_file, COMMAND_SIGNALS[args.command]) else 1

    logger.info("启动参数: pid_dir=%s daemonize=%s task=%s", config.pid_dir, config.daemonize, config.worker_task)
    supervisor = ProcessSupervisor(config, build_topic_source())
    try:
        return supervisor.run()
    except MasterAlreadyRunningError as exc:
        log_event(str(exc), "error", LOG_DEST_MASTER)
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
