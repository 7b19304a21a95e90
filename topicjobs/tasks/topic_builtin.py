"""内置 topic 消费者注册。"""

from __future__ import annotations

import logging
from typing import Any

from topicjobs.services.task_registry import get_topic_consumer, register_topic_consumer

logger = logging.getLogger(__name__)

DEMO_TOPIC = "demo"


async def _handle_demo_job(payload: dict[str, Any], meta: dict[str, Any]) -> None:
    """消费示例任务消息。"""

    job_name = str(payload.get("job") or "unknown")
    if payload.get("fail"):
        raise RuntimeError(f"示例任务主动失败 job={job_name}")
    logger.info("示例消费者收到任务=%s message_id=%s retry=%s", job_name, meta.get("message_id"), meta.get("retry_count"))


def register_tasks() -> None:
    """注册内置 topic 消费者（幂等）。"""

    if get_topic_consumer(DEMO_TOPIC) is not None:
        return
    register_topic_consumer(
        topic=DEMO_TOPIC,
        handler=_handle_demo_job,
        worker_num=1,
    )
