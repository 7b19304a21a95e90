"""topic 任务执行：worker 子进程内消费单个 topic 的队列。"""

from __future__ import annotations

import asyncio
import os
import time

from topicjobs.config import QUEUE_BLOCK_MS, WORKER_MAX_POP
from topicjobs.services.log_service import LOG_DEST_WORKER, destination_logger
from topicjobs.services.queue_service import (
    TopicMessage,
    ack,
    dead_letter,
    ensure_group,
    read_messages,
    requeue,
    retries_exhausted,
)
from topicjobs.services.redis_service import redis_session
from topicjobs.services.task_registry import TopicConsumerDefinition, get_topic_consumer
from topicjobs.tasks import load_builtin_tasks

logger = destination_logger(LOG_DEST_WORKER)


def build_consumer_name(topic: str) -> str:
    """消费组内的消费者名称。"""

    return f"{topic}:{os.getpid()}"


async def handle_message(
    definition: TopicConsumerDefinition,
    message: TopicMessage,
    *,
    consumer_name: str,
) -> str:
    """执行单条任务并处理重试/死信，返回 success / retried / dead。"""

    start = time.perf_counter()
    try:
        await definition.handler(
            message.payload,
            {
                "topic": definition.topic,
                "stream": definition.stream,
                "group": definition.group,
                "consumer": consumer_name,
                "message_id": message.message_id,
                "retry_count": message.retry_count,
            },
        )
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        error_message = str(exc) or exc.__class__.__name__
    else:
        await ack(definition, message)
        logger.debug(
            "消息处理成功 topic=%s message_id=%s duration_ms=%d",
            definition.topic,
            message.message_id,
            int((time.perf_counter() - start) * 1000),
        )
        return "success"

    if retries_exhausted(definition, message):
        await dead_letter(definition, message, error_message)
        outcome = "dead"
        logger.error(
            "消息进入死信 topic=%s message_id=%s retry=%d error=%s",
            definition.topic,
            message.message_id,
            message.retry_count + 1,
            error_message,
        )
    else:
        await requeue(definition, message)
        outcome = "retried"
        logger.warning(
            "消息处理失败，重新入队 topic=%s message_id=%s retry=%d error=%s",
            definition.topic,
            message.message_id,
            message.retry_count + 1,
            error_message,
        )
    await ack(definition, message)
    return outcome


async def consume_topic(topic: str, *, max_pop: int = WORKER_MAX_POP, block_ms: int = QUEUE_BLOCK_MS) -> int:
    """消费 topic 直到取空或达到 max_pop 条，返回处理条数。"""

    load_builtin_tasks()
    definition = get_topic_consumer(topic)
    if definition is None:
        logger.warning("topic=%s 未注册消费者，worker 直接结束", topic)
        return 0

    consumer_name = build_consumer_name(definition.topic)
    processed = 0
    async with redis_session():
        await ensure_group(definition)
        while processed < max(max_pop, 1):
            messages = await read_messages(definition, consumer_name, block_ms=max(block_ms, 100))
            if not messages:
                break
            for message in messages:
                await handle_message(definition, message, consumer_name=consumer_name)
                processed += 1

    logger.info("topic=%s consumer=%s 本轮处理 %d 条", definition.topic, consumer_name, processed)
    return processed


def run_topic(topic: str) -> None:
    """worker 默认任务入口（同步）。"""

    asyncio.run(consume_topic(topic))
