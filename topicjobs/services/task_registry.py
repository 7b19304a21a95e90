"""topic 消费者注册中心。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from topicjobs.config import QUEUE_MAX_RETRIES, REDIS_KEY_PREFIX

TopicHandler = Callable[[dict[str, Any], dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class TopicConsumerDefinition:
    """topic 消费者定义，stream / group / 重试 / 死信在注册时全部确定。"""

    topic: str
    stream: str
    group: str
    handler: TopicHandler
    worker_num: int
    max_retries: int
    dead_letter_stream: str


_topic_consumers: dict[str, TopicConsumerDefinition] = {}


def default_stream_name(topic: str) -> str:
    """topic 默认对应的 Redis Stream 名称。"""

    return f"{REDIS_KEY_PREFIX}:topic:{topic}"


def register_topic_consumer(
    *,
    topic: str,
    handler: TopicHandler,
    worker_num: int = 1,
    stream: str | None = None,
    group: str | None = None,
    max_retries: int | None = None,
    dead_letter_stream: str | None = None,
) -> TopicConsumerDefinition:
    """注册 topic 消费者定义。"""

    normalized_topic = str(topic).strip()
    if not normalized_topic:
        raise ValueError("topic 不能为空")
    if not callable(handler):
        raise ValueError("handler 必须可调用")
    if int(worker_num) < 0:
        raise ValueError("worker_num 不能小于 0")
    if normalized_topic in _topic_consumers:
        raise ValueError(f"topic 消费者已注册: {normalized_topic}")

    normalized_stream = str(stream or "").strip() or default_stream_name(normalized_topic)
    retries = QUEUE_MAX_RETRIES if max_retries is None else max_retries
    definition = TopicConsumerDefinition(
        topic=normalized_topic,
        stream=normalized_stream,
        group=str(group or "").strip() or f"{normalized_topic}_group",
        handler=handler,
        worker_num=int(worker_num),
        max_retries=max(int(retries), 0),
        dead_letter_stream=str(dead_letter_stream or "").strip() or f"{normalized_stream}:dead",
    )
    _topic_consumers[definition.topic] = definition
    return definition


def get_topic_consumer(topic: str) -> TopicConsumerDefinition | None:
    """按 topic 查找消费者定义。"""

    return _topic_consumers.get(str(topic).strip())


def list_topic_consumers() -> list[TopicConsumerDefinition]:
    """返回全部 topic 消费者定义（注册顺序）。"""

    return list(_topic_consumers.values())


def reset_registry() -> None:
    """重置注册中心（主要用于测试）。"""

    _topic_consumers.clear()
