"""按 topic 组织的 Redis Streams 队列操作。

每个函数都以 topic 消费者定义（或 topic 名称）为单位，stream、消费组与
死信流都从定义里取，调用方不接触原始 key。
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any

from redis.exceptions import ResponseError

from topicjobs.services.redis_service import get_redis
from topicjobs.services.task_registry import TopicConsumerDefinition, default_stream_name, get_topic_consumer
from topicjobs.tasks import load_builtin_tasks

STREAM_MAXLEN = 10000


@dataclass(frozen=True, slots=True)
class TopicMessage:
    """从 topic 读出的一条任务。"""

    message_id: str
    payload: dict[str, Any]
    retry_count: int = 0
    source_message_id: str = ""


def decode_message(message_id: str, fields: dict[str, str]) -> TopicMessage:
    """把 Stream 字段还原为任务，损坏的字段按空载荷 / 0 次重试处理。"""

    try:
        payload = json.loads(fields.get("payload") or "{}")
    except ValueError:
        payload = {}
    try:
        retry_count = max(int(fields.get("retry_count") or 0), 0)
    except ValueError:
        retry_count = 0
    return TopicMessage(
        message_id=str(message_id),
        payload=payload if isinstance(payload, dict) else {},
        retry_count=retry_count,
        source_message_id=str(fields.get("source_message_id") or ""),
    )


def _encode(payload: dict[str, Any], **extra: Any) -> dict[str, str]:
    fields = {"payload": json.dumps(payload, ensure_ascii=True, separators=(",", ":"))}
    fields.update({key: str(value) for key, value in extra.items()})
    return fields


def topic_stream(topic: str) -> str:
    """topic 的投递 stream：先加载任务注册，已注册用其配置，否则用默认名。"""

    load_builtin_tasks()
    definition = get_topic_consumer(topic)
    if definition is not None:
        return definition.stream
    return default_stream_name(str(topic).strip())


async def publish(topic: str, payload: dict[str, Any]) -> str:
    """向 topic 投递一条新任务，返回消息 id。"""

    return str(
        await get_redis().xadd(
            topic_stream(topic),
            _encode(payload, retry_count=0, source_message_id=""),
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
    )


async def ensure_group(definition: TopicConsumerDefinition) -> None:
    """创建 topic 的消费组（已存在则忽略）。"""

    try:
        await get_redis().xgroup_create(name=definition.stream, groupname=definition.group, id="0", mkstream=True)
    except ResponseError as exc:
        if "BUSYGROUP" not in str(exc):
            raise


async def read_messages(
    definition: TopicConsumerDefinition,
    consumer_name: str,
    *,
    block_ms: int,
    count: int = 1,
) -> list[TopicMessage]:
    """以 consumer_name 身份从 topic 消费组读取新任务。"""

    data = await get_redis().xreadgroup(
        groupname=definition.group,
        consumername=consumer_name,
        streams={definition.stream: ">"},
        count=max(count, 1),
        block=max(block_ms, 1),
    )
    return [
        decode_message(message_id, fields)
        for _, entries in data or []
        for message_id, fields in entries
    ]


async def ack(definition: TopicConsumerDefinition, message: TopicMessage) -> None:
    """确认任务已处理完毕（成功、已重投或已进死信）。"""

    await get_redis().xack(definition.stream, definition.group, message.message_id)


async def requeue(definition: TopicConsumerDefinition, message: TopicMessage) -> str:
    """把失败任务以 retry_count + 1 重新投回 topic。"""

    return str(
        await get_redis().xadd(
            definition.stream,
            _encode(
                message.payload,
                retry_count=message.retry_count + 1,
                source_message_id=message.message_id,
            ),
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
    )


async def dead_letter(definition: TopicConsumerDefinition, message: TopicMessage, error: str) -> str:
    """把超过重试上限的任务写入 topic 的死信流。"""

    return str(
        await get_redis().xadd(
            definition.dead_letter_stream,
            _encode(
                message.payload,
                error=error,
                retry_count=message.retry_count + 1,
                topic=definition.topic,
                original_stream=definition.stream,
                original_message_id=message.message_id,
            ),
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
    )


def retries_exhausted(definition: TopicConsumerDefinition, message: TopicMessage) -> bool:
    """本次失败后是否已超过 topic 的重试上限。"""

    return message.retry_count + 1 > definition.max_retries
