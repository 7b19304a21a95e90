"""topic 列表来源。"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from topicjobs.config import TOPICS
from topicjobs.services.task_registry import list_topic_consumers
from topicjobs.tasks import load_builtin_tasks

logger = logging.getLogger(__name__)


class TopicSource(Protocol):
    """master 启动时读取 topic 列表的来源。"""

    def get_topics(self) -> list[dict[str, Any]]: ...


def parse_topics(raw: str) -> list[dict[str, Any]]:
    """解析 "mail:2,sms:1" 形式的 topic 配置，缺省数量为 1。"""

    topics: list[dict[str, Any]] = []
    for item in str(raw or "").split(","):
        chunk = item.strip()
        if not chunk:
            continue
        name, _, count = chunk.partition(":")
        name = name.strip()
        if not name:
            continue
        count = count.strip()
        if not count:
            topics.append({"name": name, "worker_num": 1})
            continue
        try:
            worker_num = int(count)
        except ValueError:
            logger.warning("忽略非法 topic 配置: %s", chunk)
            continue
        topics.append({"name": name, "worker_num": worker_num})
    return topics


class EnvTopicSource:
    """从 PTJ_TOPICS 环境变量读取 topic。"""

    def __init__(self, raw: str = TOPICS) -> None:
        self.raw = raw

    def get_topics(self) -> list[dict[str, Any]]:
        return parse_topics(self.raw)


class RegistryTopicSource:
    """从 topic 消费者注册中心读取 topic。"""

    def get_topics(self) -> list[dict[str, Any]]:
        load_builtin_tasks()
        return [{"name": item.topic, "worker_num": item.worker_num} for item in list_topic_consumers()]


def build_topic_source(raw: str = TOPICS) -> TopicSource:
    """配置了 PTJ_TOPICS 时使用环境变量，否则使用注册中心。"""

    if str(raw or "").strip():
        return EnvTopicSource(raw)
    return RegistryTopicSource()
