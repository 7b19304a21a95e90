from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator

import pytest

from topicjobs.services import job_runner, task_registry
from topicjobs.services.queue_service import TopicMessage, retries_exhausted
from topicjobs.services.task_registry import TopicConsumerDefinition


class FakeQueue:
    def __init__(self) -> None:
        self.messages: list[TopicMessage] = []
        self.groups: list[tuple[str, str]] = []
        self.acked: list[str] = []
        self.requeued: list[TopicMessage] = []
        self.dead: list[dict[str, Any]] = []
        self.session_open = False
        self.sessions = 0

    async def ensure_group(self, definition: TopicConsumerDefinition) -> None:
        assert self.session_open
        self.groups.append((definition.stream, definition.group))

    async def read_messages(self, definition: TopicConsumerDefinition, consumer_name: str, **_kwargs: Any) -> list[TopicMessage]:
        if not self.messages:
            return []
        return [self.messages.pop(0)]

    async def ack(self, definition: TopicConsumerDefinition, message: TopicMessage) -> None:
        self.acked.append(message.message_id)

    async def requeue(self, definition: TopicConsumerDefinition, message: TopicMessage) -> str:
        self.requeued.append(message)
        return "9-0"

    async def dead_letter(self, definition: TopicConsumerDefinition, message: TopicMessage, error: str) -> str:
        self.dead.append({"stream": definition.dead_letter_stream, "message": message, "error": error})
        return "9-1"

    @asynccontextmanager
    async def redis_session(self) -> AsyncIterator[None]:
        self.session_open = True
        try:
            yield None
        finally:
            self.session_open = False
            self.sessions += 1


async def _noop_handler(_payload: dict[str, Any], _meta: dict[str, Any]) -> None:
    return None


@pytest.fixture
def fake_queue(monkeypatch: pytest.MonkeyPatch) -> Iterator[FakeQueue]:
    queue = FakeQueue()
    for name in ("ensure_group", "read_messages", "ack", "requeue", "dead_letter", "redis_session"):
        monkeypatch.setattr(job_runner, name, getattr(queue, name))
    task_registry.reset_registry()
    yield queue
    task_registry.reset_registry()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_consume_topic_processes_until_queue_is_empty(fake_queue: FakeQueue) -> None:
    seen: list[dict[str, Any]] = []

    async def handler(payload: dict[str, Any], meta: dict[str, Any]) -> None:
        seen.append({"payload": payload, "topic": meta["topic"], "message_id": meta["message_id"]})

    task_registry.register_topic_consumer(topic="mail", handler=handler, stream="s:mail", group="g")
    fake_queue.messages = [TopicMessage("1-0", {"n": 1}), TopicMessage("2-0", {"n": 2})]

    processed = await job_runner.consume_topic("mail", max_pop=10, block_ms=100)

    assert processed == 2
    assert seen == [
        {"payload": {"n": 1}, "topic": "mail", "message_id": "1-0"},
        {"payload": {"n": 2}, "topic": "mail", "message_id": "2-0"},
    ]
    assert fake_queue.acked == ["1-0", "2-0"]
    assert fake_queue.groups == [("s:mail", "g")]
    assert fake_queue.sessions == 1
    assert fake_queue.session_open is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_consume_topic_stops_at_max_pop(fake_queue: FakeQueue) -> None:
    async def handler(_payload: dict[str, Any], _meta: dict[str, Any]) -> None:
        return None

    task_registry.register_topic_consumer(topic="mail", handler=handler)
    fake_queue.messages = [TopicMessage(f"{index}-0", {"n": index}) for index in range(5)]

    processed = await job_runner.consume_topic("mail", max_pop=3, block_ms=100)

    assert processed == 3
    assert len(fake_queue.messages) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_message_is_requeued_then_dead_lettered(fake_queue: FakeQueue) -> None:
    async def handler(_payload: dict[str, Any], _meta: dict[str, Any]) -> None:
        raise RuntimeError("boom")

    definition = task_registry.register_topic_consumer(topic="mail", handler=handler, stream="s:mail", max_retries=1)
    first_try = TopicMessage("1-0", {"n": 1})
    second_try = TopicMessage("2-0", {"n": 1}, retry_count=1, source_message_id="1-0")

    first = await job_runner.handle_message(definition, first_try, consumer_name="c")
    second = await job_runner.handle_message(definition, second_try, consumer_name="c")

    assert first == "retried"
    assert fake_queue.requeued == [first_try]
    assert second == "dead"
    assert fake_queue.dead == [{"stream": "s:mail:dead", "message": second_try, "error": "boom"}]
    assert fake_queue.acked == ["1-0", "2-0"]


@pytest.mark.unit
def test_retry_limit_defaults_to_queue_config() -> None:
    task_registry.reset_registry()
    definition = task_registry.register_topic_consumer(topic="mail", handler=_noop_handler)

    exhausted = TopicMessage("1-0", {}, retry_count=definition.max_retries)

    assert definition.max_retries == task_registry.QUEUE_MAX_RETRIES
    assert retries_exhausted(definition, exhausted) is True
    task_registry.reset_registry()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unregistered_topic_returns_without_touching_queue(fake_queue: FakeQueue) -> None:
    processed = await job_runner.consume_topic("nobody", max_pop=3, block_ms=100)

    assert processed == 0
    assert fake_queue.groups == []
    assert fake_queue.sessions == 0
