from __future__ import annotations

import dataclasses

import pytest

from topicjobs.services import task_registry


async def _handler(_payload: dict[str, object], _meta: dict[str, object]) -> None:
    return None


@pytest.mark.unit
def test_register_topic_consumer_fills_defaults() -> None:
    task_registry.reset_registry()

    definition = task_registry.register_topic_consumer(topic=" mail ", handler=_handler, worker_num=2)

    assert definition.topic == "mail"
    assert definition.stream == task_registry.default_stream_name("mail")
    assert definition.group == "mail_group"
    assert definition.worker_num == 2
    assert definition.max_retries == task_registry.QUEUE_MAX_RETRIES
    assert definition.dead_letter_stream == f"{definition.stream}:dead"
    assert task_registry.get_topic_consumer("mail") is definition
    assert task_registry.list_topic_consumers() == [definition]


@pytest.mark.unit
def test_register_topic_consumer_keeps_explicit_routing() -> None:
    task_registry.reset_registry()

    definition = task_registry.register_topic_consumer(
        topic="sms",
        handler=_handler,
        stream="custom:sms",
        group="g",
        max_retries=-2,
        dead_letter_stream="graveyard",
    )

    assert (definition.stream, definition.group) == ("custom:sms", "g")
    assert definition.max_retries == 0
    assert definition.dead_letter_stream == "graveyard"


@pytest.mark.unit
def test_register_duplicate_topic_raises() -> None:
    task_registry.reset_registry()
    task_registry.register_topic_consumer(topic="same", handler=_handler)

    with pytest.raises(ValueError):
        task_registry.register_topic_consumer(topic="same", handler=_handler)


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [
        {"topic": "", "handler": _handler},
        {"topic": "x", "handler": None},
        {"topic": "x", "handler": _handler, "worker_num": -1},
    ],
)
def test_register_invalid_definition_raises(kwargs: dict[str, object]) -> None:
    task_registry.reset_registry()

    with pytest.raises(ValueError):
        task_registry.register_topic_consumer(**kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
def test_definition_only_carries_routing_fields() -> None:
    assert [field.name for field in dataclasses.fields(task_registry.TopicConsumerDefinition)] == [
        "topic",
        "stream",
        "group",
        "handler",
        "worker_num",
        "max_retries",
        "dead_letter_stream",
    ]
