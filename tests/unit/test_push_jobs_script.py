from __future__ import annotations

from contextlib import asynccontextmanager
import importlib.util
from pathlib import Path
from typing import Any, AsyncIterator, Iterator

import pytest

from topicjobs.services import queue_service, task_registry
from topicjobs.tasks import topic_builtin


class RecordingRedis:
    def __init__(self) -> None:
        self.streams: list[str] = []

    async def xadd(self, stream: str, fields: dict[str, str], **_kwargs: Any) -> str:
        self.streams.append(stream)
        return f"{len(self.streams)}-0"


@pytest.fixture(scope="module")
def push_module():
    """加载投递脚本模块，直接验证参数解析。"""

    script_path = Path(__file__).resolve().parents[2] / "scripts" / "push_jobs.py"
    spec = importlib.util.spec_from_file_location("push_jobs", script_path)
    if spec is None or spec.loader is None:
        raise RuntimeError("无法加载投递脚本")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def redis_stub(push_module: Any, monkeypatch: pytest.MonkeyPatch) -> Iterator[RecordingRedis]:
    redis = RecordingRedis()

    @asynccontextmanager
    async def fake_session() -> AsyncIterator[RecordingRedis]:
        yield redis

    monkeypatch.setattr(queue_service, "get_redis", lambda: redis)
    monkeypatch.setattr(push_module, "redis_session", fake_session)
    task_registry.reset_registry()
    yield redis
    task_registry.reset_registry()


@pytest.mark.unit
def test_parse_payload_requires_json_object(push_module: Any) -> None:
    assert push_module.parse_payload('{"job": "x"}') == {"job": "x"}
    with pytest.raises(ValueError):
        push_module.parse_payload("[1]")
    with pytest.raises(ValueError):
        push_module.parse_payload("{oops")


@pytest.mark.unit
def test_main_pushes_count_messages(
    push_module: Any, redis_stub: RecordingRedis, capsys: pytest.CaptureFixture[str]
) -> None:
    assert push_module.main(["sms", '{"job": "otp"}', "--count", "2"]) == 0

    assert redis_stub.streams == [task_registry.default_stream_name("sms")] * 2
    assert capsys.readouterr().out.split() == ["1-0", "2-0"]


@pytest.mark.unit
def test_main_targets_stream_registered_by_task_loader(
    push_module: Any, redis_stub: RecordingRedis, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def handler(_payload: dict[str, Any], _meta: dict[str, Any]) -> None:
        return None

    def register_tasks() -> None:
        if task_registry.get_topic_consumer("mail") is None:
            task_registry.register_topic_consumer(topic="mail", handler=handler, stream="custom:mail")

    monkeypatch.setattr(topic_builtin, "register_tasks", register_tasks)

    assert push_module.main(["mail", '{"job": "welcome"}']) == 0

    assert redis_stub.streams == ["custom:mail"]


@pytest.mark.unit
def test_main_rejects_invalid_payload(push_module: Any, capsys: pytest.CaptureFixture[str]) -> None:
    assert push_module.main(["mail", "not-json"]) == 2
    assert "payload" in capsys.readouterr().err
