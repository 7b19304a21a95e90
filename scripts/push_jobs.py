"""向 topic 队列投递任务的命令（python -m scripts.push_jobs demo '{"job": "x"}'）。"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from topicjobs.services.queue_service import publish
from topicjobs.services.redis_service import redis_session


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令参数。"""

    parser = argparse.ArgumentParser(description="向 topic 投递任务")
    parser.add_argument("topic", help="topic 名称")
    parser.add_argument("payload", nargs="?", default="{}", help="JSON 对象载荷")
    parser.add_argument("--count", type=int, default=1, help="投递条数，默认 1")
    return parser.parse_args(argv)


def parse_payload(raw: str) -> dict[str, Any]:
    """解析 JSON 载荷，必须为对象。"""

    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise ValueError(f"payload 不是合法 JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise ValueError("payload 必须是 JSON 对象")
    return value


async def push(topic: str, payload: dict[str, Any], count: int) -> list[str]:
    """投递 count 条任务，返回消息 id。"""

    async with redis_session():
        return [await publish(topic, payload) for _ in range(max(count, 1))]


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        payload = parse_payload(args.payload)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    message_ids = asyncio.run(push(args.topic, payload, args.count))
    for message_id in message_ids:
        print(message_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
