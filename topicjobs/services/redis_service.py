"""Redis 连接服务。

worker 每轮任务都在新的 ``asyncio.run`` 中执行，客户端与事件循环绑定，
因此这里按当前事件循环缓存客户端，循环变化时丢弃旧客户端重新建立。
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from topicjobs.config import REDIS_URL

_client: Redis | None = None
_client_loop: asyncio.AbstractEventLoop | None = None


def get_redis() -> Redis:
    """返回绑定到当前事件循环的 Redis 客户端。"""

    global _client, _client_loop
    loop = asyncio.get_running_loop()
    if _client is None or _client_loop is not loop:
        _client = Redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
        _client_loop = loop
    return _client


async def close_redis() -> None:
    """关闭当前客户端（未创建时无操作）。"""

    global _client, _client_loop
    client, _client, _client_loop = _client, None, None
    if client is not None:
        await client.aclose()


@asynccontextmanager
async def redis_session() -> AsyncIterator[Redis]:
    """在一次任务执行范围内使用 Redis，退出时关闭连接。"""

    try:
        yield get_redis()
    finally:
        await close_redis()


async def ping_redis() -> bool:
    """Redis 是否可连通。"""

    try:
        return bool(await get_redis().ping())
    except (RedisError, OSError):
        return False
