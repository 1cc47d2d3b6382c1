"""
Inventory Service: 分散ロック (Redis リース)

商品ごとの台帳変更を複数プロセス間で直列化する。

  acquire: SET key token NX PX lease  → 空いていればトークンを返す
  release: Lua スクリプトで「値がトークンと一致する場合のみ DEL」

トークンは acquire の戻り値として呼び出し側に渡され、
release まで呼び出し側が持ち回る（プロセス内の共有辞書は持たない）。
リースは保持者がクラッシュしても自動で失効する。

ネットワーク分断時の線形化可能性は保証しない。リースが一瞬重なっても
台帳側の数量チェックが不正な状態を拒否する。
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator
from uuid import uuid4

import redis.asyncio as aioredis

from .errors import LockUnavailable

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


@dataclass(frozen=True)
class LockLease:
    key: str
    token: str
    expires_at: datetime


class DistributedLock(ABC):
    """acquire / release の 2 操作だけを持つロック。hold() はその上のスコープ構文。"""

    @abstractmethod
    async def acquire(self, key: str, lease_seconds: float) -> str | None:
        """ロックを取得できればトークン、使用中なら None を返す。待たない。"""

    @abstractmethod
    async def release(self, key: str, token: str) -> bool:
        """トークンが一致したときだけ解放し、True を返す。"""

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        lease_seconds: float,
        wait_seconds: float = 0.0,
        retry_interval: float = 0.05,
    ) -> AsyncIterator[LockLease]:
        """
        ロックを取得してブロックを実行し、どの経路で抜けても解放する。

        wait_seconds は呼び出し側が決める待ち時間。0 なら即座に LockUnavailable。
        例外・キャンセル (CancelledError) でも finally で release される。
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds

        token = await self.acquire(key, lease_seconds)
        while token is None and loop.time() < deadline:
            await asyncio.sleep(retry_interval)
            token = await self.acquire(key, lease_seconds)

        if token is None:
            logger.warning("Failed to acquire lock for key: %s", key)
            raise LockUnavailable(key)

        lease = LockLease(
            key=key,
            token=token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=lease_seconds),
        )
        try:
            yield lease
        finally:
            await self.release(key, token)


class RedisDistributedLock(DistributedLock):
    def __init__(self, redis: aioredis.Redis, prefix: str = "lock:") -> None:
        self.redis = redis
        self.prefix = prefix
        self._release_script = redis.register_script(RELEASE_SCRIPT)

    async def acquire(self, key: str, lease_seconds: float) -> str | None:
        token = uuid4().hex
        acquired = await self.redis.set(
            f"{self.prefix}{key}",
            token,
            nx=True,
            px=max(1, int(lease_seconds * 1000)),
        )
        if acquired:
            logger.debug("Lock acquired for key: %s", key)
            return token
        logger.debug("Lock busy for key: %s", key)
        return None

    async def release(self, key: str, token: str) -> bool:
        result = await self._release_script(keys=[f"{self.prefix}{key}"], args=[token])
        released = int(result) == 1
        if released:
            logger.debug("Lock released for key: %s", key)
        else:
            logger.warning("Failed to release lock for key: %s - token mismatch", key)
        return released


def product_lock_key(product_id) -> str:
    return f"inventory:lock:{product_id}"
