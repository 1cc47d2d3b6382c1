"""
Payment Service: 冪等性ストア (Redis)

キーは業務上の相関 ID (order_id)。配信 ID ではないので、
同じ注文のイベントが再送されればトランスポート上の ID に関係なく重複とみなす。

  claim: 処理開始の予約 (SET NX EX)。同時に届いた重複配信のうち 1 つだけが勝つ
  save:  最終結果の記録 (SET NX EX)。最初の書き込みだけが残る (first writer wins)

claim と結果は別キーに置く。claim を取った処理が結果を保存するまで、
ほかの配信は「処理中」として扱われる。
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


class IdempotencyStore(ABC):
    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def save(self, key: str, result: str) -> bool:
        """保存できれば True。既にキーがあれば何もしないで False。"""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def claim(self, key: str) -> bool:
        """処理権を取得できれば True。ほかの処理が既に取得済みなら False。"""

    @abstractmethod
    async def release_claim(self, key: str) -> None:
        """副作用を起こす前に処理を諦めたときだけ呼ぶ。"""


class RedisIdempotencyStore(IdempotencyStore):
    def __init__(
        self,
        redis: aioredis.Redis,
        ttl: timedelta = DEFAULT_TTL,
        prefix: str = "idempotency:payment:",
    ) -> None:
        self.redis = redis
        self.ttl = ttl
        self.prefix = prefix

    def _claim_key(self, key: str) -> str:
        return f"{self.prefix}{key}:claim"

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(f"{self.prefix}{key}"))

    async def save(self, key: str, result: str) -> bool:
        saved = await self.redis.set(
            f"{self.prefix}{key}",
            result,
            nx=True,
            ex=int(self.ttl.total_seconds()),
        )
        if not saved:
            logger.info("Idempotency key %s already recorded, keeping first result", key)
        return bool(saved)

    async def get(self, key: str) -> str | None:
        return await self.redis.get(f"{self.prefix}{key}")

    async def claim(self, key: str) -> bool:
        claimed = await self.redis.set(
            self._claim_key(key),
            "PENDING",
            nx=True,
            ex=int(self.ttl.total_seconds()),
        )
        return bool(claimed)

    async def release_claim(self, key: str) -> None:
        await self.redis.delete(self._claim_key(key))
