"""Infrastructure adapter for cross-instance plan cancellation."""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis_async
import structlog

from planrunner.core.config import settings
from planrunner.domain.plans.ports import PlanCancellationPort


logger = structlog.get_logger(__name__)


class RedisPlanCancellationAdapter(PlanCancellationPort):
    """Adapter that relays cancellation flags through Redis.

    A cancel request that lands on an instance without a local run sets the
    flag; the instance driving the plan sees it at its next step boundary.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self.key_prefix = key_prefix or settings.CANCEL_FLAG_KEY_PREFIX
        self.ttl_seconds = ttl_seconds or settings.CANCEL_FLAG_TTL_SECONDS

    def _key(self, plan_id: str) -> str:
        return f"{self.key_prefix}:{plan_id}"

    async def _client(self) -> redis_async.Redis:
        return await redis_async.from_url(self.redis_url, decode_responses=True)

    async def is_cancelled(self, plan_id: str) -> bool:
        try:
            client = await self._client()
            try:
                result = await client.get(self._key(plan_id))
            finally:
                await client.aclose()
            return result is not None
        except Exception as exc:
            logger.debug("Failed to check plan cancellation", plan_id=plan_id, error=str(exc))
            return False

    async def cancel(self, plan_id: str) -> None:
        try:
            client = await self._client()
            try:
                await client.set(self._key(plan_id), "1", ex=self.ttl_seconds)
            finally:
                await client.aclose()
        except Exception as exc:
            logger.warning("Failed to set plan cancellation", plan_id=plan_id, error=str(exc))

    async def clear(self, plan_id: str) -> None:
        try:
            client = await self._client()
            try:
                await client.delete(self._key(plan_id))
            finally:
                await client.aclose()
        except Exception as exc:
            logger.debug("Failed to clear plan cancellation", plan_id=plan_id, error=str(exc))
