"""
Redis-based implementation of PlanStorePort.

Key Structure:
- {prefix}:{thread_id}  - Hash: plan_id -> plan document JSON
- {prefix}:index        - Set of known thread ids

Each plan lives in its own hash field, so saving one plan never rewrites the
other plans of the same thread. Status-only updates are a WATCH/MULTI
read-modify-write on that single field and retry on conflict.
"""

import json
from typing import Dict, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError
import structlog

from planrunner.core.config import settings
from planrunner.core.exceptions import StoreError
from planrunner.domain.plans.models import Plan, PlanStatus
from planrunner.domain.plans.ports import PlanStorePort
from planrunner.infrastructure.plans.state_machine import is_terminal_status


logger = structlog.get_logger(__name__)


class RedisPlanStore(PlanStorePort):
    """Plan documents stored as one Redis hash per thread."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        connection_pool_size: int = 10,
        socket_timeout: float = 5.0,
        max_watch_retries: int = 5,
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize Redis plan store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all Redis keys
            connection_pool_size: Size of connection pool
            socket_timeout: Socket timeout in seconds
            max_watch_retries: Attempts for optimistic status updates
            client: Pre-built client (skips pool creation)
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.key_prefix = key_prefix or settings.PLAN_STORE_KEY_PREFIX
        self.connection_pool_size = connection_pool_size
        self.socket_timeout = socket_timeout
        self.max_watch_retries = max_watch_retries
        self._client = client

    async def _get_redis(self) -> redis.Redis:
        if self._client is None:
            pool = redis.ConnectionPool.from_url(
                self.redis_url,
                max_connections=self.connection_pool_size,
                socket_timeout=self.socket_timeout,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=pool)
            logger.info("Connected to Redis for plan store", redis_url=self.redis_url)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Redis plan store")

    # Key generation helpers

    def _thread_key(self, thread_id: str) -> str:
        return f"{self.key_prefix}:{thread_id}"

    def _index_key(self) -> str:
        return f"{self.key_prefix}:index"

    @staticmethod
    def _deserialize(raw: Optional[str]) -> Optional[Plan]:
        if raw is None:
            return None
        return Plan.from_dict(json.loads(raw))

    # PlanStorePort

    async def create_thread(self, thread_id: str, plans: Optional[Iterable[Plan]] = None) -> None:
        client = await self._get_redis()
        await client.sadd(self._index_key(), thread_id)
        mapping = {plan.id: json.dumps(plan.to_dict()) for plan in plans or []}
        if mapping:
            await client.hset(self._thread_key(thread_id), mapping=mapping)

    async def thread_exists(self, thread_id: str) -> bool:
        client = await self._get_redis()
        return bool(await client.sismember(self._index_key(), thread_id))

    async def get_plan(self, thread_id: str, plan_id: str) -> Optional[Plan]:
        client = await self._get_redis()
        raw = await client.hget(self._thread_key(thread_id), plan_id)
        return self._deserialize(raw)

    async def list_plans(self, thread_id: str) -> Dict[str, Plan]:
        client = await self._get_redis()
        raw_plans = await client.hgetall(self._thread_key(thread_id))
        return {plan_id: self._deserialize(raw) for plan_id, raw in raw_plans.items()}

    async def save_plan(self, thread_id: str, plan: Plan) -> None:
        client = await self._get_redis()
        await client.sadd(self._index_key(), thread_id)
        await client.hset(self._thread_key(thread_id), plan.id, json.dumps(plan.to_dict()))
        logger.debug(
            "Plan saved",
            thread_id=thread_id,
            plan_id=plan.id,
            status=plan.status.value,
        )

    async def update_plan_status(
        self,
        thread_id: str,
        plan_id: str,
        status: PlanStatus,
    ) -> Optional[Plan]:
        client = await self._get_redis()
        key = self._thread_key(thread_id)

        for attempt in range(self.max_watch_retries):
            async with client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    plan = self._deserialize(await pipe.hget(key, plan_id))
                    if plan is None or is_terminal_status(plan.status):
                        await pipe.unwatch()
                        return plan

                    plan.status = status
                    plan.touch()
                    if is_terminal_status(status):
                        plan.completed_at = plan.updated_at

                    pipe.multi()
                    pipe.hset(key, plan_id, json.dumps(plan.to_dict()))
                    await pipe.execute()
                    return plan
                except WatchError:
                    logger.debug(
                        "Concurrent plan update, retrying",
                        thread_id=thread_id,
                        plan_id=plan_id,
                        attempt=attempt + 1,
                    )

        raise StoreError(f"Could not update plan {plan_id} after {self.max_watch_retries} attempts")
