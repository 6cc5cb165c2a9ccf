"""
Order store adapters.

The order store is an attribute map keyed by order id. Status writes go
through ``compare_and_set`` so concurrent webhook deliveries and poll
refreshes for one order serialize on that order only:

- ``InMemoryOrderStore`` holds a per-order ``asyncio.Lock`` around each
  read-modify-write.
- ``RedisOrderStore`` keeps each order in a hash and runs creation and
  compare-and-set as Lua scripts, which Redis executes atomically.
"""
import asyncio
import copy
import json
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from order_reconciler.core.exceptions import DuplicateOrderError, UnknownOrderError
from order_reconciler.core.models import Order, OrderStatus

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


class OrderStore(ABC):
    """Get/create/update operations against the external order store."""

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        """Return the order, or None if the store has no record of it."""

    @abstractmethod
    async def create(self, order: Order) -> None:
        """
        Persist a new order.

        Raises:
            DuplicateOrderError: If a record already exists for the order id
        """

    @abstractmethod
    async def update(self, order_id: str, fields: Record) -> None:
        """
        Merge ``fields`` into the stored record unconditionally.

        Raises:
            UnknownOrderError: If the order does not exist
        """

    @abstractmethod
    async def compare_and_set(
        self, order_id: str, expected_status: OrderStatus, fields: Record
    ) -> bool:
        """
        Merge ``fields`` only if the stored status is still ``expected_status``.

        Returns:
            bool: True if the write happened, False if another writer got there first

        Raises:
            UnknownOrderError: If the order does not exist
        """

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryOrderStore(OrderStore):
    """Process-local order store, for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, order_id: str) -> Optional[Order]:
        record = self._records.get(order_id)
        if record is None:
            return None
        return Order.from_record(copy.deepcopy(record))

    async def create(self, order: Order) -> None:
        async with self._locks[order.order_id]:
            if order.order_id in self._records:
                raise DuplicateOrderError(order.order_id)
            self._records[order.order_id] = order.to_record()

    async def update(self, order_id: str, fields: Record) -> None:
        async with self._locks[order_id]:
            record = self._records.get(order_id)
            if record is None:
                raise UnknownOrderError(order_id)
            record.update(copy.deepcopy(fields))

    async def compare_and_set(
        self, order_id: str, expected_status: OrderStatus, fields: Record
    ) -> bool:
        async with self._locks[order_id]:
            record = self._records.get(order_id)
            if record is None:
                raise UnknownOrderError(order_id)
            if record.get("status") != expected_status.value:
                return False
            record.update(copy.deepcopy(fields))
            return True


# KEYS[1] = order key; ARGV = alternating field/json-value pairs
CREATE_LUA_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], unpack(ARGV))
return 1
"""

# KEYS[1] = order key; ARGV[1] = json-encoded expected status ('' = any)
# ARGV[2..] = alternating field/json-value pairs
# Returns: -1 missing, 0 status mismatch, 1 written
COMPARE_AND_SET_LUA_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
if ARGV[1] ~= '' and redis.call('HGET', KEYS[1], 'status') ~= ARGV[1] then
    return 0
end
if #ARGV > 1 then
    redis.call('HSET', KEYS[1], unpack(ARGV, 2))
end
return 1
"""


class RedisOrderStore(OrderStore):
    """
    Redis-backed order store.

    Each order is a hash whose fields hold JSON-encoded values, so a single
    attribute (``status``) can be compared and replaced without rewriting
    the whole document.
    """

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "order:"):
        """
        Initialize the store.

        Args:
            redis_client: Redis client created with ``decode_responses=True``
            key_prefix: Prefix for order keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._create_script = self.redis.register_script(CREATE_LUA_SCRIPT)
        self._cas_script = self.redis.register_script(COMPARE_AND_SET_LUA_SCRIPT)

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        key_prefix: str = "order:",
        socket_timeout: Optional[float] = 5.0,
        socket_connect_timeout: Optional[float] = 5.0,
    ) -> "RedisOrderStore":
        client = aioredis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, order_id: str) -> str:
        return f"{self.key_prefix}{order_id}"

    @staticmethod
    def _flatten(fields: Record) -> list:
        args: list = []
        for name, value in fields.items():
            args.extend([name, json.dumps(value, separators=(",", ":"))])
        return args

    async def get(self, order_id: str) -> Optional[Order]:
        raw = await self.redis.hgetall(self._key(order_id))
        if not raw:
            return None
        return Order.from_record({name: json.loads(value) for name, value in raw.items()})

    async def create(self, order: Order) -> None:
        created = await self._create_script(
            keys=[self._key(order.order_id)], args=self._flatten(order.to_record())
        )
        if int(created) == 0:
            raise DuplicateOrderError(order.order_id)

    async def update(self, order_id: str, fields: Record) -> None:
        result = await self._cas_script(
            keys=[self._key(order_id)], args=["", *self._flatten(fields)]
        )
        if int(result) == -1:
            raise UnknownOrderError(order_id)

    async def compare_and_set(
        self, order_id: str, expected_status: OrderStatus, fields: Record
    ) -> bool:
        result = int(
            await self._cas_script(
                keys=[self._key(order_id)],
                args=[json.dumps(expected_status.value), *self._flatten(fields)],
            )
        )
        if result == -1:
            raise UnknownOrderError(order_id)
        return result == 1

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        await self.redis.aclose()
