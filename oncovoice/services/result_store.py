"""
Result store: one JSON record per team, last write wins.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from pydantic import ValidationError as PydanticValidationError

from oncovoice.core.exceptions import StorageError
from oncovoice.core.logging import get_logger
from oncovoice.models.responses import TeamResult
from oncovoice.teams import result_key

logger = get_logger(__name__)


class ResultStore(ABC):
    """Get/set/list access to per-team result records."""

    @abstractmethod
    async def get(self, team_id: int) -> Optional[TeamResult]:
        ...

    @abstractmethod
    async def set(self, team_id: int, record: TeamResult) -> None:
        ...

    async def list(self, team_ids: Iterable[int]) -> Dict[str, Optional[TeamResult]]:
        """Returns `{"team-{id}": record or None}` for every known team."""
        team_ids = list(team_ids)
        records = await asyncio.gather(*(self.get(team_id) for team_id in team_ids))
        return {result_key(team_id): record for team_id, record in zip(team_ids, records)}

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryResultStore(ResultStore):
    """Process-lifetime store for local development; lost on restart."""

    def __init__(self):
        self._records: Dict[str, str] = {}

    async def get(self, team_id: int) -> Optional[TeamResult]:
        raw = self._records.get(result_key(team_id))
        return TeamResult.model_validate_json(raw) if raw else None

    async def set(self, team_id: int, record: TeamResult) -> None:
        # Stored serialized so callers never share a mutable record
        self._records[result_key(team_id)] = record.model_dump_json()


class RedisResultStore(ResultStore):
    """Redis-backed store, records serialized as JSON strings."""

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = ""):
        self._redis = redis_client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "") -> "RedisResultStore":
        return cls(aioredis.from_url(url, decode_responses=True), key_prefix=key_prefix)

    def _key(self, team_id: int) -> str:
        return f"{self._key_prefix}{result_key(team_id)}"

    async def get(self, team_id: int) -> Optional[TeamResult]:
        try:
            raw = await self._redis.get(self._key(team_id))
        except RedisError as e:
            logger.error(f"KV storage error reading team {team_id}: {e}")
            raise StorageError(f"Failed to read result for team {team_id}: {e}")
        if raw is None:
            return None
        try:
            return TeamResult.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Discarding unreadable result record for team {team_id}: {e}")
            return None

    async def set(self, team_id: int, record: TeamResult) -> None:
        try:
            await self._redis.set(self._key(team_id), record.model_dump_json())
        except RedisError as e:
            logger.error(f"KV storage error writing team {team_id}: {e}")
            raise StorageError(f"Failed to save result for team {team_id}: {e}")

    async def list(self, team_ids: Iterable[int]) -> Dict[str, Optional[TeamResult]]:
        team_ids = list(team_ids)
        if not team_ids:
            return {}
        try:
            raws = await self._redis.mget([self._key(team_id) for team_id in team_ids])
        except RedisError as e:
            logger.error(f"KV storage error listing results: {e}")
            raise StorageError(f"Failed to fetch results: {e}")

        results = {}
        for team_id, raw in zip(team_ids, raws):
            record = None
            if raw is not None:
                try:
                    record = TeamResult.model_validate_json(raw)
                except PydanticValidationError as e:
                    logger.error(f"Discarding unreadable result record for team {team_id}: {e}")
            results[result_key(team_id)] = record
        return results

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def create_result_store(redis_url: Optional[str], key_prefix: str = "") -> ResultStore:
    if redis_url:
        logger.info("Using Redis result store")
        return RedisResultStore.from_url(redis_url, key_prefix=key_prefix)
    logger.warning("REDIS_URL not set; results are kept in memory and lost on restart")
    return InMemoryResultStore()
