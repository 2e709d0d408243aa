# narrative/storage/cache.py
import logging
from datetime import timedelta
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from narrative.models.article import utcnow

logger = logging.getLogger(__name__)


class ExpiringCache:
    """
    Small key/value cache stored in its own collection.

    MongoDB removes entries through the TTL index on expires_at; reads also
    check the expiry since the TTL monitor only runs about once a minute.
    Cache failures are logged and treated as misses.
    """

    def __init__(self, db, collection_name: str = "cache"):
        self.collection = db[collection_name]

    async def ensure_indexes(self):
        try:
            await self.collection.create_index("key", unique=True)
            await self.collection.create_index("expires_at", expireAfterSeconds=0)
            logger.info("Cache indexes verified")
        except PyMongoError as e:
            logger.error(f"Error creating cache indexes: {e}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            entry = await self.collection.find_one({"key": key})
        except PyMongoError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if not entry:
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and expires_at <= utcnow():
            return None
        return entry.get("data")

    async def set(self, key: str, data: Any, ttl_seconds: int):
        try:
            await self.collection.update_one(
                {"key": key},
                {"$set": {
                    "key": key,
                    "data": data,
                    "expires_at": utcnow() + timedelta(seconds=ttl_seconds),
                }},
                upsert=True,
            )
        except PyMongoError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def increment(self, key: str, ttl_seconds: int) -> int:
        """
        Add one to a counter entry and return the new count.

        The expiry is fixed when the entry is created, so the count covers a
        window of ttl_seconds from the first increment. Returns 0 when the
        cache is unavailable.
        """
        now = utcnow()
        try:
            # Expired entries linger until the TTL monitor runs
            await self.collection.delete_one({"key": key, "expires_at": {"$lte": now}})
            entry = await self.collection.find_one_and_update(
                {"key": key},
                {
                    "$inc": {"data": 1},
                    "$setOnInsert": {"expires_at": now + timedelta(seconds=ttl_seconds)},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.warning(f"Cache increment failed for {key}: {e}")
            return 0
        return int(entry.get("data") or 0) if entry else 0

    async def delete(self, key: str):
        try:
            await self.collection.delete_one({"key": key})
        except PyMongoError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
