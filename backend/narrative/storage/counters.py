# narrative/storage/counters.py
import logging

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from narrative.ai_pipeline.errors import StoreUnavailable
from narrative.models.article import utcnow

logger = logging.getLogger(__name__)


class ClusterCounter:
    """
    Monotonic counter document in the counters collection.

    Every read-and-increment is a single find_one_and_update, so concurrent
    workers in different processes never receive the same value.
    """

    def __init__(self, db, key: str, collection_name: str = "counters"):
        self.collection = db[collection_name]
        self.key = key

    async def ensure_indexes(self):
        try:
            await self.collection.create_index("key", unique=True)
        except PyMongoError as e:
            logger.error(f"Error creating counter indexes: {e}")

    async def next_value(self) -> int:
        """Increment and return the new value, creating the counter at 1"""
        try:
            doc = await self.collection.find_one_and_update(
                {"key": self.key},
                {"$inc": {"value": 1}, "$set": {"updated_at": utcnow()}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"Counter {self.key} increment failed: {e}") from e
        return int(doc["value"])

    async def advance_past(self, floor: int) -> int:
        """Raise the counter to at least floor, then take the next value"""
        try:
            await self.collection.update_one(
                {"key": self.key},
                {"$max": {"value": floor}},
                upsert=True,
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"Counter {self.key} reconcile failed: {e}") from e
        logger.warning(f"Counter {self.key} advanced to {floor} to match stored cluster ids")
        return await self.next_value()
