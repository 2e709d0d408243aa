"""
Narrative Article Store
Every MongoDB query the pipeline runs against the articles collection
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, TEXT, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from narrative.ai_pipeline.errors import ClusterLookupFailure, StoreUnavailable
from narrative.models.article import AnalysisType, utcnow

logger = logging.getLogger(__name__)

CLAIM_FIELDS = {"claimed_by": "", "claimed_until": ""}
RETRY_FIELDS = {"retry_after": "", "analysis_attempts": ""}


def _claim_free(now: datetime) -> Dict[str, Any]:
    return {"$or": [
        {"claimed_until": {"$exists": False}},
        {"claimed_until": None},
        {"claimed_until": {"$lt": now}},
    ]}


def _retry_due(now: datetime) -> Dict[str, Any]:
    return {"$or": [
        {"retry_after": {"$exists": False}},
        {"retry_after": None},
        {"retry_after": {"$lte": now}},
    ]}


class ArticleStore:
    def __init__(self, db):
        self.db = db
        self.articles_collection = db["articles"]

    async def ensure_indexes(self):
        """Create indexes for the worker and clustering queries"""
        try:
            await self.articles_collection.create_index("url", unique=True)
            await self.articles_collection.create_index([("analysis_type", ASCENDING), ("published_at", ASCENDING)])
            await self.articles_collection.create_index([("cluster_id", DESCENDING), ("published_at", DESCENDING)])
            await self.articles_collection.create_index(
                [("country", ASCENDING), ("category", ASCENDING), ("published_at", DESCENDING)]
            )
            await self.articles_collection.create_index("cluster_topic")
            await self.articles_collection.create_index([("title", TEXT)])
            logger.info("Article indexes verified")
        except PyMongoError as e:
            logger.error(f"Error creating article indexes: {e}")

    async def url_exists(self, url: str) -> bool:
        try:
            return await self.articles_collection.find_one({"url": url}, {"_id": 1}) is not None
        except PyMongoError as e:
            raise StoreUnavailable(f"URL lookup failed: {e}") from e

    async def insert_pending(self, doc: Dict[str, Any]) -> Optional[Any]:
        """Insert a new Pending article. None when the URL is already stored."""
        try:
            result = await self.articles_collection.insert_one(doc)
            return result.inserted_id
        except DuplicateKeyError:
            return None
        except PyMongoError as e:
            raise StoreUnavailable(f"Insert failed: {e}") from e

    def _needs_analysis_filter(self, analysis_version: str) -> Dict[str, Any]:
        return {"$or": [
            {"analysis_type": AnalysisType.PENDING.value},
            {"analysis_version": {"$ne": analysis_version}},
        ]}

    async def find_next_pending(self, analysis_version: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Oldest published article that is Pending or analyzed under a stale
        version, skipping claimed articles and failed ones still backing off.
        """
        now = now or utcnow()
        query = {"$and": [self._needs_analysis_filter(analysis_version), _claim_free(now), _retry_due(now)]}
        try:
            cursor = self.articles_collection.find(query).sort("published_at", ASCENDING).limit(1)
            async for doc in cursor:
                return doc
            return None
        except PyMongoError as e:
            raise StoreUnavailable(f"Pending lookup failed: {e}") from e

    async def claim(self, doc: Dict[str, Any], worker_id: str, lease_seconds: int) -> bool:
        """
        Atomically claim an article for this worker.

        The update only matches while the article still carries the analysis
        state it was read with, so two workers cannot both win.
        """
        now = utcnow()
        query = {
            "$and": [
                {
                    "_id": doc["_id"],
                    "analysis_type": doc.get("analysis_type"),
                    "analysis_version": doc.get("analysis_version"),
                },
                _claim_free(now),
                _retry_due(now),
            ]
        }
        update = {"$set": {
            "claimed_by": worker_id,
            "claimed_until": now + timedelta(seconds=lease_seconds),
        }}
        try:
            claimed = await self.articles_collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"Claim failed: {e}") from e
        return claimed is not None

    async def defer(self, article_id: Any, worker_id: str, delay_seconds: float):
        """
        Drop the claim and hold the article back for delay_seconds.

        The analysis state is untouched so it is retried later. Every deferral
        bumps analysis_attempts.
        """
        try:
            await self.articles_collection.update_one(
                {"_id": article_id, "claimed_by": worker_id},
                {
                    "$set": {"retry_after": utcnow() + timedelta(seconds=delay_seconds)},
                    "$inc": {"analysis_attempts": 1},
                    "$unset": CLAIM_FIELDS,
                },
            )
        except PyMongoError as e:
            logger.error(f"Failed to defer article {article_id}: {e}")

    async def persist(self, article_id: Any, worker_id: str, fields: Dict[str, Any]) -> bool:
        """Write the analysis result as one update, scoped to our claim"""
        try:
            result = await self.articles_collection.update_one(
                {"_id": article_id, "claimed_by": worker_id},
                {"$set": fields, "$unset": {**CLAIM_FIELDS, **RETRY_FIELDS}},
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"Persist failed: {e}") from e
        return result.modified_count > 0

    async def delete(self, article_id: Any) -> bool:
        try:
            result = await self.articles_collection.delete_one({"_id": article_id})
        except PyMongoError as e:
            raise StoreUnavailable(f"Delete failed: {e}") from e
        return result.deleted_count > 0

    async def vector_search(
        self,
        embedding: List[float],
        country: str,
        since: datetime,
        num_candidates: int,
        limit: int,
        index_name: str,
        path: str = "embedding",
        exclude_id: Any = None,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Approximate nearest neighbours within one country, best first.

        Each result carries its similarity under "score". Recency is applied
        after the search since only the country is a pre-filter field.
        """
        fields = dict(projection or {"cluster_id": 1})
        fields.update({"published_at": 1, "score": {"$meta": "vectorSearchScore"}})

        post_filter: Dict[str, Any] = {"published_at": {"$gte": since}}
        if exclude_id is not None:
            post_filter["_id"] = {"$ne": exclude_id}

        pipeline = [
            {
                "$vectorSearch": {
                    "index": index_name,
                    "path": path,
                    "queryVector": list(embedding),
                    "numCandidates": num_candidates,
                    "limit": limit,
                    "filter": {"country": {"$eq": country}},
                }
            },
            {"$project": fields},
            {"$match": post_filter},
        ]

        try:
            results = []
            async for doc in self.articles_collection.aggregate(pipeline):
                results.append(doc)
            return results
        except PyMongoError as e:
            raise ClusterLookupFailure(f"Vector search failed: {e}") from e

    async def find_latest_in_topic(
        self,
        cluster_topic: str,
        category: str,
        country: str,
        since: datetime,
        exclude_id: Any = None,
    ) -> Optional[Dict[str, Any]]:
        """Most recently published clustered article with the same topic label"""
        query: Dict[str, Any] = {
            "cluster_topic": cluster_topic,
            "category": category,
            "country": country,
            "published_at": {"$gte": since},
            "cluster_id": {"$ne": None},
        }
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}

        try:
            cursor = self.articles_collection.find(query, {"cluster_id": 1}).sort("published_at", DESCENDING).limit(1)
            async for doc in cursor:
                return doc
            return None
        except PyMongoError as e:
            raise ClusterLookupFailure(f"Topic lookup failed: {e}") from e

    async def find_headline_candidates(
        self,
        title: str,
        country: str,
        since: datetime,
        limit: int,
        exclude_id: Any = None,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Recent same-country articles sharing words with the title, best text match first"""
        query: Dict[str, Any] = {
            "$text": {"$search": title},
            "country": country,
            "published_at": {"$gte": since},
        }
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}

        fields = dict(projection or {"cluster_id": 1})
        fields.update({"title": 1, "text_score": {"$meta": "textScore"}})

        try:
            cursor = self.articles_collection.find(query, fields).sort(
                [("text_score", {"$meta": "textScore"})]
            ).limit(limit)
            results = []
            async for doc in cursor:
                results.append(doc)
            return results
        except PyMongoError as e:
            raise ClusterLookupFailure(f"Headline lookup failed: {e}") from e

    async def max_cluster_id(self) -> int:
        try:
            doc = await self.articles_collection.find_one(
                {"cluster_id": {"$ne": None}},
                {"cluster_id": 1},
                sort=[("cluster_id", DESCENDING)],
            )
        except PyMongoError as e:
            raise StoreUnavailable(f"Max cluster id lookup failed: {e}") from e
        return int(doc["cluster_id"]) if doc and doc.get("cluster_id") is not None else 0
