"""
In-memory stand-ins for MongoDB-backed collaborators and the Gemini client
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

import numpy as np

from narrative.ai_pipeline.errors import ClusterLookupFailure, ProviderError, StoreUnavailable
from narrative.models.article import AnalysisType, utcnow


def cosine(a, b) -> float:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    return float(np.dot(a, b) / norm) if norm else 0.0


def vector_with_similarity(base, similarity):
    """
    Unit vector whose cosine similarity with base is exactly similarity.
    base must be a unit vector orthogonal to [0, ..., 0, 1].
    """
    base = np.asarray(base, dtype=float)
    orthogonal = np.zeros_like(base)
    orthogonal[-1] = 1.0
    vec = similarity * base + np.sqrt(1 - similarity ** 2) * orthogonal
    return vec.tolist()


class FakeArticleStore:
    """Implements the ArticleStore methods the pipeline uses over a dict"""

    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None, now=None):
        self.docs: Dict[Any, Dict[str, Any]] = {}
        self.now = now or utcnow
        self.vector_calls: List[Dict[str, Any]] = []
        self.fail_vector_search = False
        self.fail_topic_lookup = False
        self.fail_headline_lookup = False
        self.headline_calls: List[Dict[str, Any]] = []
        for doc in docs or []:
            self.add(doc)

    def add(self, doc: Dict[str, Any]):
        self.docs[doc["_id"]] = dict(doc)

    async def url_exists(self, url):
        return any(doc.get("url") == url for doc in self.docs.values())

    async def insert_pending(self, doc):
        if await self.url_exists(doc["url"]):
            return None
        doc = dict(doc)
        doc.setdefault("_id", f"article-{len(self.docs) + 1}")
        self.add(doc)
        return doc["_id"]

    def _claim_free(self, doc):
        until = doc.get("claimed_until")
        return until is None or until < self.now()

    def _retry_due(self, doc):
        retry_after = doc.get("retry_after")
        return retry_after is None or retry_after <= self.now()

    async def find_next_pending(self, analysis_version, now=None):
        candidates = [
            doc for doc in self.docs.values()
            if (doc.get("analysis_type") == AnalysisType.PENDING.value
                or doc.get("analysis_version") != analysis_version)
            and self._claim_free(doc)
            and self._retry_due(doc)
        ]
        candidates.sort(key=lambda d: d["published_at"])
        return dict(candidates[0]) if candidates else None

    async def claim(self, doc, worker_id, lease_seconds):
        stored = self.docs.get(doc["_id"])
        if stored is None or not self._claim_free(stored) or not self._retry_due(stored):
            return False
        if stored.get("analysis_type") != doc.get("analysis_type"):
            return False
        if stored.get("analysis_version") != doc.get("analysis_version"):
            return False
        stored["claimed_by"] = worker_id
        stored["claimed_until"] = self.now() + timedelta(seconds=lease_seconds)
        return True

    async def defer(self, article_id, worker_id, delay_seconds):
        stored = self.docs.get(article_id)
        if stored and stored.get("claimed_by") == worker_id:
            stored.pop("claimed_by", None)
            stored.pop("claimed_until", None)
            stored["retry_after"] = self.now() + timedelta(seconds=delay_seconds)
            stored["analysis_attempts"] = stored.get("analysis_attempts", 0) + 1

    async def persist(self, article_id, worker_id, fields):
        stored = self.docs.get(article_id)
        if stored is None or stored.get("claimed_by") != worker_id:
            return False
        stored.update(fields)
        for field in ("claimed_by", "claimed_until", "retry_after", "analysis_attempts"):
            stored.pop(field, None)
        return True

    async def delete(self, article_id):
        return self.docs.pop(article_id, None) is not None

    async def vector_search(self, embedding, country, since, num_candidates, limit, index_name,
                            path="embedding", exclude_id=None, projection=None):
        self.vector_calls.append({"country": country, "since": since, "num_candidates": num_candidates})
        if self.fail_vector_search:
            raise ClusterLookupFailure("vector index offline")

        results = []
        for doc in self.docs.values():
            if doc.get(path) is None or doc.get("country") != country:
                continue
            results.append(dict(doc, score=cosine(embedding, doc[path])))
        results.sort(key=lambda d: d["score"], reverse=True)
        results = results[:limit]
        return [
            d for d in results
            if d["published_at"] >= since and (exclude_id is None or d["_id"] != exclude_id)
        ]

    async def find_latest_in_topic(self, cluster_topic, category, country, since, exclude_id=None):
        if self.fail_topic_lookup:
            raise ClusterLookupFailure("topic query failed")
        matches = [
            doc for doc in self.docs.values()
            if doc.get("cluster_topic") == cluster_topic
            and doc.get("category") == category
            and doc.get("country") == country
            and doc["published_at"] >= since
            and doc.get("cluster_id") is not None
            and doc["_id"] != exclude_id
        ]
        matches.sort(key=lambda d: d["published_at"], reverse=True)
        return matches[0] if matches else None

    async def find_headline_candidates(self, title, country, since, limit, exclude_id=None, projection=None):
        """Same-country articles in the window. Word matching is left to the caller."""
        self.headline_calls.append({"title": title, "country": country, "since": since})
        if self.fail_headline_lookup:
            raise ClusterLookupFailure("text index offline")
        matches = [
            dict(doc) for doc in self.docs.values()
            if doc.get("country") == country
            and doc["published_at"] >= since
            and doc["_id"] != exclude_id
        ]
        return matches[:limit]

    async def max_cluster_id(self):
        ids = [doc["cluster_id"] for doc in self.docs.values() if doc.get("cluster_id") is not None]
        return max(ids) if ids else 0


class FakeClusterCounter:
    def __init__(self, value=0, fail=False):
        self.value = value
        self.fail = fail

    async def next_value(self):
        if self.fail:
            raise StoreUnavailable("counter offline")
        self.value += 1
        return self.value

    async def advance_past(self, floor):
        self.value = max(self.value, floor)
        return await self.next_value()


class FakeCache:
    def __init__(self):
        self.entries: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key):
        return self.entries.get(key)

    async def set(self, key, data, ttl_seconds):
        self.entries[key] = data
        self.ttls[key] = ttl_seconds

    async def increment(self, key, ttl_seconds):
        self.entries[key] = self.entries.get(key, 0) + 1
        self.ttls.setdefault(key, ttl_seconds)
        return self.entries[key]

    async def delete(self, key):
        self.entries.pop(key, None)
        self.ttls.pop(key, None)


class FakeGeminiClient:
    """
    Replays scripted results per model. Each script entry is either a
    response object or an exception instance to raise.
    """

    def __init__(self, scripts=None, embedding=None):
        self.scripts: Dict[str, List[Any]] = {k: list(v) for k, v in (scripts or {}).items()}
        self.embedding = embedding
        self.calls: List[Dict[str, Any]] = []
        self.embed_calls: List[str] = []

    async def generate(self, api_key, model, prompt, temperature=0.2, max_output_tokens=None,
                       timeout=60, safety_settings=None):
        self.calls.append({"api_key": api_key, "model": model, "prompt": prompt, "timeout": timeout})
        script = self.scripts.get(model)
        if not script:
            raise ProviderError(f"no scripted response for {model}", 500)
        result = script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def embed(self, api_key, model, text, timeout=20):
        self.embed_calls.append(text)
        if isinstance(self.embedding, Exception):
            raise self.embedding
        return self.embedding
