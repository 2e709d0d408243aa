"""
Narrative Clustering Module
Tiered cluster assignment: headline or semantic duplicate, vector match, topic fallback, new cluster
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from narrative.ai_pipeline.errors import ClusterLookupFailure, StoreUnavailable
from narrative.ai_pipeline.source_config import DEFAULT_COUNTRY
from narrative.ai_pipeline.text_utils import similarity_score, truncate
from narrative.config import ClusteringConfig
from narrative.models.analysis import AssignmentKind, ClusterAssignment
from narrative.models.article import INHERITED_FIELDS, AnalysisType, ArticleAnalysis, utcnow
from narrative.storage.article_store import ArticleStore
from narrative.storage.counters import ClusterCounter

logger = logging.getLogger(__name__)

UNAVAILABLE_SUMMARIES = {"", "summary unavailable"}


def timestamp_cluster_id() -> int:
    """Degraded id used only when the counter cannot be reached"""
    return int(time.time())


def summary_unavailable(doc: Dict[str, Any]) -> bool:
    return (doc.get("summary") or "").strip().lower() in UNAVAILABLE_SUMMARIES


def inheritable_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {f: doc[f] for f in INHERITED_FIELDS if doc.get(f) is not None}


class ClusterAssignmentEngine:
    def __init__(
        self,
        store: ArticleStore,
        counter: ClusterCounter,
        config=ClusteringConfig,
        clock: Callable[[], datetime] = utcnow,
        fallback_id: Callable[[], int] = timestamp_cluster_id,
    ):
        self.store = store
        self.counter = counter
        self.config = config
        self.clock = clock
        self.fallback_id = fallback_id

        self._reconciled = False

        self.stats = {
            "headline_inherited": 0,
            "inherited": 0,
            "vector_match": 0,
            "field_match": 0,
            "new_cluster": 0,
            "fallback_id": 0,
            "lookup_failures": 0,
        }

    def _duplicate_projection(self) -> Dict[str, Any]:
        projection = {field: 1 for field in INHERITED_FIELDS}
        projection["cluster_id"] = 1
        return projection

    async def find_headline_duplicate(
        self, title: str, country: str, exclude_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        """
        Analyzed article from the last 24 hours in the same country whose
        headline is nearly the same wording. The match carries its headline
        similarity under "score".
        """
        candidates = await self.store.find_headline_candidates(
            title,
            country,
            since=self.clock() - timedelta(hours=self.config.HEADLINE_WINDOW_HOURS),
            limit=self.config.HEADLINE_CANDIDATES,
            exclude_id=exclude_id,
            projection=self._duplicate_projection(),
        )

        best = None
        for candidate in candidates:
            if candidate.get("analysis_type") != AnalysisType.FULL.value or summary_unavailable(candidate):
                continue
            score = similarity_score(title, candidate.get("title") or "")
            if score > self.config.HEADLINE_THRESHOLD and (best is None or score > best["score"]):
                best = dict(candidate, score=score)
        return best

    async def find_semantic_duplicate(
        self, embedding: List[float], country: str, exclude_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        """
        Nearest article published in the last 24 hours in the same country,
        if it is close enough to be a syndicated copy.
        """
        results = await self.store.vector_search(
            embedding,
            country,
            since=self.clock() - timedelta(hours=self.config.DUPLICATE_WINDOW_HOURS),
            num_candidates=self.config.DUPLICATE_NUM_CANDIDATES,
            limit=self.config.VECTOR_RESULT_LIMIT,
            index_name=self.config.VECTOR_INDEX_NAME,
            path=self.config.VECTOR_PATH,
            exclude_id=exclude_id,
            projection=self._duplicate_projection(),
        )

        for match in results:
            if match.get("score", 0) < self.config.DUPLICATE_THRESHOLD:
                break
            # An unfinished original has nothing worth inheriting
            if summary_unavailable(match):
                continue
            return match
        return None

    async def find_vector_cluster(
        self, embedding: List[float], country: str, exclude_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        results = await self.store.vector_search(
            embedding,
            country,
            since=self.clock() - timedelta(days=self.config.TOPIC_WINDOW_DAYS),
            num_candidates=self.config.TOPIC_NUM_CANDIDATES,
            limit=self.config.VECTOR_RESULT_LIMIT,
            index_name=self.config.VECTOR_INDEX_NAME,
            path=self.config.VECTOR_PATH,
            exclude_id=exclude_id,
        )

        best = None
        for match in results:
            if match.get("cluster_id") is None or match.get("score", 0) < self.config.TOPIC_MATCH_THRESHOLD:
                continue
            if best is None or match["score"] > best["score"]:
                best = match
        return best

    async def find_field_cluster(
        self, cluster_topic: str, category: str, country: str, exclude_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        return await self.store.find_latest_in_topic(
            cluster_topic,
            category,
            country,
            since=self.clock() - timedelta(days=self.config.TOPIC_WINDOW_DAYS),
            exclude_id=exclude_id,
        )

    async def allocate_cluster_id(self) -> ClusterAssignment:
        """
        Next id from the shared counter.

        The first id each engine hands out, and any id equal to the counter
        start, is checked against the ids already stored. A counter that was
        created after articles were clustered is moved past them, including
        when another process allocates while the move is in flight.
        """
        try:
            value = await self.counter.next_value()
            if not self._reconciled or value == self.config.COUNTER_START:
                try:
                    stored_max = await self.store.max_cluster_id()
                    self._reconciled = True
                except StoreUnavailable as e:
                    logger.warning(f"Could not reconcile cluster counter: {e}")
                    stored_max = 0
                if stored_max >= value:
                    value = await self.counter.advance_past(stored_max)
        except StoreUnavailable as e:
            cluster_id = self.fallback_id()
            logger.error(f"Cluster counter unavailable, using timestamp id {cluster_id}: {e}")
            self.stats["fallback_id"] += 1
            return ClusterAssignment(kind=AssignmentKind.FALLBACK_ID, cluster_id=cluster_id)

        self.stats["new_cluster"] += 1
        return ClusterAssignment(kind=AssignmentKind.NEW_CLUSTER, cluster_id=value)

    async def _find_duplicate(
        self,
        article_id: Any,
        country: str,
        title: Optional[str],
        embedding: Optional[List[float]],
    ) -> Tuple[Optional[AssignmentKind], Optional[Dict[str, Any]]]:
        if title:
            try:
                duplicate = await self.find_headline_duplicate(title, country, exclude_id=article_id)
                if duplicate is not None:
                    self.stats["headline_inherited"] += 1
                    logger.info(
                        f"  Headline duplicate of {duplicate['_id']} (similarity: {duplicate['score']:.3f})"
                    )
                    return AssignmentKind.HEADLINE_DUPLICATE, duplicate
            except ClusterLookupFailure as e:
                self.stats["lookup_failures"] += 1
                logger.warning(f"Headline lookup failed, continuing: {e}")

        if embedding:
            try:
                duplicate = await self.find_semantic_duplicate(embedding, country, exclude_id=article_id)
                if duplicate is not None:
                    self.stats["inherited"] += 1
                    logger.info(
                        f"  Semantic duplicate of {duplicate['_id']} (similarity: {duplicate['score']:.3f})"
                    )
                    return AssignmentKind.INHERITED, duplicate
            except ClusterLookupFailure as e:
                self.stats["lookup_failures"] += 1
                logger.warning(f"Duplicate lookup failed, continuing: {e}")

        return None, None

    async def _cluster_tiers(
        self,
        article_id: Any,
        topic: str,
        category: Optional[str],
        country: str,
        embedding: Optional[List[float]],
    ) -> ClusterAssignment:
        if embedding:
            try:
                match = await self.find_vector_cluster(embedding, country, exclude_id=article_id)
                if match is not None:
                    self.stats["vector_match"] += 1
                    logger.info(f"  Found matching cluster {match['cluster_id']} (similarity: {match['score']:.3f})")
                    return ClusterAssignment(
                        kind=AssignmentKind.VECTOR_MATCH,
                        cluster_id=match["cluster_id"],
                        similarity=match["score"],
                        matched_article_id=match["_id"],
                    )
            except ClusterLookupFailure as e:
                self.stats["lookup_failures"] += 1
                logger.warning(f"Vector lookup failed, continuing: {e}")

        if topic:
            try:
                match = await self.find_field_cluster(topic, category, country, exclude_id=article_id)
                if match is not None:
                    self.stats["field_match"] += 1
                    logger.info(f"  Joined cluster {match['cluster_id']} by topic \"{truncate(topic)}\"")
                    return ClusterAssignment(
                        kind=AssignmentKind.FIELD_MATCH,
                        cluster_id=match["cluster_id"],
                        matched_article_id=match["_id"],
                    )
            except ClusterLookupFailure as e:
                self.stats["lookup_failures"] += 1
                logger.warning(f"Topic lookup failed, continuing: {e}")

        assignment = await self.allocate_cluster_id()
        logger.info(f"  New cluster {assignment.cluster_id} for \"{truncate(topic)}\"")
        return assignment

    async def assign(
        self,
        article_id: Any,
        analysis: ArticleAnalysis,
        embedding: Optional[List[float]] = None,
        title: Optional[str] = None,
    ) -> ClusterAssignment:
        """
        Walk the tiers in order and stop at the first one that answers.

        A duplicate hands over its scores and, when it has one, its cluster.
        A duplicate that was never clustered still hands over its scores but
        the cluster comes from the remaining tiers.
        """
        country = analysis.country or DEFAULT_COUNTRY
        topic = (analysis.cluster_topic or "").strip()

        kind, duplicate = await self._find_duplicate(article_id, country, title, embedding)
        if duplicate is None:
            return await self._cluster_tiers(article_id, topic, analysis.category, country, embedding)

        inherited = inheritable_fields(duplicate)
        if duplicate.get("cluster_id") is not None:
            return ClusterAssignment(
                kind=kind,
                cluster_id=duplicate["cluster_id"],
                similarity=duplicate["score"],
                matched_article_id=duplicate["_id"],
                duplicate_of=duplicate["_id"],
                inherited_fields=inherited,
            )

        logger.info(f"  Duplicate {duplicate['_id']} has no cluster yet, continuing")
        assignment = await self._cluster_tiers(
            article_id,
            (inherited.get("cluster_topic") or topic).strip(),
            inherited.get("category", analysis.category),
            country,
            embedding,
        )
        assignment.duplicate_of = duplicate["_id"]
        assignment.inherited_fields = inherited
        return assignment
