"""
Narrative Pipeline Worker
Analyzes one stored article at a time, paced to the analysis provider's rate limit
"""
import asyncio
import logging
import socket
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from narrative.ai_pipeline.analysis import AnalysisOrchestrator
from narrative.ai_pipeline.clustering import ClusterAssignmentEngine
from narrative.ai_pipeline.embeddings import EmbeddingService
from narrative.ai_pipeline.errors import PipelineError
from narrative.ai_pipeline.gatekeeper import GatekeeperService
from narrative.ai_pipeline.key_rotation import KeyRotationController
from narrative.ai_pipeline.text_utils import truncate
from narrative.config import (
    ANALYSIS_VERSION, CLAIM_LEASE_SECONDS, FAILED_RETRY_BASE_SECONDS, FAILED_RETRY_MAX_SECONDS,
    WORKER_DELAY_SECONDS,
)
from narrative.models.analysis import OutcomeStatus
from narrative.models.article import AnalysisType, AnalyzedArticle
from narrative.storage.article_store import ArticleStore

logger = logging.getLogger(__name__)

IDLE_POLL_SECONDS = 60


class WorkResult(str, Enum):
    IDLE = "idle"                  # Nothing to do
    PROCESSED = "processed"
    JUNK_DELETED = "junk_deleted"
    FAILED = "failed"              # Left for a later cycle
    SKIPPED = "skipped"            # Another worker got there first


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


def retry_delay(attempts: int) -> int:
    """Backoff before an article that has failed attempts times is tried again"""
    return min(FAILED_RETRY_BASE_SECONDS * (2 ** attempts), FAILED_RETRY_MAX_SECONDS)


class PipelineWorker:
    def __init__(
        self,
        store: ArticleStore,
        gatekeeper: GatekeeperService,
        orchestrator: AnalysisOrchestrator,
        cluster_engine: ClusterAssignmentEngine,
        embedding_service: Optional[EmbeddingService] = None,
        controller: Optional[KeyRotationController] = None,
        worker_id: Optional[str] = None,
        analysis_version: str = ANALYSIS_VERSION,
        delay_seconds: float = WORKER_DELAY_SECONDS,
        lease_seconds: int = CLAIM_LEASE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.gatekeeper = gatekeeper
        self.orchestrator = orchestrator
        self.cluster_engine = cluster_engine
        self.embedding_service = embedding_service
        self.controller = controller
        self.worker_id = worker_id or default_worker_id()
        self.analysis_version = analysis_version
        self.delay_seconds = delay_seconds
        self.lease_seconds = lease_seconds
        self._sleep = sleep
        self.running = True

        self.stats = {result.value: 0 for result in WorkResult}

    async def _defer(self, doc: Dict[str, Any]):
        delay = retry_delay(doc.get("analysis_attempts") or 0)
        await self.store.defer(doc["_id"], self.worker_id, delay)
        return delay

    async def _embedding_for(self, doc: Dict[str, Any], article: AnalyzedArticle):
        if doc.get("embedding"):
            return doc["embedding"], False
        if self.embedding_service is None:
            return None, False
        embedding = await self.embedding_service.embed_article(article.title, article.description)
        return embedding, embedding is not None

    async def _process_claimed(self, doc: Dict[str, Any]) -> Tuple[WorkResult, bool]:
        """Returns the result and whether an analysis call was spent"""
        article = AnalyzedArticle.from_document(doc)
        article_id = doc["_id"]

        decision = await self.gatekeeper.evaluate(article)
        if decision.is_junk:
            await self.store.delete(article_id)
            logger.info(f"[JUNK] Deleted \"{truncate(article.title)}\" ({decision.reason})")
            return WorkResult.JUNK_DELETED, False

        outcome = await self.orchestrator.analyze(article, decision.recommended_depth)

        if outcome.status == OutcomeStatus.JUNK:
            await self.store.delete(article_id)
            logger.info(f"[JUNK] Deleted \"{truncate(article.title)}\" after analysis")
            return WorkResult.JUNK_DELETED, True

        if not outcome.should_persist:
            delay = await self._defer(doc)
            logger.warning(
                f"[FAILED] \"{truncate(article.title)}\" stays pending, retry in {delay}s: {outcome.error}"
            )
            return WorkResult.FAILED, True

        analysis = outcome.analysis
        fields = analysis.to_update_fields()
        fields["analysis_version"] = self.analysis_version

        if analysis.analysis_type == AnalysisType.FULL and analysis.cluster_topic:
            embedding, computed = await self._embedding_for(doc, article)
            if computed:
                fields["embedding"] = embedding

            assignment = await self.cluster_engine.assign(article_id, analysis, embedding, title=article.title)
            if assignment.is_duplicate:
                fields.update(assignment.inherited_fields)
                fields["inherited_from"] = assignment.duplicate_of
            fields["cluster_id"] = assignment.cluster_id

        if not await self.store.persist(article_id, self.worker_id, fields):
            logger.warning(f"[SKIPPED] Claim on \"{truncate(article.title)}\" expired before saving")
            return WorkResult.SKIPPED, True

        logger.info(
            f"[{analysis.analysis_type.value.upper()}] \"{truncate(article.title)}\" "
            f"cluster={fields.get('cluster_id')}"
        )
        return WorkResult.PROCESSED, True

    async def process_next_article(self) -> WorkResult:
        """
        Process the oldest article that is Pending or was analyzed under an
        older version.

        After any article that used an analysis call the worker waits the
        configured delay. IDLE returns immediately.
        """
        doc = await self.store.find_next_pending(self.analysis_version)
        if doc is None:
            return WorkResult.IDLE

        if not await self.store.claim(doc, self.worker_id, self.lease_seconds):
            self.stats[WorkResult.SKIPPED.value] += 1
            return WorkResult.SKIPPED

        called_analysis = True
        try:
            result, called_analysis = await self._process_claimed(doc)
        except PipelineError as e:
            logger.error(f"Pipeline error for article {doc['_id']}: {e}")
            await self._defer(doc)
            result = WorkResult.FAILED
        except Exception:
            await self._defer(doc)
            raise

        self.stats[result.value] += 1
        if self.controller is not None:
            logger.debug(f"Key statistics: {self.controller.get_statistics()}")

        if called_analysis:
            await self._sleep(self.delay_seconds)
        return result

    def stop(self):
        self.running = False

    async def run_forever(self, idle_poll_seconds: float = IDLE_POLL_SECONDS):
        logger.info("=" * 80)
        logger.info(f"Pipeline worker {self.worker_id} started (analysis version {self.analysis_version})")
        logger.info("=" * 80)

        while self.running:
            try:
                result = await self.process_next_article()
            except Exception as e:
                logger.error(f"Worker cycle failed: {e}", exc_info=True)
                result = WorkResult.FAILED
                await self._sleep(self.delay_seconds)

            if result == WorkResult.IDLE and self.running:
                await self._sleep(idle_poll_seconds)

        logger.info(f"Pipeline worker stopped. Stats: {self.stats}")
