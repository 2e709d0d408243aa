# backend/narrative/ai_pipeline/scheduler.py
"""
Narrative Pipeline Scheduler
Runs periodic ingestion and the single-article analysis worker
"""
import asyncio
import logging
import signal
from datetime import datetime
from typing import List, Optional, Sequence

from narrative.ai_pipeline.analysis import AnalysisOrchestrator
from narrative.ai_pipeline.candidate_filter import CandidateFilterService
from narrative.ai_pipeline.clustering import ClusterAssignmentEngine
from narrative.ai_pipeline.embeddings import EmbeddingService
from narrative.ai_pipeline.gatekeeper import GatekeeperService
from narrative.ai_pipeline.gemini_client import GeminiClient
from narrative.ai_pipeline.ingestion import ArticleIngestionService, FeedSource
from narrative.ai_pipeline.key_rotation import KeyRotationController
from narrative.ai_pipeline.worker import PipelineWorker
from narrative.config import (
    GEMINI_PROVIDER, INGESTION_INTERVAL_SECONDS, MAX_ANALYSIS_ATTEMPTS, ClusteringConfig, load_provider_keys,
)
from narrative.db import get_database
from narrative.storage.article_store import ArticleStore
from narrative.storage.cache import ExpiringCache
from narrative.storage.counters import ClusterCounter

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('narrative_worker.log'),
            logging.StreamHandler()
        ]
    )


class NarrativeScheduler:
    def __init__(self, db, client=None, sources: Optional[Sequence[FeedSource]] = None):
        """Wire every service against one database handle"""
        self.client = client
        self.db = db

        self.controller = KeyRotationController(load_provider_keys(), max_attempts=MAX_ANALYSIS_ATTEMPTS)
        gemini = GeminiClient()

        self.store = ArticleStore(db)
        self.cache = ExpiringCache(db)
        self.counter = ClusterCounter(db, ClusteringConfig.COUNTER_KEY)

        self.ingestion_service = ArticleIngestionService(
            self.store,
            CandidateFilterService(db, self.cache),
            sources,
        )
        self.worker = PipelineWorker(
            self.store,
            GatekeeperService(self.controller, gemini, self.cache, db=db),
            AnalysisOrchestrator(self.controller, gemini),
            ClusterAssignmentEngine(self.store, self.counter),
            embedding_service=EmbeddingService(self.controller, gemini),
            controller=self.controller,
        )

        self.running = True
        self.tasks: List[asyncio.Task] = []
        self.INGESTION_INTERVAL = INGESTION_INTERVAL_SECONDS

    async def ensure_indexes(self):
        await self.store.ensure_indexes()
        await self.cache.ensure_indexes()
        await self.counter.ensure_indexes()

    async def run_ingestion(self):
        """Scheduled ingestion job"""
        try:
            logger.info("=" * 80)
            logger.info("SCHEDULED JOB: Article Ingestion")
            logger.info("=" * 80)
            stats = await self.ingestion_service.run_ingestion()
            logger.info(f"Ingestion completed: {stats['ingested']} articles")
        except Exception as e:
            logger.error(f"Ingestion failed: {str(e)}", exc_info=True)

    async def ingestion_loop(self):
        while self.running:
            await self.run_ingestion()
            await asyncio.sleep(self.INGESTION_INTERVAL)

    async def shutdown(self, sig=None):
        """Graceful shutdown"""
        if sig is not None:
            logger.info(f"Received {sig.name}")
        logger.info("Shutting down scheduler...")
        self.running = False
        self.worker.stop()

        for task in self.tasks:
            task.cancel()

    async def start(self):
        """Start the scheduler"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self.shutdown(s)))

        logger.info("=" * 80)
        logger.info("Narrative Scheduler Starting")
        logger.info(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 80)

        await self.ensure_indexes()

        if self.ingestion_service.sources:
            logger.info(f"  • Ingestion: Every {self.INGESTION_INTERVAL / 60:.0f} minutes "
                        f"from {len(self.ingestion_service.sources)} source(s)")
            self.tasks.append(asyncio.create_task(self.ingestion_loop()))
        else:
            logger.info("  • Ingestion: no feed sources configured")
        if self.controller.has_keys(GEMINI_PROVIDER):
            logger.info(f"  • Analysis worker: one article every {self.worker.delay_seconds}s")
            self.tasks.append(asyncio.create_task(self.worker.run_forever()))
        else:
            logger.error("  • Analysis worker: not started, no Gemini API keys configured")

        try:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        except asyncio.CancelledError:
            pass
        finally:
            if self.client is not None:
                self.client.close()
                logger.info("MongoDB connection closed")
            logger.info("Scheduler stopped")


async def main():
    """Entry point"""
    configure_logging()
    client, db = get_database()
    scheduler = NarrativeScheduler(db, client)
    await scheduler.start()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
