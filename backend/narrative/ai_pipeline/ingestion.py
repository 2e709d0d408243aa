"""
Narrative Article Ingestion Module
Pulls candidates from feed sources, filters them and stores survivors as Pending
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from narrative.ai_pipeline.candidate_filter import CandidateFilterService
from narrative.ai_pipeline.errors import StoreUnavailable
from narrative.ai_pipeline.text_utils import truncate
from narrative.models.article import AnalyzedArticle, CandidateArticle

logger = logging.getLogger(__name__)


class FeedSource(ABC):
    """A provider of normalized candidates"""

    name = "feed"

    @abstractmethod
    async def fetch(self) -> List[CandidateArticle]:
        ...


class ArticleIngestionService:
    def __init__(
        self,
        store,
        candidate_filter: Optional[CandidateFilterService] = None,
        sources: Optional[Sequence[FeedSource]] = None,
    ):
        self.store = store
        self.candidate_filter = candidate_filter or CandidateFilterService()
        self.sources = list(sources or [])

    async def collect_candidates(self) -> Dict[str, List[CandidateArticle]]:
        collected = {}
        for source in self.sources:
            try:
                collected[source.name] = await source.fetch()
                logger.info(f"  {source.name}: {len(collected[source.name])} candidates")
            except Exception as e:
                logger.error(f"  Error fetching from {source.name}: {e}")
                collected[source.name] = []
        return collected

    async def store_candidates(self, accepted: List[CandidateArticle]) -> Dict[str, int]:
        counts = {"ingested": 0, "already_stored": 0}

        for candidate in accepted:
            if await self.store.url_exists(candidate.url):
                counts["already_stored"] += 1
                logger.debug(f"  [SKIPPED] already stored: {truncate(candidate.title)}")
                continue

            doc = AnalyzedArticle.pending_from(candidate).to_document()
            inserted_id = await self.store.insert_pending(doc)
            if inserted_id is None:
                counts["already_stored"] += 1
                continue

            counts["ingested"] += 1
            logger.info(f"  [INGESTED] {truncate(candidate.title)}")

        return counts

    async def ingest_batch(self, candidates: List[CandidateArticle]) -> Dict[str, Any]:
        """Filter one batch of candidates and store what survives"""
        accepted = await self.candidate_filter.filter_batch(candidates)
        counts = await self.store_candidates(accepted)
        return {
            "candidates": len(candidates),
            "accepted": len(accepted),
            "rejected": len(candidates) - len(accepted),
            "filter": dict(self.candidate_filter.stats),
            **counts,
        }

    async def run_ingestion(self) -> Dict[str, Any]:
        """Run a full ingestion cycle across all sources"""
        logger.info("=" * 80)
        logger.info("Starting Narrative Article Ingestion")
        logger.info(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 80)

        start_time = datetime.now()
        collected = await self.collect_candidates()
        candidates = [article for batch in collected.values() for article in batch]

        try:
            stats = await self.ingest_batch(candidates)
        except StoreUnavailable as e:
            logger.error(f"Ingestion aborted, store unavailable: {e}")
            raise

        stats["by_source"] = {name: len(batch) for name, batch in collected.items()}
        stats["duration_seconds"] = (datetime.now() - start_time).total_seconds()

        logger.info("=" * 80)
        logger.info("Ingestion Summary")
        logger.info("=" * 80)
        logger.info(f"Candidates: {stats['candidates']}")
        logger.info(f"Accepted by filter: {stats['accepted']}")
        logger.info(f"Total articles ingested: {stats['ingested']}")
        logger.info(f"Already stored: {stats['already_stored']}")
        logger.info(f"Duration: {stats['duration_seconds']:.2f} seconds")
        logger.info("=" * 80)

        return stats
