"""
Integration tests for the pipeline worker

Wires the real gatekeeper, orchestrator, clustering engine and ingestion
service together over the in-memory store and a scripted Gemini client.
"""
import asyncio
from datetime import timedelta

import pytest

from fixtures.fakes import FakeArticleStore, FakeCache, FakeClusterCounter, FakeGeminiClient, vector_with_similarity
from fixtures.sample_data import (
    BASE_TIME, analysis_payload, create_article_doc, create_candidate, hours_ago, make_empty_response, make_response,
)
from narrative.ai_pipeline.analysis import AnalysisOrchestrator
from narrative.ai_pipeline.clustering import ClusterAssignmentEngine
from narrative.ai_pipeline.embeddings import EmbeddingService
from narrative.ai_pipeline.errors import ProviderError
from narrative.ai_pipeline.gatekeeper import GatekeeperService
from narrative.ai_pipeline.ingestion import ArticleIngestionService
from narrative.ai_pipeline.worker import PipelineWorker, WorkResult, retry_delay
from narrative.config import AI_MODEL_FAST, AI_MODEL_PRO, FAILED_RETRY_BASE_SECONDS, FAILED_RETRY_MAX_SECONDS

BASE = [1.0, 0.0, 0.0, 0.0]
DELAY = 31


def build_worker(store, controller, sleep, gemini, counter=None):
    engine = ClusterAssignmentEngine(
        store,
        counter or FakeClusterCounter(),
        clock=lambda: BASE_TIME,
    )
    return PipelineWorker(
        store,
        GatekeeperService(controller, gemini, FakeCache()),
        AnalysisOrchestrator(controller, gemini),
        engine,
        embedding_service=EmbeddingService(controller, gemini),
        controller=controller,
        worker_id="worker-test",
        analysis_version="3.8",
        delay_seconds=DELAY,
        sleep=sleep,
    )


class LosingClaimStore(FakeArticleStore):
    """Another worker always wins the claim"""

    async def claim(self, doc, worker_id, lease_seconds):
        return False


class TestEndToEnd:
    """Candidate batch through ingestion and one worker cycle."""

    def test_three_candidate_scenario(self, controller, recording_sleep):
        store = FakeArticleStore()
        penalized = create_candidate(
            title="Local council discusses the new parking rules for downtown",
            image_url=None,
            source="Random Blog",
        )
        short_title = create_candidate(title="Short headline!")
        trusted = create_candidate()

        stats = asyncio.run(ArticleIngestionService(store).ingest_batch([penalized, short_title, trusted]))
        assert stats["ingested"] == 1

        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload())]}, embedding=BASE)
        worker = build_worker(store, controller, recording_sleep, gemini)

        result = asyncio.run(worker.process_next_article())

        assert result == WorkResult.PROCESSED
        (doc,) = store.docs.values()
        assert doc["url"] == trusted.url
        assert doc["analysis_type"] == "Full"
        assert doc["analysis_version"] == "3.8"
        assert doc["cluster_id"] == 1
        assert doc["trust_score"] == 90
        assert doc["embedding"] == BASE
        assert "claimed_by" not in doc

        # Trusted source skips the gatekeeper call
        assert [c["model"] for c in gemini.calls] == [AI_MODEL_PRO]
        assert recording_sleep.delays == [DELAY]

        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE
        assert recording_sleep.delays == [DELAY]


class TestPipelineWorker:
    """Tests for PipelineWorker.process_next_article."""

    def test_idle_returns_without_sleeping(self, controller, recording_sleep):
        worker = build_worker(FakeArticleStore(), controller, recording_sleep, FakeGeminiClient())

        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE
        assert recording_sleep.delays == []

    def test_local_junk_deleted_without_delay(self, controller, recording_sleep):
        doc = create_article_doc(
            _id="junk",
            title="Your weekly horoscope and what the stars have planned for you.",
            source="Daily Gazette",
        )
        store = FakeArticleStore([doc])
        gemini = FakeGeminiClient()
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.JUNK_DELETED
        assert store.docs == {}
        assert gemini.calls == []
        assert recording_sleep.delays == []

    def test_analysis_junk_deleted_after_delay(self, controller, recording_sleep):
        store = FakeArticleStore([create_article_doc(_id="a")])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload(isJunk=True))]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.JUNK_DELETED
        assert store.docs == {}
        assert recording_sleep.delays == [DELAY]

    def test_failed_analysis_stays_pending_and_backs_off(self, controller, recording_sleep):
        store = FakeArticleStore([create_article_doc(_id="a")])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [ProviderError("internal", 500)]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.FAILED

        doc = store.docs["a"]
        assert doc["analysis_type"] == "Pending"
        assert doc.get("summary") is None
        assert "claimed_by" not in doc
        assert doc["analysis_attempts"] == 1
        assert doc["retry_after"] > store.now()
        assert worker.stats["failed"] == 1
        assert recording_sleep.delays == [DELAY]

        # Held back until the retry time passes
        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE

    def test_failing_article_does_not_block_newer_ones(self, controller, recording_sleep):
        """An article the model keeps refusing must not starve the rest of the queue."""
        older = create_article_doc(_id="older", published_at=hours_ago(5))
        newer = create_article_doc(_id="newer", title="Central bank holds interest rates steady for a third month.")
        store = FakeArticleStore([older, newer])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [
            make_empty_response(block_reason="SAFETY"),
            make_response(analysis_payload()),
        ]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.FAILED
        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        assert store.docs["newer"]["analysis_type"] == "Full"
        assert store.docs["older"]["analysis_type"] == "Pending"
        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE
        assert len(gemini.calls) == 2

    def test_deferred_article_retried_once_due(self, controller, recording_sleep):
        doc = create_article_doc(_id="a", analysis_attempts=2, retry_after=hours_ago(1))
        store = FakeArticleStore([doc])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload())]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        stored = store.docs["a"]
        assert stored["analysis_type"] == "Full"
        assert "retry_after" not in stored
        assert "analysis_attempts" not in stored

    def test_repeated_failures_back_off_longer(self, controller, recording_sleep):
        store = FakeArticleStore([create_article_doc(_id="a", analysis_attempts=2)])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [ProviderError("internal", 500)]})
        worker = build_worker(store, controller, recording_sleep, gemini)
        before = store.now()

        assert asyncio.run(worker.process_next_article()) == WorkResult.FAILED

        doc = store.docs["a"]
        assert doc["analysis_attempts"] == 3
        assert doc["retry_after"] - before >= timedelta(seconds=4 * FAILED_RETRY_BASE_SECONDS)

    def test_soft_news_gets_sentiment_only_without_cluster(self, controller, recording_sleep):
        store = FakeArticleStore([create_article_doc(_id="a", source="Daily Gazette")])
        gemini = FakeGeminiClient({AI_MODEL_FAST: [
            make_response({"type": "Soft News", "category": "Sports"}),
            make_response({"summary": "The home side won the cup.", "category": "Sports", "sentiment": "Positive"}),
        ]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        doc = store.docs["a"]
        assert doc["analysis_type"] == "SentimentOnly"
        assert doc["sentiment"] == "Positive"
        assert doc["cluster_id"] is None

    def test_stale_version_reprocessed(self, controller, recording_sleep):
        stale = create_article_doc(
            _id="old",
            analysis_type="Full",
            analysis_version="3.7",
            summary="Old summary.",
            cluster_topic="G20 Payments Framework",
            country="Global",
            category="Economy",
            cluster_id=5,
            embedding=BASE,
        )
        current = create_article_doc(
            _id="current",
            analysis_type="Full",
            analysis_version="3.8",
            published_at=hours_ago(48),
        )
        store = FakeArticleStore([stale, current])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload())]})
        worker = build_worker(store, controller, recording_sleep, gemini, counter=FakeClusterCounter(value=20))

        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        doc = store.docs["old"]
        assert doc["analysis_version"] == "3.8"
        assert doc["summary"] == analysis_payload()["summary"]
        # Stored embedding reused, the article never matches itself
        assert doc["embedding"] == BASE
        assert gemini.embed_calls == []
        assert doc["cluster_id"] == 21
        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE

    def test_claim_lost_is_skipped(self, controller, recording_sleep):
        store = LosingClaimStore([create_article_doc(_id="a")])
        gemini = FakeGeminiClient()
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.SKIPPED
        assert store.docs["a"]["analysis_type"] == "Pending"
        assert gemini.calls == []
        assert recording_sleep.delays == []

    def test_claimed_article_not_picked_up(self, controller, recording_sleep):
        doc = create_article_doc(_id="a")
        store = FakeArticleStore([doc])
        asyncio.run(store.claim(doc, "other-worker", 300))
        worker = build_worker(store, controller, recording_sleep, FakeGeminiClient())

        assert asyncio.run(worker.process_next_article()) == WorkResult.IDLE

    def test_syndicated_copy_inherits_original(self, controller, recording_sleep):
        original = create_article_doc(
            _id="original",
            analysis_type="Full",
            analysis_version="3.8",
            published_at=hours_ago(2),
            summary="Ministers agreed a framework.",
            category="Economy",
            country="Global",
            cluster_topic="G20 Payments Framework",
            cluster_id=7,
            bias_score=17,
            trust_score=88,
            embedding=BASE,
        )
        copy = create_article_doc(_id="copy", embedding=vector_with_similarity(BASE, 0.95))
        store = FakeArticleStore([original, copy])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload())]})
        worker = build_worker(store, controller, recording_sleep, gemini)

        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        doc = store.docs["copy"]
        assert doc["cluster_id"] == 7
        assert doc["inherited_from"] == "original"
        assert doc["bias_score"] == 17
        assert doc["trust_score"] == 88
        assert doc["summary"] == "Ministers agreed a framework."
        assert doc["analysis_version"] == "3.8"

    def test_unclustered_original_still_gets_a_cluster(self, controller, recording_sleep):
        """Copying an original that was never clustered leaves neither a null cluster nor null scores."""
        original = create_article_doc(
            _id="original",
            analysis_type="Full",
            analysis_version="3.8",
            published_at=hours_ago(2),
            summary="Ministers agreed a framework.",
            category="Economy",
            country="Global",
            cluster_topic="G20 Payments Framework",
            political_lean=None,
            trust_score=88,
            embedding=BASE,
        )
        copy = create_article_doc(_id="copy", embedding=vector_with_similarity(BASE, 0.95))
        store = FakeArticleStore([original, copy])
        gemini = FakeGeminiClient({AI_MODEL_PRO: [make_response(analysis_payload())]})
        worker = build_worker(store, controller, recording_sleep, gemini, counter=FakeClusterCounter(value=40))

        assert asyncio.run(worker.process_next_article()) == WorkResult.PROCESSED

        doc = store.docs["copy"]
        assert doc["cluster_id"] == 41
        assert doc["inherited_from"] == "original"
        assert doc["trust_score"] == 88
        assert doc["summary"] == "Ministers agreed a framework."
        assert doc["political_lean"] == "Center"

    def test_unexpected_error_defers_article(self, controller, recording_sleep):
        store = FakeArticleStore([create_article_doc(_id="a")])
        worker = build_worker(store, controller, recording_sleep, FakeGeminiClient())

        async def explode(article, depth):
            raise RuntimeError("boom")

        worker.orchestrator.analyze = explode

        with pytest.raises(RuntimeError):
            asyncio.run(worker.process_next_article())
        assert "claimed_by" not in store.docs["a"]
        assert store.docs["a"]["analysis_attempts"] == 1


def test_retry_delay_doubles_up_to_cap():
    assert retry_delay(0) == FAILED_RETRY_BASE_SECONDS
    assert retry_delay(1) == 2 * FAILED_RETRY_BASE_SECONDS
    assert retry_delay(50) == FAILED_RETRY_MAX_SECONDS


def test_run_forever_polls_when_idle(controller):
    store = FakeArticleStore()
    delays = []

    async def sleep(seconds):
        delays.append(seconds)
        worker.stop()

    worker = build_worker(store, controller, sleep, FakeGeminiClient())

    asyncio.run(worker.run_forever(idle_poll_seconds=60))

    assert delays == [60]
