"""
Narrative Gatekeeper
Cheap pre-classification before the expensive analysis call
"""
import logging
import time
from typing import Callable, Iterable, List, Optional

from pymongo.errors import PyMongoError

from narrative.ai_pipeline.errors import PipelineError
from narrative.ai_pipeline.gemini_client import GeminiClient
from narrative.ai_pipeline.key_rotation import KeyRotationController
from narrative.ai_pipeline.prompts import gatekeeper_prompt
from narrative.ai_pipeline.response_parser import parse_response_payload
from narrative.ai_pipeline.source_config import (
    DEFAULT_BANNED_DOMAINS, JUNK_KEYWORDS, find_banned_domain, find_junk_keyword, is_trusted_source,
)
from narrative.ai_pipeline.text_utils import domain_of, truncate
from narrative.config import AI_MODEL_FAST, GATEKEEPER_PROVIDER, GATEKEEPER_TIMEOUT_SECONDS
from narrative.models.analysis import AnalysisDepth, GatekeeperDecision, NewsDepth
from narrative.models.article import CandidateArticle

logger = logging.getLogger(__name__)

CACHE_PREFIX = "GATEKEEPER:"
CACHE_TTL_SECONDS = 24 * 3600
MIN_TEXT_CHARS = 50
CAPS_MIN_TITLE_CHARS = 20
CAPS_RATIO = 0.75

# system_config entries, seeded from source_config when missing
BANNED_DOMAINS_KEY = "BANNED_DOMAINS"
JUNK_KEYWORDS_KEY = "JUNK_KEYWORDS"
CONFIG_REFRESH_SECONDS = 300

# A domain is banned after this many AI-confirmed junk articles within the window
STRIKE_PREFIX = "strikes:"
STRIKE_LIMIT = 5
STRIKE_WINDOW_SECONDS = 3 * 24 * 3600


def decision_for(depth_type: NewsDepth, category: str = "Other", reason: Optional[str] = None) -> GatekeeperDecision:
    return GatekeeperDecision(
        category=category,
        depth_type=depth_type,
        is_junk=depth_type == NewsDepth.JUNK,
        recommended_depth=AnalysisDepth.DEEP if depth_type == NewsDepth.HARD else AnalysisDepth.SHALLOW,
        reason=reason,
    )


def fail_open_decision(reason: str) -> GatekeeperDecision:
    """Not junk, Soft News, shallow: keep the article rather than lose it"""
    return decision_for(NewsDepth.SOFT, reason=reason)


def local_junk_reason(
    article: CandidateArticle,
    keywords: Optional[List[str]] = None,
    banned_domains: Optional[Iterable[str]] = None,
) -> Optional[str]:
    if banned_domains and find_banned_domain(article.url, banned_domains):
        return "Banned Domain"

    title = (article.title or "").strip()
    description = (article.description or "").strip()

    keyword = find_junk_keyword(f"{title} {description}", keywords)
    if keyword:
        return f'Keyword Match: "{keyword}"'

    if len(title) + len(description) < MIN_TEXT_CHARS:
        return "Too Short / Empty"

    upper = sum(1 for c in title if "A" <= c <= "Z")
    if len(title) > CAPS_MIN_TITLE_CHARS and upper / len(title) > CAPS_RATIO:
        return "ALL CAPS TITLE"

    return None


class GatekeeperService:
    def __init__(
        self,
        controller: KeyRotationController,
        gemini: Optional[GeminiClient] = None,
        cache=None,
        db=None,
        junk_keywords: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Without db the built-in banned domains and junk keywords are used and
        never refreshed. Without cache nothing is remembered and no strikes
        are counted.
        """
        self.controller = controller
        self.gemini = gemini or GeminiClient()
        self.cache = cache
        self.config_collection = db["system_config"] if db is not None else None
        self.banned_domains = set(DEFAULT_BANNED_DOMAINS)
        self.junk_keywords = junk_keywords
        self._clock = clock
        self._config_loaded_at: Optional[float] = None

    async def _config_list(self, key: str, defaults: List[str]) -> Optional[List[str]]:
        """Stored list for key, seeding it with defaults when missing. None if unreadable."""
        try:
            conf = await self.config_collection.find_one({"key": key})
            if conf is None:
                await self.config_collection.update_one(
                    {"key": key}, {"$setOnInsert": {"value": list(defaults)}}, upsert=True
                )
                logger.info(f"Seeded {key} in system_config")
                return list(defaults)
        except PyMongoError as e:
            logger.warning(f"Could not load {key}, keeping current list: {e}")
            return None

        value = conf.get("value")
        if not isinstance(value, list):
            return list(defaults)
        return [v.strip().lower() for v in value if isinstance(v, str) and v.strip()]

    async def load_config(self):
        """Refresh banned domains and junk keywords from system_config every few minutes"""
        if self.config_collection is None:
            return
        now = self._clock()
        if self._config_loaded_at is not None and now - self._config_loaded_at < CONFIG_REFRESH_SECONDS:
            return
        self._config_loaded_at = now

        banned = await self._config_list(BANNED_DOMAINS_KEY, DEFAULT_BANNED_DOMAINS)
        if banned is not None:
            self.banned_domains = set(banned)
        keywords = await self._config_list(JUNK_KEYWORDS_KEY, JUNK_KEYWORDS)
        if keywords is not None:
            self.junk_keywords = keywords

    async def record_strike(self, url: str):
        """Count an AI-confirmed junk article against its domain and ban repeat offenders"""
        domain = domain_of(url)
        if not domain or self.cache is None or domain in self.banned_domains:
            return

        key = f"{STRIKE_PREFIX}{domain}"
        strikes = await self.cache.increment(key, STRIKE_WINDOW_SECONDS)
        if strikes < STRIKE_LIMIT:
            return

        logger.warning(f"Auto-banning domain {domain} after {strikes} AI-confirmed junk articles")
        self.banned_domains.add(domain)
        if self.config_collection is not None:
            try:
                await self.config_collection.update_one(
                    {"key": BANNED_DOMAINS_KEY}, {"$addToSet": {"value": domain}}, upsert=True
                )
            except PyMongoError as e:
                logger.error(f"Failed to store ban for {domain}: {e}")
        await self.cache.delete(key)

    async def _cached(self, url: str) -> Optional[GatekeeperDecision]:
        if self.cache is None or not url:
            return None
        data = await self.cache.get(f"{CACHE_PREFIX}{url}")
        return GatekeeperDecision(**data) if data else None

    async def _remember(self, url: str, decision: GatekeeperDecision):
        if self.cache is not None and url:
            await self.cache.set(f"{CACHE_PREFIX}{url}", decision.model_dump(mode="json"), CACHE_TTL_SECONDS)

    async def _classify_remotely(self, article: CandidateArticle) -> GatekeeperDecision:
        prompt = gatekeeper_prompt(article.title, article.description, article.source)

        async def call(api_key: str):
            return await self.gemini.generate(
                api_key,
                AI_MODEL_FAST,
                prompt,
                temperature=0.0,
                timeout=GATEKEEPER_TIMEOUT_SECONDS,
            )

        response = await self.controller.execute_with_retry(GATEKEEPER_PROVIDER, call, context=article.title)
        raw, _ = parse_response_payload(response)

        try:
            depth_type = NewsDepth(raw.get("type"))
        except ValueError:
            depth_type = NewsDepth.SOFT

        category = raw.get("category") if isinstance(raw.get("category"), str) and raw.get("category") else "Other"
        reason = "AI Classified as Junk" if depth_type == NewsDepth.JUNK else None
        return decision_for(depth_type, category, reason)

    async def evaluate(self, article: CandidateArticle) -> GatekeeperDecision:
        cached = await self._cached(article.url)
        if cached is not None:
            return cached

        await self.load_config()
        reason = local_junk_reason(article, self.junk_keywords, self.banned_domains)
        if reason:
            decision = decision_for(NewsDepth.JUNK, reason=reason)
            logger.info(f"  Gatekeeper junk ({reason}): {truncate(article.title)}")
            await self._remember(article.url, decision)
            return decision

        if is_trusted_source(article.source):
            decision = decision_for(NewsDepth.HARD, reason="Trusted Source")
            await self._remember(article.url, decision)
            return decision

        try:
            decision = await self._classify_remotely(article)
        except PipelineError as e:
            logger.error(f"Gatekeeper Error: {e}")
            return fail_open_decision(str(e))

        if decision.is_junk:
            await self.record_strike(article.url)
        await self._remember(article.url, decision)
        return decision
