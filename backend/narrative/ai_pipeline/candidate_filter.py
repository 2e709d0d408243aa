"""
Narrative Candidate Filter
Scores, validates and de-duplicates a batch of raw candidates before they are stored
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from narrative.ai_pipeline.errors import ValidationRejected
from narrative.ai_pipeline.source_config import find_junk_keyword, is_trusted_source
from narrative.ai_pipeline.text_utils import (
    clean_text, count_words, format_headline, normalize_url, reading_complexity,
    similarity_score, truncate,
)
from narrative.config import FilterConfig
from narrative.models.article import CandidateArticle

logger = logging.getLogger(__name__)

WEIGHTS_CACHE_KEY = "CONFIG_SCORING_WEIGHTS"


def merge_weights(stored: Any) -> Dict[str, float]:
    """Overlay stored weights on the defaults, ignoring unknown or non-numeric entries"""
    weights = dict(FilterConfig.DEFAULT_WEIGHTS)
    if not isinstance(stored, dict):
        return weights

    for name, value in stored.items():
        if name in weights and isinstance(value, (int, float)) and not isinstance(value, bool):
            weights[name] = value
    return weights


def calculate_score(article: CandidateArticle, weights: Dict[str, float]) -> float:
    score = 0
    trusted = is_trusted_source(article.source)

    # Image quality
    if article.image_url and article.image_url.startswith("http"):
        score += weights["image_bonus"]
    elif trusted:
        score += weights["missing_image_penalty"]
    else:
        score += weights["missing_image_untrusted_penalty"]

    if article.title and len(article.title) > FilterConfig.LONG_TITLE_CHARS:
        score += weights["title_length_bonus"]

    if trusted:
        score += weights["trusted_source_bonus"]

    if find_junk_keyword(article.title):
        score += weights["junk_keyword_penalty"]

    return score


def validate_candidate(article: CandidateArticle):
    """Raise ValidationRejected when a cleaned candidate is too thin to analyze"""
    if not article.title or not article.url:
        raise ValidationRejected("missing title or url")
    if article.title == FilterConfig.NO_TITLE_SENTINEL:
        raise ValidationRejected("no title")
    if len(article.title) < FilterConfig.MIN_TITLE_CHARS:
        raise ValidationRejected("title too short")
    if not article.description or len(article.description) < FilterConfig.MIN_DESCRIPTION_CHARS:
        raise ValidationRejected("description too short")
    if count_words(f"{article.title} {article.description}") < FilterConfig.MIN_TOTAL_WORDS:
        raise ValidationRejected("not enough words")


def is_fuzzy_duplicate(title: str, accepted_titles: List[str]) -> bool:
    for existing in accepted_titles:
        if abs(len(title) - len(existing)) > FilterConfig.FUZZY_MAX_LENGTH_DIFF:
            continue
        if similarity_score(title, existing) > FilterConfig.FUZZY_SIMILARITY_THRESHOLD:
            return True
    return False


class CandidateFilterService:
    def __init__(self, db=None, cache=None):
        """
        db and cache are optional: without them the default weights are used.
        """
        self.config_collection = db["system_config"] if db is not None else None
        self.cache = cache
        self.stats: Dict[str, int] = {}
        self._reset_stats()

    def _reset_stats(self):
        self.stats = {
            "total_candidates": 0,
            "accepted": 0,
            "below_cutoff": 0,
            "invalid": 0,
            "duplicate_url": 0,
            "duplicate_title": 0,
        }

    async def load_weights(self) -> Dict[str, float]:
        """Scoring weights from system_config, cached for a few minutes"""
        if self.cache is not None:
            cached = await self.cache.get(WEIGHTS_CACHE_KEY)
            if cached:
                return merge_weights(cached)

        if self.config_collection is None:
            return dict(FilterConfig.DEFAULT_WEIGHTS)

        try:
            conf = await self.config_collection.find_one({"key": FilterConfig.WEIGHTS_CONFIG_KEY})
        except PyMongoError as e:
            logger.warning(f"Could not load scoring weights, using defaults: {e}")
            return dict(FilterConfig.DEFAULT_WEIGHTS)

        if conf and isinstance(conf.get("value"), dict):
            if self.cache is not None:
                await self.cache.set(WEIGHTS_CACHE_KEY, conf["value"], FilterConfig.WEIGHTS_CACHE_TTL_SECONDS)
            return merge_weights(conf["value"])

        return dict(FilterConfig.DEFAULT_WEIGHTS)

    def _normalize(self, article: CandidateArticle) -> CandidateArticle:
        description = clean_text(article.description or "")
        return article.model_copy(update={
            "title": format_headline(clean_text(article.title or "")),
            "description": description,
            "url": normalize_url(article.url),
            "complexity_score": reading_complexity(description),
        })

    def process_batch(
        self, candidates: List[CandidateArticle], weights: Optional[Dict[str, float]] = None
    ) -> List[CandidateArticle]:
        """
        Accepted candidates, newest published first.

        Candidates are visited best score first so that when two near-identical
        stories compete the better one is kept.
        """
        weights = merge_weights(weights) if weights is not None else dict(FilterConfig.DEFAULT_WEIGHTS)
        self._reset_stats()
        self.stats["total_candidates"] = len(candidates)

        scored: List[Tuple[float, CandidateArticle]] = [
            (calculate_score(article, weights), article) for article in candidates
        ]
        scored.sort(key=lambda item: item[0], reverse=True)

        accepted: List[CandidateArticle] = []
        seen_urls = set()
        seen_titles: List[str] = []

        for score, candidate in scored:
            if score < weights["min_score_cutoff"]:
                self.stats["below_cutoff"] += 1
                logger.debug(f"  [REJECTED] score {score}: {truncate(candidate.title)}")
                continue

            article = self._normalize(candidate)

            try:
                validate_candidate(article)
            except ValidationRejected as e:
                self.stats["invalid"] += 1
                logger.debug(f"  [REJECTED] {e.reason}: {truncate(article.title)}")
                continue

            if article.url in seen_urls:
                self.stats["duplicate_url"] += 1
                logger.debug(f"  [REJECTED] duplicate url: {article.url}")
                continue

            if is_fuzzy_duplicate(article.title, seen_titles):
                self.stats["duplicate_title"] += 1
                logger.debug(f"  [REJECTED] duplicate title: {truncate(article.title)}")
                continue

            seen_urls.add(article.url)
            seen_titles.append(article.title)
            accepted.append(article)

        self.stats["accepted"] = len(accepted)
        logger.info(
            f"Filter: {self.stats['accepted']}/{self.stats['total_candidates']} accepted "
            f"(cutoff {self.stats['below_cutoff']}, invalid {self.stats['invalid']}, "
            f"dup url {self.stats['duplicate_url']}, dup title {self.stats['duplicate_title']})"
        )

        return sorted(accepted, key=lambda a: a.published_at, reverse=True)

    async def filter_batch(self, candidates: List[CandidateArticle]) -> List[CandidateArticle]:
        weights = await self.load_weights()
        return self.process_batch(candidates, weights)
