"""
Narrative Response Parser
Turns a raw Gemini response into a validated ArticleAnalysis

Validation order:
  1. no candidates        -> ResponseBlocked (safety block vs. empty answer)
  2. abnormal stop reason -> SAFETY always fails, others keep partial text if any
  3. text payload         -> must be present and non-blank
  4. JSON extraction      -> code fences stripped, first '{' .. last '}'
  5. JSON parsing         -> ResponseMalformed, flagged when output looks truncated
  6. field normalization  -> defaults and enum coercion
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from narrative.ai_pipeline.errors import ResponseBlocked, ResponseMalformed
from narrative.ai_pipeline.source_config import DEFAULT_COUNTRY, VALID_COUNTRIES
from narrative.models.article import AnalysisType, ArticleAnalysis, PoliticalLean, Sentiment

logger = logging.getLogger(__name__)

NORMAL_FINISH = "STOP"
BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
TRUNCATED_FINISH = "MAX_TOKENS"

NEUTRAL_SCORE = 0  # "not assessed"
BIAS_COMPONENT_GROUPS = ["linguistic", "sourceSelection", "demographic", "framing"]

ANALYSIS_TYPES = [AnalysisType.FULL.value, AnalysisType.SENTIMENT_ONLY.value]
SENTIMENTS = [s.value for s in Sentiment]
POLITICAL_LEANS = [p.value for p in PoliticalLean]

_FENCE_RE = re.compile(r"```(?:json|JSON)?")


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value)).upper()


def candidate_text(candidate: Any) -> str:
    """Concatenate the text parts of a candidate, skipping thought parts"""
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    texts = []
    for part in parts:
        if getattr(part, "thought", False):
            continue
        text = getattr(part, "text", None)
        if text:
            texts.append(text)
    return "".join(texts)


def extract_json_object(text: str) -> Optional[str]:
    """
    Pull the object-shaped substring out of free-form model output.

    Markdown fences are removed first, then the span from the first '{' to the
    last '}' is returned. None when no such span exists.
    """
    if not text:
        return None

    stripped = _FENCE_RE.sub("", text).strip()
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return stripped[start:end + 1]


def parse_response_payload(response: Any) -> Tuple[Dict[str, Any], Optional[str]]:
    """Steps 1-5. Returns the raw JSON object and the candidate's finish reason."""
    candidates = getattr(response, "candidates", None)
    if not candidates:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = _enum_value(getattr(feedback, "block_reason", None))
        if block_reason:
            raise ResponseBlocked(f"API Response Error: blocked by safety filter ({block_reason})")
        raise ResponseBlocked("API Response Error: No candidates")

    candidate = candidates[0]
    finish_reason = _enum_value(getattr(candidate, "finish_reason", None))
    text = candidate_text(candidate)

    if finish_reason and finish_reason != NORMAL_FINISH:
        logger.warning(f"Candidate finishReason: {finish_reason}. Content may be partial.")
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise ResponseBlocked(f"API Response Blocked: Candidate stopped for {finish_reason}")
        if not text.strip():
            raise ResponseMalformed(
                f"Candidate stopped for {finish_reason} and has no text.",
                truncated=finish_reason == TRUNCATED_FINISH,
            )

    if not text or not text.strip():
        raise ResponseMalformed("Response candidate missing text content")

    json_text = extract_json_object(text)
    if json_text is None:
        raise ResponseMalformed("No valid JSON object found in response text")

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as e:
        truncated = finish_reason == TRUNCATED_FINISH or not text.rstrip().rstrip("`").rstrip().endswith("}")
        note = " (likely truncated output, consider raising max output tokens)" if truncated else ""
        raise ResponseMalformed(
            f"Invalid JSON in response at line {e.lineno} col {e.colno}: {e.msg}{note}",
            truncated=truncated,
        ) from e

    if not isinstance(parsed, dict):
        raise ResponseMalformed("Parsed content is not a JSON object")

    return parsed, finish_reason


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _clean_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class _Normalizer:
    """Applies defaults field by field and remembers what it had to default"""

    def __init__(self, raw: Dict[str, Any], sentiment_only: bool):
        self.raw = raw
        self.sentiment_only = sentiment_only
        self.defaulted: List[str] = []

    def choice(self, key: str, field: str, allowed: List[str], default: str, required: bool = True) -> str:
        value = self.raw.get(key)
        if value in allowed:
            return value
        if required or value is not None:
            self.defaulted.append(field)
        return default

    def score(self, value: Any, field: Optional[str] = None) -> int:
        if self.sentiment_only:
            return NEUTRAL_SCORE

        number = None
        if _is_number(value):
            number = float(value)
        elif isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                number = None

        if number is not None and not math.isnan(number) and 0 <= number <= 100:
            return int(round(number))

        if field:
            self.defaulted.append(field)
        return NEUTRAL_SCORE

    def components(self, value: Any) -> Dict[str, int]:
        if not isinstance(value, dict):
            return {}
        return {str(k): self.score(v) for k, v in value.items()}


def normalize_analysis(raw: Dict[str, Any], shallow: bool = False) -> Tuple[ArticleAnalysis, List[str]]:
    """
    Step 6: coerce a raw analysis object into an ArticleAnalysis.

    Returns the analysis and the list of fields that fell back to defaults.
    A shallow (basic) analysis is always SentimentOnly with zeroed scores.
    """
    if shallow:
        analysis_type = AnalysisType.SENTIMENT_ONLY.value
        defaulted_type = False
    else:
        analysis_type = raw.get("analysisType")
        defaulted_type = analysis_type not in ANALYSIS_TYPES
        if defaulted_type:
            analysis_type = AnalysisType.FULL.value

    sentiment_only = analysis_type == AnalysisType.SENTIMENT_ONLY.value
    norm = _Normalizer(raw, sentiment_only)
    if defaulted_type:
        norm.defaulted.append("analysis_type")

    summary = _clean_string(raw.get("summary"))
    if summary is None:
        norm.defaulted.append("summary")
        summary = "Summary unavailable"

    category = _clean_string(raw.get("category"))
    if category is None:
        norm.defaulted.append("category")
        category = "General"

    sentiment = norm.choice("sentiment", "sentiment", SENTIMENTS, Sentiment.NEUTRAL.value)

    if sentiment_only:
        political_lean = PoliticalLean.NOT_APPLICABLE.value
    else:
        political_lean = norm.choice(
            "politicalLean", "political_lean", POLITICAL_LEANS, PoliticalLean.CENTER.value
        )

    is_junk = raw.get("isJunk")
    is_junk = is_junk is True or (isinstance(is_junk, str) and is_junk.strip().lower() in ("yes", "true"))

    country = raw.get("country") if raw.get("country") in VALID_COUNTRIES else DEFAULT_COUNTRY

    bias_score = norm.score(raw.get("biasScore"), "bias_score")
    credibility_score = norm.score(raw.get("credibilityScore"), "credibility_score")
    reliability_score = norm.score(raw.get("reliabilityScore"), "reliability_score")

    trust_score = 0
    if not sentiment_only and credibility_score > 0 and reliability_score > 0:
        trust_score = int(round(math.sqrt(credibility_score * reliability_score)))

    bias_components: Dict[str, Any] = {}
    credibility_components: Dict[str, Any] = {}
    reliability_components: Dict[str, Any] = {}
    if not sentiment_only:
        raw_bias = raw.get("biasComponents") if isinstance(raw.get("biasComponents"), dict) else {}
        bias_components = {group: norm.components(raw_bias.get(group)) for group in BIAS_COMPONENT_GROUPS}
        credibility_components = norm.components(raw.get("credibilityComponents"))
        reliability_components = norm.components(raw.get("reliabilityComponents"))

    def string_list(key: str) -> List[str]:
        value = raw.get(key)
        return [str(item) for item in value] if isinstance(value, list) else []

    def optional_str(key: str) -> Optional[str]:
        value = raw.get(key)
        return value if isinstance(value, str) else None

    def optional_number(key: str) -> Optional[float]:
        value = raw.get(key)
        return value if _is_number(value) else None

    analysis = ArticleAnalysis(
        summary=summary,
        category=category,
        analysis_type=analysis_type,
        sentiment=sentiment,
        political_lean=political_lean,
        is_junk=is_junk,
        cluster_topic=_clean_string(raw.get("clusterTopic")),
        country=country,
        primary_noun=_clean_string(raw.get("primaryNoun")),
        secondary_noun=_clean_string(raw.get("secondaryNoun")),
        bias_score=bias_score,
        bias_label=optional_str("biasLabel"),
        bias_components=bias_components,
        credibility_score=credibility_score,
        credibility_grade=optional_str("credibilityGrade"),
        credibility_components=credibility_components,
        reliability_score=reliability_score,
        reliability_grade=optional_str("reliabilityGrade"),
        reliability_components=reliability_components,
        trust_score=trust_score,
        trust_level=optional_str("trustLevel"),
        coverage_left=None if sentiment_only else optional_number("coverageLeft"),
        coverage_center=None if sentiment_only else optional_number("coverageCenter"),
        coverage_right=None if sentiment_only else optional_number("coverageRight"),
        key_findings=string_list("keyFindings"),
        recommendations=string_list("recommendations"),
    )
    return analysis, norm.defaulted


def parse_analysis_response(response: Any, shallow: bool = False) -> Tuple[ArticleAnalysis, List[str]]:
    """Full validation pipeline, steps 1-6"""
    raw, _ = parse_response_payload(response)
    return normalize_analysis(raw, shallow=shallow)
