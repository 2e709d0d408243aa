# narrative/models/article.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what MongoDB hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AnalysisType(str, Enum):
    FULL = "Full"
    SENTIMENT_ONLY = "SentimentOnly"
    PENDING = "Pending"  # Stored but not analyzed yet


class Sentiment(str, Enum):
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"


class PoliticalLean(str, Enum):
    LEFT = "Left"
    LEFT_LEANING = "Left-Leaning"
    CENTER = "Center"
    RIGHT_LEANING = "Right-Leaning"
    RIGHT = "Right"
    NOT_APPLICABLE = "Not Applicable"


class CandidateArticle(BaseModel):
    """Raw article handed over by a feed source"""
    title: str = ""
    description: str = ""
    url: str = ""
    image_url: Optional[str] = None
    source: str = ""
    published_at: datetime = Field(default_factory=utcnow)
    embedding: Optional[List[float]] = None
    country: Optional[str] = None

    # Attached by the filter stage
    complexity_score: Optional[float] = None


class ArticleAnalysis(BaseModel):
    """Validated output of the analysis call"""
    summary: str = "Summary unavailable"
    category: str = "General"
    analysis_type: AnalysisType = AnalysisType.FULL
    sentiment: Sentiment = Sentiment.NEUTRAL
    political_lean: PoliticalLean = PoliticalLean.CENTER
    is_junk: bool = False

    # Clustering fields
    cluster_topic: Optional[str] = None
    country: str = "Global"
    primary_noun: Optional[str] = None
    secondary_noun: Optional[str] = None

    # Scores (0-100, 0 means not assessed)
    bias_score: int = 0
    bias_label: Optional[str] = None
    bias_components: Dict[str, Any] = Field(default_factory=dict)
    credibility_score: int = 0
    credibility_grade: Optional[str] = None
    credibility_components: Dict[str, Any] = Field(default_factory=dict)
    reliability_score: int = 0
    reliability_grade: Optional[str] = None
    reliability_components: Dict[str, Any] = Field(default_factory=dict)
    trust_score: int = 0
    trust_level: Optional[str] = None

    coverage_left: Optional[float] = None
    coverage_center: Optional[float] = None
    coverage_right: Optional[float] = None

    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    def to_update_fields(self) -> Dict[str, Any]:
        """Fields written onto the stored article"""
        fields = self.model_dump(mode="json", exclude={"is_junk"})
        for share in ("coverage_left", "coverage_center", "coverage_right"):
            if fields[share] is None:
                fields[share] = 0
        return fields


# Fields copied from the original when a syndicated duplicate is found
INHERITED_FIELDS = [
    "summary", "category", "analysis_type", "sentiment", "political_lean",
    "cluster_topic", "primary_noun", "secondary_noun",
    "bias_score", "bias_label", "bias_components",
    "credibility_score", "credibility_grade", "credibility_components",
    "reliability_score", "reliability_grade", "reliability_components",
    "trust_score", "trust_level",
    "coverage_left", "coverage_center", "coverage_right",
    "key_findings", "recommendations",
]


class AnalyzedArticle(CandidateArticle):
    """Stored article, created as Pending and filled in by the worker"""
    id: Optional[Any] = None
    analysis_type: AnalysisType = AnalysisType.PENDING
    analysis_version: Optional[str] = None
    analysis: Optional[ArticleAnalysis] = None
    cluster_id: Optional[int] = None
    ingested_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def pending_from(cls, candidate: CandidateArticle) -> "AnalyzedArticle":
        return cls(**candidate.model_dump())

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "AnalyzedArticle":
        base = {k: doc.get(k) for k in CandidateArticle.model_fields if doc.get(k) is not None}
        analysis = None
        if doc.get("analysis_type") not in (None, AnalysisType.PENDING.value):
            analysis = ArticleAnalysis(**{
                k: doc[k] for k in ArticleAnalysis.model_fields if doc.get(k) is not None
            })
        return cls(
            **base,
            id=doc.get("_id"),
            analysis_type=doc.get("analysis_type") or AnalysisType.PENDING,
            analysis_version=doc.get("analysis_version"),
            analysis=analysis,
            cluster_id=doc.get("cluster_id"),
            ingested_at=doc.get("ingested_at") or utcnow(),
        )

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="python", exclude={"id", "analysis"})
        doc["analysis_type"] = self.analysis_type.value
        if self.analysis is not None:
            doc.update(self.analysis.to_update_fields())
        if doc.get("embedding") is None:
            doc.pop("embedding", None)
        return doc
