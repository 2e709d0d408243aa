# narrative/models/analysis.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum

from narrative.models.article import ArticleAnalysis


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    DEFAULTED = "defaulted"  # Parsed, but some fields fell back to neutral defaults
    FAILED = "failed"        # Nothing usable, article stays Pending
    JUNK = "junk"            # Delete instead of persisting


class AnalysisOutcome(BaseModel):
    status: OutcomeStatus
    analysis: Optional[ArticleAnalysis] = None
    defaulted_fields: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def should_persist(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.DEFAULTED)


class NewsDepth(str, Enum):
    HARD = "Hard News"
    SOFT = "Soft News"
    JUNK = "Junk"


class AnalysisDepth(str, Enum):
    DEEP = "deep"
    SHALLOW = "shallow"


class GatekeeperDecision(BaseModel):
    category: str = "Other"
    depth_type: NewsDepth = NewsDepth.SOFT
    is_junk: bool = False
    recommended_depth: AnalysisDepth = AnalysisDepth.SHALLOW
    reason: Optional[str] = None


class AssignmentKind(str, Enum):
    HEADLINE_DUPLICATE = "headline_duplicate"  # Reworded headline, scores copied
    INHERITED = "inherited"        # Syndicated duplicate, scores copied
    VECTOR_MATCH = "vector_match"
    FIELD_MATCH = "field_match"
    NEW_CLUSTER = "new_cluster"
    FALLBACK_ID = "fallback_id"    # Counter unavailable, timestamp id


class ClusterAssignment(BaseModel):
    kind: AssignmentKind
    cluster_id: Optional[int] = None
    similarity: Optional[float] = None
    matched_article_id: Optional[Any] = None
    # Set whenever scores were copied, even if a later tier picked the cluster
    duplicate_of: Optional[Any] = None
    inherited_fields: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None
