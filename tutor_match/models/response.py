# models/response.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tutor_match.models.listings import Direction


class ExplanationStyle(str, Enum):
    SHORT = "short"
    DETAILED = "detailed"


class MatchOptions(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    include_explanations: bool = False


class MatchDetail(BaseModel):
    """Per-factor breakdown. None means the factor was absent on either side."""
    subject_ratio: Optional[float] = None
    subject_match: bool = False
    matched_subject_ids: List[str] = Field(default_factory=list)
    level_match: Optional[bool] = None
    matched_levels: List[str] = Field(default_factory=list)
    price_match: Optional[bool] = None
    mode_match: Optional[bool] = None
    semantic_score: Optional[float] = None


class MatchResult(BaseModel):
    candidate_id: str
    owner_id: str
    structured_score: float = Field(ge=0.0, le=1.0)
    semantic_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    combined_score: float = Field(ge=0.0, le=1.0)
    match_detail: MatchDetail
    explanation: Optional[str] = None


class MatchResponse(BaseModel):
    source_listing_id: str
    direction: Direction
    total: int
    results: List[MatchResult]
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class ExplanationResponse(BaseModel):
    source_listing_id: str
    candidate_id: str
    direction: Direction
    style: ExplanationStyle
    explanation: str


class FilterDebugResponse(BaseModel):
    source_listing_id: str
    direction: Direction
    filter: Dict[str, Any]
    query: Dict[str, Any]
    total_active: int
    matching: int


class VectorizationResult(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0


class AIStatusResponse(BaseModel):
    embedding_available: bool
    explanation_available: bool
    embedded_profiles: int
    embedded_seeker_listings: int
    embedded_provider_listings: int
    provider_listings_total: int
    provider_listings_active: int
