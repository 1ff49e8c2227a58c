"""
Matches Router - ranked matches for a listing and on-demand explanations
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from tutor_match.models.listings import Direction
from tutor_match.models.response import ExplanationResponse, ExplanationStyle, MatchOptions, MatchResponse
from tutor_match.services.matching import MatchingEngine, get_engine
from tutor_match.utils.exceptions import MatchingBaseException, map_to_http_exception
from tutor_match.utils.logging_config import get_logger

router = APIRouter(prefix="/matches", tags=["matches"])
logger = get_logger(__name__)


@router.get("/{listing_id}", response_model=MatchResponse)
async def get_matches(
    listing_id: str,
    direction: Optional[Direction] = Query(None, description="Resolved from the listing when omitted"),
    limit: int = Query(10, ge=1, le=100),
    min_score: float = Query(0.5, ge=0.0, le=1.0),
    include_explanations: bool = Query(False, description="One paid call per result; prefer the explain endpoint"),
    engine: MatchingEngine = Depends(get_engine),
):
    """Ranked matches on the other side of the marketplace"""
    options = MatchOptions(limit=limit, min_score=min_score, include_explanations=include_explanations)
    try:
        return await engine.get_matches(listing_id, options, direction)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)


@router.post("/{listing_id}/explain/{candidate_id}", response_model=ExplanationResponse)
async def explain_match(
    listing_id: str,
    candidate_id: str,
    direction: Optional[Direction] = Query(None),
    style: ExplanationStyle = Query(ExplanationStyle.SHORT),
    engine: MatchingEngine = Depends(get_engine),
):
    """Explain a single match the caller selected"""
    try:
        return await engine.explain_match(listing_id, candidate_id, direction, style)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)
