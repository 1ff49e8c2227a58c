"""
AI Router - provider status, filter diagnostics and vectorization triggers
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from tutor_match.models.listings import Direction, EntityKind
from tutor_match.models.response import AIStatusResponse, FilterDebugResponse, VectorizationResult
from tutor_match.services.matching import MatchingEngine, get_engine
from tutor_match.services.vectorization import Vectorizer
from tutor_match.utils.exceptions import MatchingBaseException, map_to_http_exception
from tutor_match.utils.logging_config import get_logger

router = APIRouter(prefix="/ai", tags=["ai"])
logger = get_logger(__name__)


def get_vectorizer(engine: MatchingEngine = Depends(get_engine)) -> Vectorizer:
    return Vectorizer(engine)


@router.get("/status", response_model=AIStatusResponse)
async def ai_status(engine: MatchingEngine = Depends(get_engine)):
    """Provider availability and embedding coverage"""
    try:
        return await engine.status()
    except MatchingBaseException as e:
        raise map_to_http_exception(e)


@router.get("/listings/{listing_id}/debug-filters", response_model=FilterDebugResponse)
async def debug_filters(
    listing_id: str,
    direction: Optional[Direction] = Query(None),
    engine: MatchingEngine = Depends(get_engine),
):
    """Show the candidate filter built for a listing and how many listings it lets through"""
    try:
        return await engine.debug_filters(listing_id, direction)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)


@router.post("/listings/{listing_id}/vectorize", response_model=VectorizationResult)
async def vectorize_listing(
    listing_id: str,
    force: bool = Query(False, description="Re-embed even when the cached vector is fresh"),
    vectorizer: Vectorizer = Depends(get_vectorizer),
):
    try:
        return await vectorizer.vectorize_listing(listing_id, force)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)


@router.post("/profiles/{owner_id}/vectorize", response_model=VectorizationResult)
async def vectorize_profile(
    owner_id: str,
    force: bool = Query(False),
    vectorizer: Vectorizer = Depends(get_vectorizer),
):
    try:
        return await vectorizer.vectorize_profile(owner_id, force)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)


@router.post("/vectorize-stale", response_model=VectorizationResult)
async def vectorize_stale(
    kind: EntityKind = Query(EntityKind.PROVIDER_PROFILE),
    limit: int = Query(50, ge=1, le=500),
    vectorizer: Vectorizer = Depends(get_vectorizer),
):
    """Embed entities whose embedding is missing or older than their content"""
    logger.info(f"Stale vectorization requested for {kind.value} (limit {limit})")
    try:
        return await vectorizer.vectorize_stale(kind, limit)
    except MatchingBaseException as e:
        raise map_to_http_exception(e)
