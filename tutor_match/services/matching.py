"""
Matching engine: one parametrized pipeline for both directions.

source listing -> filter -> candidates (capped) -> structured + semantic
scores -> blend, threshold, rank -> optional explanations.

AI-provider trouble lowers quality, never availability: without vectors the
semantic score is null and ranking falls back to the structured score.
"""
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

import numpy as np

from tutor_match.models.listings import Direction, EntityKind, Listing, ListingStatus, ProviderProfile
from tutor_match.models.response import (
    AIStatusResponse,
    ExplanationResponse,
    ExplanationStyle,
    FilterDebugResponse,
    MatchOptions,
    MatchResponse,
    MatchResult,
)
from tutor_match.models.settings import EngineSettings
from tutor_match.services.embedding_cache import EmbeddingCache
from tutor_match.services.embeddings import EmbeddingProvider, build_embedding_provider
from tutor_match.services.explanations import ExplanationGenerator, build_text_provider
from tutor_match.services.filters import build_filter
from tutor_match.services.scoring import StructuredScorer, combine_scores, rank_results, semantic_score
from tutor_match.services.store import ListingStore, candidate_kind, source_kind
from tutor_match.services.text import listing_text
from tutor_match.utils.exceptions import (
    DatabaseError,
    DimensionMismatchError,
    EmbeddingUnavailableError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from tutor_match.utils.logging_config import PerformanceMonitor, get_logger
from tutor_match.utils.utils import content_hash

logger = get_logger(__name__)

_EMBEDDED = {"embedding.vector.0": {"$exists": True}}


class MatchingEngine:

    def __init__(
        self,
        store: ListingStore,
        embedder: Optional[EmbeddingProvider] = None,
        explainer: Optional[ExplanationGenerator] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or EngineSettings()
        self.store = store
        self.embedder = embedder
        self.explainer = explainer or ExplanationGenerator(None, self.settings.explanation)
        self.cache = EmbeddingCache(store)
        self.scorer = StructuredScorer(self.settings.structured_weights)

    # ---------------------- lookup ----------------------

    async def resolve_source(self, listing_id: str, direction: Optional[Direction] = None) -> Tuple[Listing, Direction]:
        """Find the source listing. Without a direction, seekers are tried first."""
        if direction is not None:
            listing = await self.store.get_listing(source_kind(direction), listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found", entity=source_kind(direction).value,
                                    entity_id=listing_id)
            return listing, direction

        listing = await self.store.get_seeker_listing(listing_id)
        if listing is not None:
            return listing, Direction.SEEKER_TO_PROVIDER
        listing = await self.store.get_provider_listing(listing_id)
        if listing is not None:
            return listing, Direction.PROVIDER_TO_SEEKER
        raise NotFoundError(f"Listing {listing_id} not found", entity="listing", entity_id=listing_id)

    # ---------------------- vectors ----------------------

    def embedding_available(self) -> bool:
        return self.embedder is not None and self.embedder.is_available()

    def _text_and_hash(self, listing: Listing, subject_names: Dict[str, str]) -> Tuple[str, str]:
        text = listing_text(listing, subject_names, self.settings.embedding.max_text_chars)
        return text, content_hash(text)

    async def _store_vector(self, entity, vector: np.ndarray, source_hash: Optional[str]) -> None:
        try:
            await self.cache.put(entity, vector, source_hash, self.embedder.model_name)
        except DatabaseError as e:
            logger.warning(f"Could not cache embedding for {entity.kind.value} {entity.entity_id}: {e.message}")

    async def query_vector(self, source: Listing, subject_names: Dict[str, str]) -> Optional[np.ndarray]:
        """Cached vector of the source, embedded on miss or staleness."""
        text, source_hash = self._text_and_hash(source, subject_names)
        vector = self.cache.get(source, source_hash)
        if vector is not None or not self.embedding_available():
            return vector
        try:
            vector = await self.embedder.embed(text)
        except (EmbeddingUnavailableError, ExternalServiceError, ValidationError) as e:
            logger.warning(f"Query embedding unavailable for {source.entity_id}: {e.message}")
            return None
        await self._store_vector(source, vector, source_hash)
        return vector

    def _profile_vector(self, profile: Optional[ProviderProfile], candidate: Listing) -> Optional[np.ndarray]:
        if profile is None or profile.embedding is None:
            return None
        # the profile text samples the owner's listings, so a later listing edit outdates it
        if not profile.embedding.is_fresh(candidate.updated_at):
            return None
        return self.cache.get(profile)

    async def candidate_vectors(
        self,
        candidates: List[Listing],
        direction: Direction,
        subject_names: Dict[str, str],
        refresh: bool,
    ) -> Dict[str, np.ndarray]:
        """
        Vectors keyed by candidate id. Providers are represented by their
        profile when its embedding is fresh, else by the listing itself.
        Misses are embedded in one rate-limited batch when `refresh` is set.
        """
        profiles: Dict[str, ProviderProfile] = {}
        if direction == Direction.SEEKER_TO_PROVIDER and candidates:
            profiles = await self.store.get_profiles_by_owner(c.owner_id for c in candidates)

        vectors: Dict[str, np.ndarray] = {}
        misses: List[Tuple[Listing, str, str]] = []
        for candidate in candidates:
            vector = self._profile_vector(profiles.get(candidate.owner_id), candidate)
            if vector is None:
                text, source_hash = self._text_and_hash(candidate, subject_names)
                vector = self.cache.get(candidate, source_hash)
                if vector is None:
                    if text:
                        misses.append((candidate, text, source_hash))
                    continue
            vectors[candidate.entity_id] = vector

        if not misses or not refresh or not self.settings.embedding.refresh_candidates:
            return vectors
        if not self.embedding_available():
            logger.warning(f"Embedding provider unavailable; {len(misses)} candidates without vectors")
            return vectors

        try:
            embedded = await self.embedder.embed_batch([text for _, text, _ in misses])
        except EmbeddingUnavailableError as e:
            logger.warning(f"Candidate embedding skipped: {e.message}")
            return vectors

        for (candidate, _, source_hash), vector in zip(misses, embedded):
            if vector is None:
                continue
            await self._store_vector(candidate, vector, source_hash)
            vectors[candidate.entity_id] = vector
        return vectors

    def _semantic(self, query: Optional[np.ndarray], vector: Optional[np.ndarray], candidate_id: str) -> Optional[float]:
        if query is None or vector is None:
            return None
        try:
            return semantic_score(query, vector)
        except DimensionMismatchError as e:
            logger.error(f"Semantic score dropped for candidate {candidate_id}: {e.message}")
            return None

    def _score(self, source: Listing, candidate: Listing, direction: Direction,
               query: Optional[np.ndarray], vector: Optional[np.ndarray]) -> MatchResult:
        structured, detail = self.scorer.score(source, candidate, direction)
        semantic = self._semantic(query, vector, candidate.entity_id)
        detail.semantic_score = semantic
        return MatchResult(
            candidate_id=candidate.entity_id,
            owner_id=candidate.owner_id,
            structured_score=structured,
            semantic_score=semantic,
            combined_score=combine_scores(structured, semantic, self.settings.blend_weights),
            match_detail=detail,
        )

    async def _subject_names(self, *listings: Listing) -> Dict[str, str]:
        return await self.store.get_subject_names(s for lst in listings for s in lst.subject_ids)

    # ---------------------- caller-facing ----------------------

    async def get_matches(
        self,
        source_listing_id: str,
        options: Optional[MatchOptions] = None,
        direction: Optional[Direction] = None,
    ) -> MatchResponse:
        """Ranked matches for one listing. An empty candidate set gives an empty list."""
        options = options or MatchOptions(
            limit=self.settings.retrieval.default_limit,
            min_score=self.settings.retrieval.default_min_score,
        )
        source, direction = await self.resolve_source(source_listing_id, direction)
        logger.info(f"Matching {direction.value} for listing {source_listing_id}")

        with PerformanceMonitor("candidate retrieval", logger, threshold_ms=500):
            flt = build_filter(source, direction)
            candidates = await self.store.find_candidates(flt, self.settings.retrieval.candidate_cap)

        if not candidates:
            logger.info(f"No candidates for listing {source_listing_id}")
            return MatchResponse(source_listing_id=source_listing_id, direction=direction, total=0, results=[])

        subject_names = await self._subject_names(source, *candidates)

        with PerformanceMonitor("semantic vectors", logger, threshold_ms=5000):
            query = await self.query_vector(source, subject_names)
            vectors = {}
            if query is not None:
                vectors = await self.candidate_vectors(candidates, direction, subject_names, refresh=True)
            else:
                logger.warning(f"Semantic scoring unavailable for listing {source_listing_id}; structured only")

        with PerformanceMonitor("scoring", logger, threshold_ms=200):
            scored = [
                self._score(source, c, direction, query, vectors.get(c.entity_id))
                for c in candidates
            ]
            ranked = rank_results(scored, options)

        if options.include_explanations and ranked:
            by_id = {c.entity_id: c for c in candidates}
            with PerformanceMonitor("batch explanations", logger, threshold_ms=10000):
                explanations = await self.explainer.explain_batch(
                    source,
                    [(by_id[r.candidate_id], r.match_detail) for r in ranked],
                    direction,
                    subject_names=subject_names,
                )
            for result, text in zip(ranked, explanations):
                result.explanation = text

        logger.info(f"Listing {source_listing_id}: {len(candidates)} candidates, {len(ranked)} results")
        return MatchResponse(
            source_listing_id=source_listing_id,
            direction=direction,
            total=len(ranked),
            results=ranked,
        )

    async def explain_match(
        self,
        source_listing_id: str,
        candidate_id: str,
        direction: Optional[Direction] = None,
        style: ExplanationStyle = ExplanationStyle.SHORT,
    ) -> ExplanationResponse:
        """
        On-demand explanation for one candidate. Uses cached vectors only, so
        the explanation is the single paid call.
        """
        source, direction = await self.resolve_source(source_listing_id, direction)
        kind = candidate_kind(direction)
        candidate = await self.store.get_listing(kind, candidate_id)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found", entity=kind.value, entity_id=candidate_id)

        subject_names = await self._subject_names(source, candidate)
        query = self.cache.get(source, self._text_and_hash(source, subject_names)[1])
        vector = None
        if query is not None:
            vectors = await self.candidate_vectors([candidate], direction, subject_names, refresh=False)
            vector = vectors.get(candidate.entity_id)
        result = self._score(source, candidate, direction, query, vector)

        with PerformanceMonitor("explanation", logger, threshold_ms=5000):
            text = await self.explainer.explain_one(
                source, candidate, direction, result.match_detail, style, subject_names
            )
        return ExplanationResponse(
            source_listing_id=source_listing_id,
            candidate_id=candidate_id,
            direction=direction,
            style=style,
            explanation=text,
        )

    # ---------------------- diagnostics ----------------------

    async def debug_filters(self, source_listing_id: str, direction: Optional[Direction] = None) -> FilterDebugResponse:
        source, direction = await self.resolve_source(source_listing_id, direction)
        flt = build_filter(source, direction)
        query = flt.to_query()
        kind = candidate_kind(direction)
        return FilterDebugResponse(
            source_listing_id=source_listing_id,
            direction=direction,
            filter=flt.describe(),
            query=query,
            total_active=await self.store.count(kind, {"status": ListingStatus.ACTIVE.value}),
            matching=await self.store.count(kind, query),
        )

    async def status(self) -> AIStatusResponse:
        return AIStatusResponse(
            embedding_available=self.embedding_available(),
            explanation_available=self.explainer.is_available(),
            embedded_profiles=await self.store.count(EntityKind.PROVIDER_PROFILE, _EMBEDDED),
            embedded_seeker_listings=await self.store.count(EntityKind.SEEKER_LISTING, _EMBEDDED),
            embedded_provider_listings=await self.store.count(EntityKind.PROVIDER_LISTING, _EMBEDDED),
            provider_listings_total=await self.store.count(EntityKind.PROVIDER_LISTING),
            provider_listings_active=await self.store.count(
                EntityKind.PROVIDER_LISTING, {"status": ListingStatus.ACTIVE.value}
            ),
        )


@lru_cache()
def get_engine() -> MatchingEngine:
    """Process-wide engine wired from the environment."""
    settings = EngineSettings.from_env()
    engine = MatchingEngine(
        store=ListingStore(),
        embedder=build_embedding_provider(settings.embedding),
        explainer=ExplanationGenerator(build_text_provider(settings.explanation), settings.explanation),
        settings=settings,
    )
    if not engine.embedding_available():
        logger.warning("No embedding credential configured; semantic scoring disabled")
    return engine
