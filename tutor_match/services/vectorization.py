"""
Explicit (re)vectorization of listings and provider profiles.

Matching embeds lazily on cache misses; these jobs let an operator warm the
cache ahead of time or after a bulk edit.
"""
from typing import List, Tuple

from tutor_match.models.listings import EntityKind, ProviderProfile
from tutor_match.models.response import VectorizationResult
from tutor_match.services.matching import MatchingEngine
from tutor_match.services.text import listing_text, profile_text
from tutor_match.utils.exceptions import (
    EmbeddingUnavailableError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from tutor_match.utils.logging_config import get_logger
from tutor_match.utils.utils import content_hash

logger = get_logger(__name__)


class Vectorizer:

    def __init__(self, engine: MatchingEngine):
        self.engine = engine
        self.store = engine.store
        self.cache = engine.cache
        self.embedder = engine.embedder
        self.settings = engine.settings

    @property
    def max_chars(self) -> int:
        return self.settings.embedding.max_text_chars

    async def _profile_text(self, profile: ProviderProfile) -> str:
        listings = await self.store.get_active_provider_listings(
            profile.owner_id, self.settings.retrieval.provider_sample_size
        )
        names = await self.store.get_subject_names(s for lst in listings for s in lst.subject_ids)
        return profile_text(profile, listings, names, self.max_chars)

    async def _entity_text(self, entity) -> str:
        if entity.kind == EntityKind.PROVIDER_PROFILE:
            return await self._profile_text(entity)
        names = await self.store.get_subject_names(entity.subject_ids)
        return listing_text(entity, names, self.max_chars)

    async def _vectorize_one(self, entity, force: bool) -> VectorizationResult:
        if not self.engine.embedding_available():
            logger.warning(f"Embedding provider unavailable; {entity.kind.value} {entity.entity_id} skipped")
            return VectorizationResult(skipped=1)

        text = await self._entity_text(entity)
        if not text:
            return VectorizationResult(skipped=1)
        source_hash = content_hash(text)
        if not force and self.cache.is_fresh(entity, source_hash):
            logger.debug(f"{entity.kind.value} {entity.entity_id} already has a fresh embedding")
            return VectorizationResult(skipped=1)

        try:
            vector = await self.embedder.embed(text)
        except (EmbeddingUnavailableError, ExternalServiceError, ValidationError) as e:
            logger.error(f"Vectorization failed for {entity.kind.value} {entity.entity_id}: {e.message}")
            return VectorizationResult(failed=1)

        await self.cache.put(entity, vector, source_hash, self.embedder.model_name)
        logger.info(f"Vectorized {entity.kind.value} {entity.entity_id}")
        return VectorizationResult(success=1)

    async def _vectorize_listing(self, kind: EntityKind, listing_id: str, force: bool) -> VectorizationResult:
        listing = await self.store.get_listing(kind, listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found", entity=kind.value, entity_id=listing_id)
        if not listing.is_active:
            logger.info(f"Listing {listing_id} is {listing.status.value}; not vectorized")
            return VectorizationResult(skipped=1)
        return await self._vectorize_one(listing, force)

    async def vectorize_seeker_listing(self, listing_id: str, force: bool = False) -> VectorizationResult:
        return await self._vectorize_listing(EntityKind.SEEKER_LISTING, listing_id, force)

    async def vectorize_provider_listing(self, listing_id: str, force: bool = False) -> VectorizationResult:
        return await self._vectorize_listing(EntityKind.PROVIDER_LISTING, listing_id, force)

    async def vectorize_listing(self, listing_id: str, force: bool = False) -> VectorizationResult:
        """Seeker store first, then provider store."""
        if await self.store.get_seeker_listing(listing_id) is not None:
            return await self.vectorize_seeker_listing(listing_id, force)
        return await self.vectorize_provider_listing(listing_id, force)

    async def vectorize_profile(self, owner_id: str, force: bool = False) -> VectorizationResult:
        profile = await self.store.get_profile_by_owner(owner_id)
        if profile is None:
            raise NotFoundError(f"No profile for provider {owner_id}", entity="provider_profile", entity_id=owner_id)
        return await self._vectorize_one(profile, force)

    async def vectorize_stale(self, kind: EntityKind, limit: int = 50) -> VectorizationResult:
        """Embed up to `limit` entities whose embedding is missing or older than their content."""
        result = VectorizationResult()
        entities = await self.store.find_needing_embedding(kind, limit)
        if not entities:
            return result
        if not self.engine.embedding_available():
            logger.warning(f"Embedding provider unavailable; {len(entities)} {kind.value} entities skipped")
            result.skipped = len(entities)
            return result

        pending: List[Tuple[object, str, str]] = []
        for entity in entities:
            text = await self._entity_text(entity)
            if not text:
                result.skipped += 1
                continue
            pending.append((entity, text, content_hash(text)))

        if pending:
            vectors = await self.embedder.embed_batch([text for _, text, _ in pending])
            for (entity, _, source_hash), vector in zip(pending, vectors):
                if vector is None:
                    result.failed += 1
                    continue
                await self.cache.put(entity, vector, source_hash, self.embedder.model_name)
                result.success += 1

        logger.info(
            f"Stale {kind.value} vectorization: {result.success} ok, {result.failed} failed, {result.skipped} skipped"
        )
        return result
