"""
Read access to listings and profiles, plus the one write the engine makes:
the embedding field.

Raw Mongo documents are turned into typed models here and nowhere else.
"""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from tutor_match.models.listings import (
    Direction,
    EmbeddingRecord,
    EntityKind,
    Listing,
    ListingStatus,
    ProviderListing,
    ProviderProfile,
    SeekerListing,
)
from tutor_match.services.filters import CandidateFilter
from tutor_match.utils.exceptions import DatabaseError
from tutor_match.utils.logging_config import get_logger
from tutor_match.utils.utils import unique

logger = get_logger(__name__)

# Retrieval order doubles as the tie-breaker for ranking
RETRIEVAL_SORT = {
    Direction.SEEKER_TO_PROVIDER: [
        ("rating_average", DESCENDING), ("view_count", DESCENDING), ("listing_id", ASCENDING),
    ],
    Direction.PROVIDER_TO_SEEKER: [
        ("view_count", DESCENDING), ("created_at", DESCENDING), ("listing_id", ASCENDING),
    ],
}

_ID_FIELDS = {
    EntityKind.SEEKER_LISTING: "listing_id",
    EntityKind.PROVIDER_LISTING: "listing_id",
    EntityKind.PROVIDER_PROFILE: "profile_id",
}

_MODELS = {
    EntityKind.SEEKER_LISTING: SeekerListing,
    EntityKind.PROVIDER_LISTING: ProviderListing,
    EntityKind.PROVIDER_PROFILE: ProviderProfile,
}


def source_kind(direction: Direction) -> EntityKind:
    if direction == Direction.SEEKER_TO_PROVIDER:
        return EntityKind.SEEKER_LISTING
    return EntityKind.PROVIDER_LISTING


def candidate_kind(direction: Direction) -> EntityKind:
    return source_kind(direction.opposite)


class ListingStore:
    """Motor-backed listing/profile store"""

    def __init__(self, seekers=None, providers=None, profiles=None, subjects=None):
        if seekers is None or providers is None or profiles is None or subjects is None:
            from tutor_match.services import db
            seekers = seekers if seekers is not None else db.seeker_listings_coll
            providers = providers if providers is not None else db.provider_listings_coll
            profiles = profiles if profiles is not None else db.provider_profiles_coll
            subjects = subjects if subjects is not None else db.subjects_coll
        self._collections = {
            EntityKind.SEEKER_LISTING: seekers,
            EntityKind.PROVIDER_LISTING: providers,
            EntityKind.PROVIDER_PROFILE: profiles,
        }
        self._subjects = subjects

    def collection(self, kind: EntityKind):
        return self._collections[kind]

    def _parse(self, kind: EntityKind, doc: Optional[Dict[str, Any]]):
        if not doc:
            return None
        try:
            return _MODELS[kind].from_document(doc)
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed {kind.value} document {doc.get(_ID_FIELDS[kind])}: {e}")
            return None

    async def _find_one(self, kind: EntityKind, query: Dict[str, Any]):
        try:
            doc = await self.collection(kind).find_one(query)
        except PyMongoError as e:
            raise DatabaseError(
                f"Lookup failed on {kind.value}: {e}", operation="find_one", collection=kind.value, cause=e
            ) from e
        return self._parse(kind, doc)

    # ---------------------- listings ----------------------

    async def get_seeker_listing(self, listing_id: str) -> Optional[SeekerListing]:
        return await self._find_one(EntityKind.SEEKER_LISTING, {"listing_id": listing_id})

    async def get_provider_listing(self, listing_id: str) -> Optional[ProviderListing]:
        return await self._find_one(EntityKind.PROVIDER_LISTING, {"listing_id": listing_id})

    async def get_listing(self, kind: EntityKind, listing_id: str) -> Optional[Listing]:
        if kind == EntityKind.SEEKER_LISTING:
            return await self.get_seeker_listing(listing_id)
        return await self.get_provider_listing(listing_id)

    async def find_candidates(self, flt: CandidateFilter, cap: int) -> List[Listing]:
        """Active opposite-side listings matching the filter, best-reputation first, at most cap."""
        kind = candidate_kind(flt.direction)
        query = flt.to_query()
        logger.debug(f"Candidate query on {kind.value}: {query}")
        try:
            cursor = self.collection(kind).find(query).sort(RETRIEVAL_SORT[flt.direction]).limit(cap)
            docs = await cursor.to_list(length=cap)
        except PyMongoError as e:
            raise DatabaseError(
                f"Candidate retrieval failed: {e}", operation="find", collection=kind.value, cause=e
            ) from e

        candidates = []
        for doc in docs:
            listing = self._parse(kind, doc)
            if listing is not None and listing.is_active:
                candidates.append(listing)
        return candidates[:cap]

    async def count(self, kind: EntityKind, query: Optional[Dict[str, Any]] = None) -> int:
        try:
            return await self.collection(kind).count_documents(query or {})
        except PyMongoError as e:
            raise DatabaseError(
                f"Count failed on {kind.value}: {e}", operation="count_documents", collection=kind.value, cause=e
            ) from e

    async def get_active_provider_listings(self, owner_id: str, limit: int) -> List[ProviderListing]:
        """Bounded sample of a provider's active listings, newest first."""
        cursor = self.collection(EntityKind.PROVIDER_LISTING).find(
            {"owner_id": owner_id, "status": ListingStatus.ACTIVE.value}
        ).sort([("updated_at", DESCENDING)]).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [p for p in (self._parse(EntityKind.PROVIDER_LISTING, d) for d in docs) if p is not None]

    # ---------------------- profiles ----------------------

    async def get_profile_by_owner(self, owner_id: str) -> Optional[ProviderProfile]:
        return await self._find_one(EntityKind.PROVIDER_PROFILE, {"owner_id": owner_id})

    async def get_profiles_by_owner(self, owner_ids: Iterable[str]) -> Dict[str, ProviderProfile]:
        owner_ids = unique(owner_ids)
        if not owner_ids:
            return {}
        cursor = self.collection(EntityKind.PROVIDER_PROFILE).find({"owner_id": {"$in": owner_ids}})
        docs = await cursor.to_list(length=len(owner_ids))
        profiles = {}
        for doc in docs:
            profile = self._parse(EntityKind.PROVIDER_PROFILE, doc)
            if profile is not None:
                profiles[profile.owner_id] = profile
        return profiles

    # ---------------------- subjects ----------------------

    async def get_subject_names(self, subject_ids: Iterable[str]) -> Dict[str, str]:
        subject_ids = unique(subject_ids)
        if not subject_ids:
            return {}
        cursor = self._subjects.find({"subject_id": {"$in": subject_ids}})
        docs = await cursor.to_list(length=len(subject_ids))
        return {d["subject_id"]: d.get("name", d["subject_id"]) for d in docs if d.get("subject_id")}

    # ---------------------- embeddings ----------------------

    async def save_embedding(self, kind: EntityKind, entity_id: str, record: EmbeddingRecord) -> None:
        """Write only the embedding field; content timestamps stay untouched."""
        try:
            await self.collection(kind).update_one(
                {_ID_FIELDS[kind]: entity_id},
                {"$set": {"embedding": record.dict()}}
            )
        except PyMongoError as e:
            raise DatabaseError(
                f"Saving embedding failed for {kind.value} {entity_id}: {e}",
                operation="update_one", collection=kind.value, cause=e
            ) from e

    async def find_needing_embedding(self, kind: EntityKind, limit: int) -> List[Any]:
        """Entities with no embedding or one computed before the last content change."""
        query: Dict[str, Any] = {
            "$or": [
                {"embedding": None},
                {"embedding.vector": {"$size": 0}},
                {"$expr": {"$lt": ["$embedding.computed_at", "$updated_at"]}},
            ]
        }
        if kind != EntityKind.PROVIDER_PROFILE:
            query["status"] = ListingStatus.ACTIVE.value
        cursor = self.collection(kind).find(query).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [e for e in (self._parse(kind, d) for d in docs) if e is not None]
