"""
Structured filter builder: one source listing -> a Mongo query over the
opposite side's listings.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tutor_match.models.listings import (
    DeliveryMode,
    Direction,
    Listing,
    ListingStatus,
    PriceRange,
    ProviderListing,
    SeekerListing,
)
from tutor_match.services.levels import buckets_to_seeker_grades, canonical_levels
from tutor_match.utils.exceptions import ValidationError
from tutor_match.utils.utils import unique


@dataclass
class CandidateFilter:
    """Constraints on candidates. An empty field means the constraint is off."""
    direction: Direction
    subject_ids: List[str] = field(default_factory=list)
    levels: List[str] = field(default_factory=list)  # candidate-side vocabulary
    price_range: Optional[PriceRange] = None  # candidate price must fall inside
    price_point: Optional[float] = None  # candidate range must contain it
    delivery_modes: List[str] = field(default_factory=list)

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {"status": ListingStatus.ACTIVE.value}

        if self.subject_ids:
            query["subject_ids"] = {"$in": self.subject_ids}

        if self.levels:
            query["levels"] = {"$in": self.levels}

        if self.price_range is not None and not self.price_range.is_open:
            bounds: Dict[str, float] = {}
            if self.price_range.min is not None:
                bounds["$gte"] = self.price_range.min
            if self.price_range.max is not None:
                bounds["$lte"] = self.price_range.max
            query["price_per_session"] = bounds

        if self.price_point is not None:
            # seekers without a budget stay in; a missing bound is open
            query["$and"] = [
                {"$or": [{"price_range.min": None}, {"price_range.min": {"$lte": self.price_point}}]},
                {"$or": [{"price_range.max": None}, {"price_range.max": {"$gte": self.price_point}}]},
            ]

        if self.delivery_modes:
            query["delivery_mode"] = {"$in": self.delivery_modes}

        return query

    def describe(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "subject_ids": self.subject_ids,
            "levels": self.levels,
            "price_range": self.price_range.dict() if self.price_range else None,
            "price_point": self.price_point,
            "delivery_modes": self.delivery_modes,
        }


def compatible_delivery_modes(mode: Optional[DeliveryMode]) -> List[str]:
    """Modes admitted at retrieval time for a source mode.

    BOTH (or no mode) admits everything. Otherwise the exact mode and BOTH,
    plus ONLINE candidates, which are always retrieved.
    """
    if mode is None or mode == DeliveryMode.BOTH:
        return []
    return unique([mode.value, DeliveryMode.BOTH.value, DeliveryMode.ONLINE.value])


def build_filter(source: Listing, direction: Direction) -> CandidateFilter:
    """Build the candidate filter for a source listing."""
    if direction == Direction.SEEKER_TO_PROVIDER and not isinstance(source, SeekerListing):
        raise ValidationError("Seeker-to-provider matching needs a seeker listing", field="direction", value=direction.value)
    if direction == Direction.PROVIDER_TO_SEEKER and not isinstance(source, ProviderListing):
        raise ValidationError("Provider-to-seeker matching needs a provider listing", field="direction", value=direction.value)

    flt = CandidateFilter(direction=direction)
    flt.subject_ids = unique(source.subject_ids)

    buckets = canonical_levels(source.levels, direction)
    if direction == Direction.SEEKER_TO_PROVIDER:
        flt.levels = sorted(buckets)
        flt.price_range = source.price_range
    else:
        flt.levels = sorted(buckets_to_seeker_grades(buckets))
        flt.price_point = source.price_per_session

    flt.delivery_modes = compatible_delivery_modes(source.delivery_mode)
    return flt
