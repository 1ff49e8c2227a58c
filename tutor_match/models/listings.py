from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Direction(str, Enum):
    """Which side is asking. The source listing lives on the first side."""
    SEEKER_TO_PROVIDER = "seeker_to_provider"
    PROVIDER_TO_SEEKER = "provider_to_seeker"

    @property
    def opposite(self) -> "Direction":
        if self is Direction.SEEKER_TO_PROVIDER:
            return Direction.PROVIDER_TO_SEEKER
        return Direction.SEEKER_TO_PROVIDER


class DeliveryMode(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    BOTH = "BOTH"


class ListingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class EntityKind(str, Enum):
    """Owners of an embedding record."""
    SEEKER_LISTING = "seeker_listing"
    PROVIDER_LISTING = "provider_listing"
    PROVIDER_PROFILE = "provider_profile"


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; align aware ones to that."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PriceRange(BaseModel):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)

    @property
    def is_open(self) -> bool:
        return self.min is None and self.max is None

    def contains(self, price: float) -> bool:
        low = self.min if self.min is not None else 0.0
        high = self.max if self.max is not None else float("inf")
        return low <= price <= high


class EmbeddingRecord(BaseModel):
    """A cached vector plus the marker of the content it was computed from."""
    vector: List[float]
    computed_at: datetime = Field(default_factory=datetime.utcnow)
    source_hash: Optional[str] = None
    embedding_model: Optional[str] = None

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    def is_fresh(self, last_modified: Optional[datetime], current_hash: Optional[str] = None) -> bool:
        """A record counts only if it is not older than the content it describes."""
        if not self.vector:
            return False
        computed_at = as_naive_utc(self.computed_at)
        last_modified = as_naive_utc(last_modified)
        if last_modified is not None and computed_at < last_modified:
            return False
        if current_hash and self.source_hash and current_hash != self.source_hash:
            return False
        return True


class _Document(BaseModel):
    """Shared Mongo boundary helpers."""

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]):
        if not doc:
            return None
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls(**data)

    def to_document(self) -> Dict[str, Any]:
        return self.dict()


class ListingBase(_Document):
    kind: ClassVar[EntityKind]

    listing_id: str
    owner_id: str
    subject_ids: List[str] = Field(default_factory=list)
    levels: List[str] = Field(default_factory=list, description="Raw level values in this side's vocabulary")
    delivery_mode: Optional[DeliveryMode] = None
    title: str = ""
    description: str = ""
    status: ListingStatus = ListingStatus.DRAFT
    view_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    embedding: Optional[EmbeddingRecord] = None

    @property
    def entity_id(self) -> str:
        return self.listing_id

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE


class SeekerListing(ListingBase):
    """A learner's request for instruction."""
    kind: ClassVar[EntityKind] = EntityKind.SEEKER_LISTING

    listing_type: Literal["seeker"] = "seeker"
    price_range: Optional[PriceRange] = None
    requirements: str = ""


class ProviderListing(ListingBase):
    """A provider's offering of instruction."""
    kind: ClassVar[EntityKind] = EntityKind.PROVIDER_LISTING

    listing_type: Literal["provider"] = "provider"
    price_per_session: Optional[float] = Field(default=None, ge=0)
    rating_average: float = 0.0


Listing = Union[SeekerListing, ProviderListing]


class ProviderProfile(_Document):
    """One per provider identity; the semantic anchor for "who is this provider"."""
    kind: ClassVar[EntityKind] = EntityKind.PROVIDER_PROFILE

    profile_id: str
    owner_id: str
    full_name: str = ""
    headline: str = ""
    introduction: str = ""
    teaching_experience: str = ""
    rating_average: float = 0.0
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    embedding: Optional[EmbeddingRecord] = None

    @property
    def entity_id(self) -> str:
        return self.profile_id
