import os

os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import datetime, timedelta
from typing import Dict, List

import pytest

from tutor_match.models.listings import (
    DeliveryMode,
    EntityKind,
    ListingStatus,
    PriceRange,
    ProviderListing,
    ProviderProfile,
    SeekerListing,
)
from tutor_match.models.settings import EmbeddingSettings, EngineSettings, ExplanationSettings
from tutor_match.services.embeddings import EmbeddingProvider
from tutor_match.services.explanations import ExplanationGenerator, TextProvider
from tutor_match.services.matching import MatchingEngine
from tutor_match.services.store import candidate_kind
from tutor_match.utils.exceptions import RateLimitError

KEYWORDS = ["math", "physics", "english", "chemistry", "exam", "conversation"]


def keyword_vector(text: str) -> List[float]:
    """Bag-of-keywords vector; deterministic and easy to reason about."""
    lowered = text.lower()
    return [float(lowered.count(k)) for k in KEYWORDS]


def _field(doc, path):
    value = doc
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit():
            value = value[int(part)] if int(part) < len(value) else None
        else:
            return None
    return getattr(value, "value", value)


def _plain(value):
    return [getattr(v, "value", v) for v in value] if isinstance(value, list) else value


def _condition(value, cond):
    if not (isinstance(cond, dict) and any(k.startswith("$") for k in cond)):
        return cond in value if isinstance(value, list) else value == cond
    for op, arg in cond.items():
        if op == "$in":
            values = value if isinstance(value, list) else [value]
            if not any(v in arg for v in values):
                return False
        elif op == "$gte":
            if value is None or value < arg:
                return False
        elif op == "$lte":
            if value is None or value > arg:
                return False
        elif op == "$exists":
            if (value is not None) != arg:
                return False
        else:
            raise NotImplementedError(op)
    return True


def mongo_match(doc, query):
    """Evaluate the subset of Mongo query operators the engine emits."""
    for key, cond in (query or {}).items():
        if key == "$and":
            if not all(mongo_match(doc, q) for q in cond):
                return False
        elif key == "$or":
            if not any(mongo_match(doc, q) for q in cond):
                return False
        elif not _condition(_plain(_field(doc, key)), cond):
            return False
    return True


class FakeStore:
    """In-memory stand-in for ListingStore; candidate queries run the real filter query"""

    def __init__(self):
        self.seekers: Dict[str, SeekerListing] = {}
        self.providers: Dict[str, ProviderListing] = {}
        self.profiles: Dict[str, ProviderProfile] = {}
        self.subjects: Dict[str, str] = {"math": "Mathematics", "physics": "Physics", "english": "English"}
        self.saved = []
        self.find_calls = 0

    def add(self, *entities):
        for e in entities:
            if isinstance(e, SeekerListing):
                self.seekers[e.listing_id] = e
            elif isinstance(e, ProviderListing):
                self.providers[e.listing_id] = e
            else:
                self.profiles[e.owner_id] = e
        return self

    def _bucket(self, kind):
        if kind == EntityKind.SEEKER_LISTING:
            return self.seekers
        if kind == EntityKind.PROVIDER_LISTING:
            return self.providers
        return self.profiles

    async def get_seeker_listing(self, listing_id):
        return self.seekers.get(listing_id)

    async def get_provider_listing(self, listing_id):
        return self.providers.get(listing_id)

    async def get_listing(self, kind, listing_id):
        return self._bucket(kind).get(listing_id)

    async def find_candidates(self, flt, cap):
        self.find_calls += 1
        pool = self._bucket(candidate_kind(flt.direction)).values()
        query = flt.to_query()
        return [listing for listing in pool if mongo_match(listing.to_document(), query)][:cap]

    async def count(self, kind, query=None):
        return sum(1 for e in self._bucket(kind).values() if mongo_match(e.to_document(), query))

    async def get_active_provider_listings(self, owner_id, limit):
        return [p for p in self.providers.values() if p.owner_id == owner_id and p.is_active][:limit]

    async def get_profile_by_owner(self, owner_id):
        return self.profiles.get(owner_id)

    async def get_profiles_by_owner(self, owner_ids):
        return {o: self.profiles[o] for o in owner_ids if o in self.profiles}

    async def get_subject_names(self, subject_ids):
        return {s: self.subjects[s] for s in subject_ids if s in self.subjects}

    async def save_embedding(self, kind, entity_id, record):
        self.saved.append((kind, entity_id, record))

    async def find_needing_embedding(self, kind, limit):
        stale = [e for e in self._bucket(kind).values()
                 if (e.embedding is None or not e.embedding.is_fresh(e.updated_at))
                 and getattr(e, "is_active", True)]
        return stale[:limit]


class FakeEmbedder(EmbeddingProvider):
    service_name = "fake"

    def __init__(self, available=True, fail_with=None, settings=None):
        super().__init__(settings or EmbeddingSettings(api_key="test", batch_delay=0, max_retries=1))
        self.available = available
        self.fail_with = fail_with
        self.calls: List[str] = []

    def is_available(self):
        return self.available

    def _request_embedding(self, text):
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        return keyword_vector(text)


class FakeTextProvider(TextProvider):
    service_name = "fake"

    def __init__(self, reply="Great fit: shared Mathematics at your level.", fail=False, available=True):
        super().__init__(ExplanationSettings(api_key="test"))
        self.reply = reply
        self.fail = fail
        self.available = available
        self.prompts: List[str] = []

    def is_available(self):
        return self.available

    def _request_text(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise RateLimitError("quota exhausted", service_name="fake")
        return self.reply


@pytest.fixture
def make_seeker():
    def _make(listing_id="s1", **kwargs):
        data = dict(
            owner_id="learner-1",
            subject_ids=["math"],
            levels=["GRADE_10"],
            price_range=PriceRange(min=100, max=200),
            delivery_mode=DeliveryMode.ONLINE,
            title="Need a math tutor",
            description="Grade 10 math exam preparation",
            status=ListingStatus.ACTIVE,
        )
        data.update(kwargs)
        return SeekerListing(listing_id=listing_id, **data)
    return _make


@pytest.fixture
def make_provider():
    def _make(listing_id="p1", **kwargs):
        data = dict(
            owner_id=f"tutor-{listing_id}",
            subject_ids=["math"],
            levels=["UPPER_SECONDARY"],
            price_per_session=150,
            delivery_mode=DeliveryMode.BOTH,
            title="Math tutoring",
            description="Math and exam coaching for secondary students",
            status=ListingStatus.ACTIVE,
            rating_average=4.5,
        )
        data.update(kwargs)
        return ProviderListing(listing_id=listing_id, **data)
    return _make


@pytest.fixture
def make_profile():
    def _make(owner_id="tutor-p1", **kwargs):
        data = dict(
            profile_id=f"profile-{owner_id}",
            headline="Physics teacher",
            introduction="I teach physics",
            updated_at=datetime.utcnow() - timedelta(days=1),
        )
        data.update(kwargs)
        return ProviderProfile(owner_id=owner_id, **data)
    return _make


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def text_provider():
    return FakeTextProvider()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def engine(store, embedder, text_provider, settings):
    return MatchingEngine(
        store=store,
        embedder=embedder,
        explainer=ExplanationGenerator(text_provider, settings.explanation),
        settings=settings,
    )
