from typing import List, Optional, Sequence, Set, Tuple

import numpy as np

from tutor_match.models.listings import (
    DeliveryMode,
    Direction,
    Listing,
    PriceRange,
    ProviderListing,
    SeekerListing,
)
from tutor_match.models.response import MatchDetail, MatchOptions, MatchResult
from tutor_match.models.settings import BlendWeights, StructuredWeights
from tutor_match.services.levels import provider_levels_to_buckets, seeker_grades_to_buckets
from tutor_match.utils.exceptions import DimensionMismatchError


# ---------------------- semantic ----------------------

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine in [-1, 1]; 0 when either vector has zero norm."""
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.shape != vb.shape:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])
    den = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if den == 0.0:
        return 0.0
    num = float(np.dot(va, vb))
    return max(-1.0, min(1.0, num / den))


def semantic_score(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine clamped to [0, 1]; opposite meaning counts as no similarity."""
    return max(0.0, cosine_similarity(a, b))


# ---------------------- structured ----------------------

def subject_ratio(seeker_subjects: Sequence[str], provider_subjects: Sequence[str]) -> Tuple[float, List[str]]:
    """Share of the learner's subjects the tutor covers, the same in both directions."""
    wanted = list(dict.fromkeys(seeker_subjects))
    taught = set(provider_subjects)
    matched = [s for s in wanted if s in taught]
    return len(matched) / len(wanted), matched


def price_compatible(price_range: PriceRange, price: float) -> bool:
    return price_range.contains(price)


def mode_compatible(a: DeliveryMode, b: DeliveryMode) -> bool:
    if a == DeliveryMode.BOTH or b == DeliveryMode.BOTH:
        return True
    return a == b


def _sides(source: Listing, candidate: Listing, direction: Direction) -> Tuple[SeekerListing, ProviderListing]:
    if direction == Direction.SEEKER_TO_PROVIDER:
        return source, candidate
    return candidate, source


class StructuredScorer:
    """
    Weighted sum over subject ratio, level overlap, delivery mode and price.

    A factor whose attribute is missing on either side drops out of both the
    numerator and the denominator. With no factor present the score is 0.
    """

    def __init__(self, weights: Optional[StructuredWeights] = None):
        self.weights = weights or StructuredWeights()

    def score(self, source: Listing, candidate: Listing, direction: Direction) -> Tuple[float, MatchDetail]:
        seeker, provider = _sides(source, candidate, direction)
        detail = MatchDetail()
        factors: List[Tuple[float, float]] = []

        if seeker.subject_ids and provider.subject_ids:
            ratio, matched = subject_ratio(seeker.subject_ids, provider.subject_ids)
            detail.subject_ratio = ratio
            detail.subject_match = bool(matched)
            detail.matched_subject_ids = matched
            factors.append((self.weights.subject, ratio))

        # candidate levels count only as stored canonical codes, like the $in filter
        seeker_buckets: Set[str] = seeker_grades_to_buckets(
            seeker.levels, strict=direction == Direction.PROVIDER_TO_SEEKER)
        provider_buckets: Set[str] = provider_levels_to_buckets(
            provider.levels, strict=direction == Direction.SEEKER_TO_PROVIDER)
        if seeker_buckets and provider_buckets:
            common = seeker_buckets & provider_buckets
            detail.level_match = bool(common)
            detail.matched_levels = sorted(common)
            factors.append((self.weights.level, 1.0 if common else 0.0))

        if seeker.delivery_mode is not None and provider.delivery_mode is not None:
            detail.mode_match = mode_compatible(seeker.delivery_mode, provider.delivery_mode)
            factors.append((self.weights.delivery_mode, 1.0 if detail.mode_match else 0.0))

        if seeker.price_range is not None and not seeker.price_range.is_open and provider.price_per_session is not None:
            detail.price_match = price_compatible(seeker.price_range, provider.price_per_session)
            factors.append((self.weights.price, 1.0 if detail.price_match else 0.0))

        total_weight = sum(w for w, _ in factors)
        if total_weight <= 0:
            return 0.0, detail
        score = sum(w * v for w, v in factors) / total_weight
        return max(0.0, min(1.0, score)), detail


# ---------------------- combine & rank ----------------------

def combine_scores(structured: float, semantic: Optional[float], blend: Optional[BlendWeights] = None) -> float:
    """Blend; a missing semantic score counts as 0."""
    blend = blend or BlendWeights()
    total = structured * blend.structured + (semantic or 0.0) * blend.semantic
    return max(0.0, min(1.0, total))


def rank_results(results: List[MatchResult], options: MatchOptions) -> List[MatchResult]:
    """
    Threshold, sort and truncate.

    `results` must be in retrieval order; the sort is stable so equal scores
    keep that order.
    """
    kept = [r for r in results if r.combined_score >= options.min_score]
    kept.sort(key=lambda r: r.combined_score, reverse=True)
    return kept[:options.limit]
