import pytest

from tutor_match.models.listings import DeliveryMode, Direction, PriceRange
from tutor_match.models.response import MatchDetail, MatchOptions, MatchResult
from tutor_match.models.settings import BlendWeights, StructuredWeights
from tutor_match.services.scoring import (
    StructuredScorer,
    combine_scores,
    cosine_similarity,
    rank_results,
    semantic_score,
)
from tutor_match.utils.exceptions import DimensionMismatchError


def _result(candidate_id, combined):
    return MatchResult(
        candidate_id=candidate_id,
        owner_id=f"owner-{candidate_id}",
        structured_score=combined,
        combined_score=combined,
        match_detail=MatchDetail(),
    )


class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, -2.0, 0.5], [-1.0, 2.0, -0.5]) == pytest.approx(-1.0)

    def test_zero_norm_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_semantic_score_is_clamped(self):
        assert semantic_score([1.0, 0.0], [-1.0, 0.0]) == 0.0
        assert semantic_score([1.0, 1.0], [1.0, 1.0]) == pytest.approx(1.0)


class TestStructuredScorer:
    """Test cases for the weighted structured score"""

    def setup_method(self):
        self.scorer = StructuredScorer()

    def test_exact_match_scores_one(self, make_seeker, make_provider):
        seeker = make_seeker(delivery_mode=DeliveryMode.ONLINE)
        provider = make_provider(delivery_mode=DeliveryMode.ONLINE, price_per_session=150)
        score, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)

        assert score == 1.0
        assert detail.subject_ratio == 1.0
        assert detail.level_match is True
        assert detail.price_match is True
        assert detail.mode_match is True

    def test_candidate_a_beats_candidate_b(self, make_seeker, make_provider):
        """Math/Grade10/[100,200] against a Math+Physics tutor and a Physics-only tutor"""
        seeker = make_seeker(subject_ids=["math"], levels=["GRADE_10"], price_range=PriceRange(min=100, max=200))
        a = make_provider("a", subject_ids=["math", "physics"], levels=["UPPER_SECONDARY"],
                          price_per_session=150, delivery_mode=DeliveryMode.BOTH)
        b = make_provider("b", subject_ids=["physics"], levels=["UPPER_SECONDARY"],
                          price_per_session=150, delivery_mode=DeliveryMode.BOTH)

        score_a, detail_a = self.scorer.score(seeker, a, Direction.SEEKER_TO_PROVIDER)
        score_b, detail_b = self.scorer.score(seeker, b, Direction.SEEKER_TO_PROVIDER)

        assert score_a == 1.0
        assert detail_b.subject_ratio == 0.0
        assert detail_b.subject_match is False
        assert 0.0 <= score_b < score_a

    def test_subject_ratio_is_relative_to_seeker(self, make_seeker, make_provider):
        seeker = make_seeker(subject_ids=["math", "physics"])
        provider = make_provider(subject_ids=["math", "english"])
        _, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        assert detail.subject_ratio == 0.5
        assert detail.matched_subject_ids == ["math"]

    def test_broad_tutor_fully_covers_learner_in_both_directions(self, make_seeker, make_provider):
        """A tutor teaching five subjects covers a math-only learner completely"""
        seeker = make_seeker(subject_ids=["math"])
        provider = make_provider(subject_ids=["math", "physics", "english", "chemistry", "biology"])

        forward, forward_detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        backward, backward_detail = self.scorer.score(provider, seeker, Direction.PROVIDER_TO_SEEKER)

        assert forward == backward == 1.0
        assert forward_detail.subject_ratio == backward_detail.subject_ratio == 1.0

    def test_partial_coverage_is_the_same_from_the_provider_side(self, make_seeker, make_provider):
        seeker = make_seeker(subject_ids=["math", "physics"])
        provider = make_provider(subject_ids=["math"])
        _, detail = self.scorer.score(provider, seeker, Direction.PROVIDER_TO_SEEKER)
        assert detail.subject_ratio == 0.5
        assert detail.matched_subject_ids == ["math"]

    def test_candidate_levels_must_be_canonical(self, make_seeker, make_provider):
        """Loose spellings on the candidate cannot match a stored-level query, so they do not score"""
        seeker = make_seeker(levels=["GRADE_10"])
        provider = make_provider(levels=["upper secondary"])
        _, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        assert detail.level_match is None

        loose_seeker = make_seeker(levels=["Grade 10"])
        _, detail = self.scorer.score(make_provider(), loose_seeker, Direction.PROVIDER_TO_SEEKER)
        assert detail.level_match is None

    def test_source_levels_are_normalized(self, make_seeker, make_provider):
        _, detail = self.scorer.score(make_seeker(levels=["Grade 10"]), make_provider(),
                                      Direction.SEEKER_TO_PROVIDER)
        assert detail.level_match is True

    def test_absent_factors_are_renormalized(self, make_seeker, make_provider):
        """A factor missing on either side drops out instead of scoring zero"""
        seeker = make_seeker(price_range=None, delivery_mode=None)
        provider = make_provider(price_per_session=None)
        score, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)

        assert score == pytest.approx(1.0)
        assert detail.price_match is None
        assert detail.mode_match is None

    def test_partial_match_uses_weights(self, make_seeker, make_provider):
        """Only the price fails: 1 - price weight"""
        seeker = make_seeker(delivery_mode=DeliveryMode.ONLINE)
        provider = make_provider(price_per_session=500, delivery_mode=DeliveryMode.ONLINE)
        score, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)

        assert detail.price_match is False
        assert score == pytest.approx(1.0 - StructuredWeights().price)

    def test_strict_delivery_mode(self, make_seeker, make_provider):
        seeker = make_seeker(delivery_mode=DeliveryMode.OFFLINE)
        provider = make_provider(delivery_mode=DeliveryMode.ONLINE)
        _, detail = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        assert detail.mode_match is False

    def test_direction_is_symmetric(self, make_seeker, make_provider):
        """Scoring from the provider side uses the same factors"""
        seeker = make_seeker()
        provider = make_provider()
        forward, _ = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        backward, detail = self.scorer.score(provider, seeker, Direction.PROVIDER_TO_SEEKER)
        assert forward == backward == 1.0
        assert detail.level_match is True

    def test_nothing_comparable_scores_zero(self, make_seeker, make_provider):
        seeker = make_seeker(subject_ids=[], levels=[], price_range=None, delivery_mode=None)
        provider = make_provider()
        score, _ = self.scorer.score(seeker, provider, Direction.SEEKER_TO_PROVIDER)
        assert score == 0.0


class TestCombineAndRank:

    def test_combine_with_default_blend(self):
        assert combine_scores(1.0, 1.0) == pytest.approx(1.0)
        assert combine_scores(1.0, None) == pytest.approx(0.7)
        assert combine_scores(0.5, 0.5) == pytest.approx(0.5)

    def test_combine_never_exceeds_one(self):
        blend = BlendWeights(structured=0.705, semantic=0.3)
        assert combine_scores(1.0, 1.0, blend) == 1.0

    def test_threshold_sort_and_limit(self):
        results = [_result("a", 0.4), _result("b", 0.9), _result("c", 0.6), _result("d", 0.8)]
        ranked = rank_results(results, MatchOptions(limit=2, min_score=0.5))
        assert [r.candidate_id for r in ranked] == ["b", "d"]

    def test_min_score_is_respected(self):
        results = [_result(str(i), i / 10) for i in range(10)]
        ranked = rank_results(results, MatchOptions(limit=100, min_score=0.55))
        assert all(r.combined_score >= 0.55 for r in ranked)
        assert len(ranked) == 4

    def test_ties_keep_retrieval_order(self):
        results = [_result("first", 0.7), _result("second", 0.7), _result("third", 0.7)]
        ranked = rank_results(results, MatchOptions(limit=10, min_score=0.0))
        assert [r.candidate_id for r in ranked] == ["first", "second", "third"]
