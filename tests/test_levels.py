from tutor_match.models.listings import Direction
from tutor_match.services.levels import (
    BUCKET_TO_GRADES,
    GRADE_TO_BUCKETS,
    LOWER_SECONDARY,
    PRIMARY,
    UNIVERSITY,
    UPPER_SECONDARY,
    buckets_to_seeker_grades,
    canonical_levels,
    describe_levels,
    display_level,
    normalize_level,
    provider_levels_to_buckets,
    seeker_grades_to_buckets,
)


class TestLevelMapping:
    """Test cases for the grade/bucket vocabulary mapping"""

    def test_normalize_level_variants(self):
        """Loose grade spellings collapse to one code"""
        assert normalize_level("Grade 10") == "GRADE_10"
        assert normalize_level("grade-10") == "GRADE_10"
        assert normalize_level("GRADE10") == "GRADE_10"
        assert normalize_level("LOP_7") == "GRADE_7"
        assert normalize_level("college") == "UNIVERSITY"
        assert normalize_level("TRUNG_HOC_PHO_THONG") == UPPER_SECONDARY

    def test_every_grade_maps_to_a_bucket(self):
        """The grade table is total"""
        for grade in [f"GRADE_{g}" for g in range(1, 13)] + ["UNIVERSITY", "WORKING_ADULT"]:
            assert GRADE_TO_BUCKETS[grade]

    def test_tables_are_inverse(self):
        for grade, buckets in GRADE_TO_BUCKETS.items():
            for bucket in buckets:
                assert grade in BUCKET_TO_GRADES[bucket]

    def test_seeker_grades_to_buckets(self):
        assert seeker_grades_to_buckets(["GRADE_3", "Grade 7", "GRADE_11"]) == {
            PRIMARY, LOWER_SECONDARY, UPPER_SECONDARY
        }

    def test_unmapped_values_are_dropped(self, caplog):
        """Unknown levels warn but never fail"""
        assert seeker_grades_to_buckets(["GRADE_10", "kindergarten"]) == {UPPER_SECONDARY}
        assert provider_levels_to_buckets(["nonsense"]) == set()
        assert "Unmapped" in caplog.text

    def test_empty_levels_give_no_constraint(self):
        assert seeker_grades_to_buckets([]) == set()
        assert provider_levels_to_buckets(None) == set()

    def test_provider_levels_are_buckets_only(self):
        """A grade stored on a provider listing is not a bucket and is dropped"""
        assert provider_levels_to_buckets(["GRADE_10", "UNIVERSITY"]) == {UNIVERSITY}

    def test_strict_mode_takes_canonical_codes_only(self):
        assert seeker_grades_to_buckets(["Grade 10"]) == {UPPER_SECONDARY}
        assert seeker_grades_to_buckets(["Grade 10"], strict=True) == set()
        assert seeker_grades_to_buckets(["GRADE_10"], strict=True) == {UPPER_SECONDARY}
        assert provider_levels_to_buckets(["upper secondary"]) == {UPPER_SECONDARY}
        assert provider_levels_to_buckets(["upper secondary"], strict=True) == set()

    def test_buckets_to_seeker_grades(self):
        grades = buckets_to_seeker_grades([UPPER_SECONDARY])
        assert grades == {"GRADE_10", "GRADE_11", "GRADE_12"}

    def test_canonical_levels_by_side(self):
        assert canonical_levels(["GRADE_10"], Direction.SEEKER_TO_PROVIDER) == {UPPER_SECONDARY}
        assert canonical_levels(["UPPER_SECONDARY"], Direction.PROVIDER_TO_SEEKER) == {UPPER_SECONDARY}

    def test_labels(self):
        assert display_level("GRADE_10") == "grade 10"
        assert display_level("UNIVERSITY") == "university"
        assert display_level("???") is None
        assert describe_levels([UPPER_SECONDARY, PRIMARY]) == "primary school, upper secondary"
