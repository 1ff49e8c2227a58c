"""
Level vocabulary mapping between the two sides of the marketplace.

Seekers describe themselves with school grades ("Grade 10", "University"),
providers with coarse buckets ("UPPER_SECONDARY"). All comparisons happen in
the bucket vocabulary.
"""
import re
from typing import Dict, Iterable, List, Optional, Set

from tutor_match.models.listings import Direction
from tutor_match.utils.logging_config import get_logger

logger = get_logger(__name__)

PRIMARY = "PRIMARY"
LOWER_SECONDARY = "LOWER_SECONDARY"
UPPER_SECONDARY = "UPPER_SECONDARY"
UNIVERSITY = "UNIVERSITY"
WORKING_ADULT = "WORKING_ADULT"
OTHER = "OTHER"

PROVIDER_LEVELS = [PRIMARY, LOWER_SECONDARY, UPPER_SECONDARY, UNIVERSITY, WORKING_ADULT, OTHER]

# seeker grade -> provider buckets
GRADE_TO_BUCKETS: Dict[str, List[str]] = {
    **{f"GRADE_{g}": [PRIMARY] for g in range(1, 6)},
    **{f"GRADE_{g}": [LOWER_SECONDARY] for g in range(6, 10)},
    **{f"GRADE_{g}": [UPPER_SECONDARY] for g in range(10, 13)},
    "UNIVERSITY": [UNIVERSITY],
    "WORKING_ADULT": [WORKING_ADULT],
}

# provider bucket -> seeker grades
BUCKET_TO_GRADES: Dict[str, List[str]] = {
    PRIMARY: [f"GRADE_{g}" for g in range(1, 6)],
    LOWER_SECONDARY: [f"GRADE_{g}" for g in range(6, 10)],
    UPPER_SECONDARY: [f"GRADE_{g}" for g in range(10, 13)],
    UNIVERSITY: ["UNIVERSITY"],
    WORKING_ADULT: ["WORKING_ADULT"],
    OTHER: [],
}

LABELS: Dict[str, str] = {
    PRIMARY: "primary school",
    LOWER_SECONDARY: "lower secondary",
    UPPER_SECONDARY: "upper secondary",
    UNIVERSITY: "university",
    WORKING_ADULT: "working adults",
    OTHER: "other levels",
}

_GRADE_RE = re.compile(r"^(?:GRADE|LOP|CLASS)_?(\d{1,2})$")
_ALIASES = {
    "COLLEGE": "UNIVERSITY",
    "DAI_HOC": "UNIVERSITY",
    "ADULT": "WORKING_ADULT",
    "NGUOI_DI_LAM": "WORKING_ADULT",
    "TIEU_HOC": PRIMARY,
    "TRUNG_HOC_CO_SO": LOWER_SECONDARY,
    "TRUNG_HOC_PHO_THONG": UPPER_SECONDARY,
    "KHAC": OTHER,
}


def normalize_level(raw: str) -> str:
    """'Grade 10', 'grade-10', 'GRADE10' -> 'GRADE_10'."""
    token = re.sub(r"[\s\-]+", "_", (raw or "").strip().upper())
    token = _ALIASES.get(token, token)
    m = _GRADE_RE.match(token)
    if m:
        return f"GRADE_{int(m.group(1))}"
    return token


def seeker_grades_to_buckets(grades: Iterable[str], strict: bool = False) -> Set[str]:
    """Map seeker grades into provider buckets, dropping unknown values.

    With ``strict`` only canonical codes are accepted, the same values a
    stored-level $in query can match.
    """
    buckets: Set[str] = set()
    for raw in grades or []:
        mapped = GRADE_TO_BUCKETS.get(raw if strict else normalize_level(raw))
        if not mapped:
            logger.warning(f"Unmapped seeker level dropped: {raw!r}")
            continue
        buckets.update(mapped)
    return buckets


def provider_levels_to_buckets(levels: Iterable[str], strict: bool = False) -> Set[str]:
    """Canonicalize provider buckets, dropping unknown values (see seeker_grades_to_buckets)."""
    buckets: Set[str] = set()
    for raw in levels or []:
        level = raw if strict else normalize_level(raw)
        if level in BUCKET_TO_GRADES:
            buckets.add(level)
        else:
            logger.warning(f"Unmapped provider level dropped: {raw!r}")
    return buckets


def buckets_to_seeker_grades(buckets: Iterable[str]) -> Set[str]:
    grades: Set[str] = set()
    for bucket in buckets:
        grades.update(BUCKET_TO_GRADES.get(bucket, []))
    return grades


def canonical_levels(levels: Iterable[str], side: Direction) -> Set[str]:
    """
    Canonical comparison set for a listing's levels.

    Args:
        levels: raw values stored on the listing
        side: direction whose *source* side owns the values
    """
    if side == Direction.SEEKER_TO_PROVIDER:
        return seeker_grades_to_buckets(levels)
    return provider_levels_to_buckets(levels)


def describe_levels(buckets: Iterable[str]) -> str:
    return ", ".join(LABELS.get(b, b.lower()) for b in sorted(buckets))


def display_level(raw: str) -> Optional[str]:
    level = normalize_level(raw)
    if level.startswith("GRADE_"):
        return f"grade {level.split('_', 1)[1]}"
    if level in LABELS:
        return LABELS[level]
    return None
