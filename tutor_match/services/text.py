"""
Canonical text summaries that get embedded.

The same listing always yields the same text, so its hash doubles as the
embedding's content marker.
"""
from typing import Dict, List, Optional, Sequence

from tutor_match.models.listings import ProviderListing, ProviderProfile, SeekerListing
from tutor_match.services.levels import display_level
from tutor_match.utils.utils import clamp_text, clean_text, unique


def subject_labels(subject_ids: Sequence[str], subject_names: Optional[Dict[str, str]] = None) -> List[str]:
    names = subject_names or {}
    return [names.get(s, s) for s in subject_ids]


def level_labels(levels: Sequence[str]) -> List[str]:
    return unique(lbl for lbl in (display_level(lv) for lv in levels) if lbl)


def _join(lines: List[str], max_chars: int) -> str:
    text = "\n".join(clean_text(line) for line in lines if line and clean_text(line))
    return clamp_text(text, max_chars)


def seeker_listing_text(listing: SeekerListing, subject_names: Optional[Dict[str, str]] = None,
                        max_chars: int = 30000) -> str:
    lines = [listing.title]
    subjects = subject_labels(listing.subject_ids, subject_names)
    if subjects:
        lines.append("Subjects: " + ", ".join(subjects))
    levels = level_labels(listing.levels)
    if levels:
        lines.append("Levels: " + ", ".join(levels))
    if listing.delivery_mode:
        lines.append(f"Mode: {listing.delivery_mode.value.lower()}")
    lines.append(listing.description)
    if listing.requirements:
        lines.append("Requirements: " + listing.requirements)
    return _join(lines, max_chars)


def provider_listing_text(listing: ProviderListing, subject_names: Optional[Dict[str, str]] = None,
                          max_chars: int = 30000) -> str:
    lines = [listing.title]
    subjects = subject_labels(listing.subject_ids, subject_names)
    if subjects:
        lines.append("Teaches: " + ", ".join(subjects))
    levels = level_labels(listing.levels)
    if levels:
        lines.append("Levels: " + ", ".join(levels))
    if listing.delivery_mode:
        lines.append(f"Mode: {listing.delivery_mode.value.lower()}")
    lines.append(listing.description)
    return _join(lines, max_chars)


def listing_text(listing, subject_names: Optional[Dict[str, str]] = None, max_chars: int = 30000) -> str:
    if isinstance(listing, SeekerListing):
        return seeker_listing_text(listing, subject_names, max_chars)
    return provider_listing_text(listing, subject_names, max_chars)


def profile_text(profile: ProviderProfile, listings: Sequence[ProviderListing],
                 subject_names: Optional[Dict[str, str]] = None, max_chars: int = 30000) -> str:
    """Profile narrative followed by a short summary of each sampled active listing."""
    lines = [profile.headline, profile.introduction]
    if profile.teaching_experience:
        lines.append("Experience: " + profile.teaching_experience)

    subjects = unique(s for lst in listings for s in lst.subject_ids)
    if subjects:
        lines.append("Teaches: " + ", ".join(subject_labels(subjects, subject_names)))
    levels = level_labels([lv for lst in listings for lv in lst.levels])
    if levels:
        lines.append("Levels: " + ", ".join(levels))
    for lst in listings:
        lines.append(f"{lst.title}: {lst.description}" if lst.title else lst.description)
    return _join(lines, max_chars)
