"""
Natural-language match explanations.

Two entry points with separate contracts:
  - explain_one: a single explanation for a candidate the caller picked (preferred)
  - explain_batch: one explanation per ranked result (one paid call each)

Both always return non-empty text. Provider trouble of any kind falls back
to a template assembled from the match breakdown.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from tutor_match.helpers.prompts import DETAILED_HINT, EXPLAIN_PROMPT, SHORT_HINT
from tutor_match.models.listings import Direction, Listing, ProviderListing, SeekerListing
from tutor_match.models.response import ExplanationStyle, MatchDetail
from tutor_match.models.settings import AIBackend, ExplanationSettings
from tutor_match.services.levels import describe_levels
from tutor_match.services.text import level_labels, subject_labels
from tutor_match.utils.exceptions import (
    EmbeddingUnavailableError,
    ExplanationError,
    ExternalServiceError,
    RateLimitError,
)
from tutor_match.utils.logging_config import get_logger
from tutor_match.utils.utils import clamp_text, clean_text, safe_json

logger = get_logger(__name__)


# ---------------------- providers ----------------------

class TextProvider:
    """Base text generation provider. Subclasses implement `_request_text`."""

    service_name = "text"

    def __init__(self, settings: ExplanationSettings):
        self.settings = settings

    def is_available(self) -> bool:
        return True

    def _request_text(self, prompt: str) -> str:
        raise NotImplementedError

    def generate_sync(self, prompt: str) -> str:
        if not self.is_available():
            raise EmbeddingUnavailableError(f"{self.service_name} text generation is not configured",
                                            service_name=self.service_name)
        try:
            return self._request_text(prompt)
        except requests.RequestException as e:
            raise ExternalServiceError(
                f"{self.service_name} request failed: {e}", service_name=self.service_name, cause=e
            ) from e

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt)


def _check_response(resp: requests.Response, service_name: str) -> None:
    if resp.status_code == 429:
        raise RateLimitError(f"{service_name} rate limit exceeded", service_name=service_name)
    if resp.status_code >= 400:
        raise ExternalServiceError(
            f"{service_name} returned HTTP {resp.status_code}",
            service_name=service_name,
            status_code=resp.status_code,
        )


class GeminiTextProvider(TextProvider):
    service_name = "gemini"

    def is_available(self) -> bool:
        return bool(self.settings.api_key)

    def _request_text(self, prompt: str) -> str:
        url = f"{self.settings.base_url}/models/{self.settings.llm_model}:generateContent"
        resp = requests.post(
            url,
            params={"key": self.settings.api_key},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": self.settings.temperature},
            },
            timeout=self.settings.timeout,
        )
        _check_response(resp, self.service_name)
        candidates = resp.json().get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)


class OllamaTextProvider(TextProvider):
    service_name = "ollama"

    def is_available(self) -> bool:
        return bool(self.settings.base_url)

    def _request_text(self, prompt: str) -> str:
        url = f"{self.settings.base_url}/api/generate"
        resp = requests.post(
            url,
            json={
                "model": self.settings.llm_model,
                "prompt": prompt,
                "options": {"temperature": self.settings.temperature},
                "stream": False  # important
            },
            timeout=self.settings.timeout,
        )
        _check_response(resp, self.service_name)
        return resp.json().get("response", "") or ""


def build_text_provider(settings: ExplanationSettings) -> TextProvider:
    if settings.backend == AIBackend.OLLAMA:
        return OllamaTextProvider(settings)
    return GeminiTextProvider(settings)


# ---------------------- generator ----------------------

def fallback_template(detail: MatchDetail, subject_names: Optional[Dict[str, str]] = None,
                      max_chars: int = 150) -> str:
    """Deterministic explanation from the breakdown alone. Never empty."""
    clauses: List[str] = []

    head = []
    if detail.matched_subject_ids:
        head.append("subject " + ", ".join(subject_labels(detail.matched_subject_ids, subject_names)))
    if detail.level_match and detail.matched_levels:
        head.append("level " + describe_levels(detail.matched_levels))
    if head:
        clauses.append("Matches on " + " and ".join(head))
    elif detail.subject_ratio is not None and not detail.subject_match:
        clauses.append("No shared subjects")

    if detail.level_match is False:
        clauses.append("different level")
    if detail.price_match is True:
        clauses.append("price within range")
    elif detail.price_match is False:
        clauses.append("price outside range")
    if detail.mode_match is True:
        clauses.append("compatible delivery mode")
    elif detail.mode_match is False:
        clauses.append("different delivery mode")
    if detail.semantic_score is not None and detail.semantic_score >= 0.7:
        clauses.append("closely related descriptions")

    if not clauses:
        return clamp_text("Active listing that passed the matching filters.", max_chars)
    text = "; ".join(clauses) + "."
    return clamp_text(text[0].upper() + text[1:], max_chars)


def _listing_summary(listing: Listing, subject_names: Optional[Dict[str, str]], field_chars: int) -> str:
    lines = []
    if listing.title:
        lines.append("Title: " + clamp_text(clean_text(listing.title), field_chars))
    subjects = subject_labels(listing.subject_ids, subject_names)
    if subjects:
        lines.append("Subjects: " + ", ".join(subjects))
    levels = level_labels(listing.levels)
    if levels:
        lines.append("Levels: " + ", ".join(levels))
    if listing.delivery_mode:
        lines.append("Mode: " + listing.delivery_mode.value.lower())
    if isinstance(listing, SeekerListing):
        if listing.price_range and not listing.price_range.is_open:
            lines.append(f"Budget: {listing.price_range.min or 0:g} - "
                         f"{listing.price_range.max if listing.price_range.max is not None else 'any'}")
        if listing.requirements:
            lines.append("Requirements: " + clamp_text(clean_text(listing.requirements), field_chars))
    if isinstance(listing, ProviderListing) and listing.price_per_session is not None:
        lines.append(f"Price per session: {listing.price_per_session:g}")
    if listing.description:
        lines.append("Description: " + clamp_text(clean_text(listing.description), field_chars))
    return "\n".join(lines) or "(no details)"


def _breakdown(detail: MatchDetail) -> str:
    def fmt(v):
        return "n/a" if v is None else str(v).lower()
    lines = [
        f"subject overlap: {'n/a' if detail.subject_ratio is None else f'{detail.subject_ratio:.0%}'}",
        f"level match: {fmt(detail.level_match)}",
        f"price match: {fmt(detail.price_match)}",
        f"delivery mode match: {fmt(detail.mode_match)}",
    ]
    if detail.semantic_score is not None:
        lines.append(f"description similarity: {detail.semantic_score:.2f}")
    return "\n".join(lines)


class ExplanationGenerator:

    def __init__(self, provider: Optional[TextProvider], settings: Optional[ExplanationSettings] = None):
        self.provider = provider
        self.settings = settings or (provider.settings if provider else ExplanationSettings())

    def is_available(self) -> bool:
        return self.provider is not None and self.provider.is_available()

    def max_chars(self, style: ExplanationStyle) -> int:
        if style == ExplanationStyle.DETAILED:
            return self.settings.detailed_max_chars
        return self.settings.short_max_chars

    def build_prompt(self, source: Listing, candidate: Listing, direction: Direction, detail: MatchDetail,
                     style: ExplanationStyle = ExplanationStyle.SHORT,
                     subject_names: Optional[Dict[str, str]] = None) -> str:
        field_chars = self.settings.context_field_chars
        seeker_to_provider = direction == Direction.SEEKER_TO_PROVIDER
        return EXPLAIN_PROMPT.format(
            audience="learner" if seeker_to_provider else "tutor",
            candidate_side="tutor" if seeker_to_provider else "learner request",
            max_chars=self.max_chars(style),
            style_hint=DETAILED_HINT if style == ExplanationStyle.DETAILED else SHORT_HINT,
            source_side_title="LEARNER REQUEST" if seeker_to_provider else "TUTOR OFFER",
            source_summary=_listing_summary(source, subject_names, field_chars),
            candidate_side_title="TUTOR OFFER" if seeker_to_provider else "LEARNER REQUEST",
            candidate_summary=_listing_summary(candidate, subject_names, field_chars),
            breakdown=_breakdown(detail),
        )

    def _clean_output(self, raw: str, candidate_id: str, max_chars: int) -> str:
        text = raw or ""
        if "{" in text:
            parsed = safe_json(text, {})
            # prose that merely contains a brace is kept as is
            if isinstance(parsed, dict) and "explanation" in parsed:
                text = parsed["explanation"] or ""
        text = clean_text(str(text)).strip('"\' ')
        if not text:
            raise ExplanationError("Empty or malformed explanation output", candidate_id=candidate_id)
        return clamp_text(text, max_chars)

    async def explain_one(self, source: Listing, candidate: Listing, direction: Direction, detail: MatchDetail,
                          style: ExplanationStyle = ExplanationStyle.SHORT,
                          subject_names: Optional[Dict[str, str]] = None) -> str:
        """One explanation for one candidate. Never raises."""
        max_chars = self.max_chars(style)
        if not self.is_available():
            logger.info("Explanation provider unavailable, using template")
            return fallback_template(detail, subject_names, max_chars)

        try:
            prompt = self.build_prompt(source, candidate, direction, detail, style, subject_names)
            raw = await self.provider.generate(prompt)
            return self._clean_output(raw, candidate.entity_id, max_chars)
        except Exception as e:
            logger.warning(f"Explanation failed for candidate {candidate.entity_id}, using template: {e}")
            return fallback_template(detail, subject_names, max_chars)

    async def explain_batch(self, source: Listing, pairs: Sequence[Tuple[Listing, MatchDetail]],
                            direction: Direction, style: ExplanationStyle = ExplanationStyle.SHORT,
                            subject_names: Optional[Dict[str, str]] = None) -> List[str]:
        """One explanation per (candidate, detail) pair, in order. One provider call each."""
        logger.info(f"Generating {len(pairs)} explanations in batch")
        explanations = []
        for candidate, detail in pairs:
            explanations.append(
                await self.explain_one(source, candidate, direction, detail, style, subject_names)
            )
        return explanations
