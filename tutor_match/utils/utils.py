import hashlib
import json
import re
from typing import Any, Iterable, List


def safe_json(s: str, fallback: dict):
    try:
        # heuristics to find JSON inside
        start = s.find("{")
        end = s.rfind("}")
        if start >= 0 and end >= 0:
            return json.loads(s[start:end+1])
        return fallback
    except Exception:
        return fallback


def clean_text(x: str) -> str:
    return re.sub(r'\s+', ' ', x or "").strip()


def clamp_text(text: str, max_chars: int) -> str:
    """Cut text to max_chars, marking the cut with '...'."""
    text = text or ""
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[:max_chars - 3].rstrip() + "..."


def content_hash(text: str) -> str:
    """Stable marker of the content an embedding was computed from."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def unique(values: Iterable[Any]) -> List[Any]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out
