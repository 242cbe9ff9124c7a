"""
Tolerant decoders for generated text.

Generated text is an untrusted payload. Each response shape has exactly one
decoder here, and each decoder returns an explicit fallback value instead of
raising when the text does not parse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import orjson

from dr.logging import get_logger

logger = get_logger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json|markdown|md)?\s*([\s\S]*?)```", re.IGNORECASE)
_REWRITE_RE = re.compile(r"<rewrite>\s*([\s\S]*?)\s*(?:</rewrite>|$)", re.IGNORECASE)
_CRITIQUE_RE = re.compile(r"<critique>[\s\S]*?(?:</critique>|$)", re.IGNORECASE)


def extract_json(content: str) -> str | None:
    """Extract a JSON object or array from text that may contain other prose.

    Handles JSON wrapped in markdown code blocks or mixed with explanatory
    text. Braces inside JSON strings are skipped while matching.

    Args:
        content: Raw generated text.

    Returns:
        Extracted JSON string or None if not found.
    """
    if not content:
        return None

    for match in _CODE_BLOCK_RE.findall(content):
        match = match.strip()
        if match.startswith(("{", "[")):
            return match

    starts = [i for i in (content.find("{"), content.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    opener = content[start]
    closer = "}" if opener == "{" else "]"

    depth = 0
    in_string = False
    escape = False
    for i, char in enumerate(content[start:], start):
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return content[start : i + 1]

    return None


def load_json(content: str) -> Any | None:
    """Parse the first JSON value found in ``content``, or None."""
    raw = extract_json(content)
    if raw is None:
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None


def strip_code_fence(content: str) -> str:
    """Unwrap a markdown body the model wrapped in a single code fence."""
    text = content.strip()
    if text.startswith("```") and text.endswith("```"):
        match = _CODE_BLOCK_RE.fullmatch(text)
        if match:
            return match.group(1).strip()
    return text


# ============== Relevance filter ==============


def decode_relevant_indices(content: str, count: int) -> list[int] | None:
    """Decode ``{"relevant": [1, 3]}`` (1-based) into sorted 0-based indices.

    Out-of-range and duplicate indices are dropped.

    Returns:
        Indices, or None when the text does not parse (callers fail open).
    """
    data = load_json(content)
    if isinstance(data, dict):
        data = data.get("relevant")
    if not isinstance(data, list):
        logger.warning("Unparseable relevance response", preview=content[:200])
        return None

    indices: set[int] = set()
    for item in data:
        try:
            idx = int(item) - 1
        except (TypeError, ValueError):
            continue
        if 0 <= idx < count:
            indices.add(idx)
    return sorted(indices)


# ============== Gap detection ==============


@dataclass(frozen=True)
class GapVerdict:
    """Critique of a draft against the section's key points."""

    gaps: tuple[str, ...] = ()
    follow_up_queries: tuple[str, ...] = ()
    assessment: str = "sufficient"

    @property
    def needs_deepening(self) -> bool:
        return self.assessment == "insufficient" and bool(self.follow_up_queries)


SUFFICIENT = GapVerdict()


def decode_gap_verdict(content: str, max_queries: int = 3) -> GapVerdict:
    """Decode ``{gaps, follow_up_queries, assessment}``.

    Any parse failure assumes the draft is sufficient.
    """
    data = load_json(content)
    if not isinstance(data, dict):
        logger.warning("Unparseable gap verdict, assuming sufficient", preview=content[:200])
        return SUFFICIENT

    gaps = data.get("gaps") or []
    queries = data.get("follow_up_queries") or data.get("followUpQueries") or []
    assessment = str(data.get("assessment", "sufficient")).strip().lower()
    if assessment not in ("sufficient", "insufficient"):
        assessment = "sufficient"

    if not isinstance(gaps, list) or not isinstance(queries, list):
        return SUFFICIENT

    return GapVerdict(
        gaps=tuple(str(g) for g in gaps if g),
        follow_up_queries=tuple(str(q).strip() for q in queries if str(q).strip())[:max_queries],
        assessment=assessment,
    )


# ============== Self-critique refinement ==============


def decode_refined_body(content: str, fallback: str) -> str:
    """Keep only the rewritten body of a critique-and-rewrite response.

    Prefers the ``<rewrite>`` block. Without one, any ``<critique>`` block is
    removed and the rest is kept. An empty result falls back to ``fallback``
    (the draft that was refined).
    """
    match = _REWRITE_RE.search(content or "")
    if match:
        body = match.group(1)
    else:
        body = _CRITIQUE_RE.sub("", content or "")
    body = strip_code_fence(body)
    if not body:
        logger.warning("Empty refinement, keeping previous draft")
        return fallback
    return body


# ============== Batch analysis ==============


def _decode_id_pairs(content: str, value_key: str) -> dict[str, str]:
    data = load_json(content)
    if isinstance(data, dict):
        data = data.get("items") or data.get("results")
    if not isinstance(data, list):
        logger.warning("Unparseable batch response", key=value_key, preview=content[:200])
        return {}

    out: dict[str, str] = {}
    for item in data:
        if not isinstance(item, dict):
            continue
        article_id = item.get("id")
        value = item.get(value_key)
        if article_id is None or value is None:
            continue
        out[str(article_id)] = str(value).strip()
    return out


def decode_categories(content: str, valid: set[str], fallback: str = "other") -> dict[str, str]:
    """Decode ``[{"id", "category"}]``. Unknown categories become ``fallback``."""
    return {
        article_id: category if category in valid else fallback
        for article_id, category in _decode_id_pairs(content, "category").items()
    }


def decode_summaries(content: str) -> dict[str, str]:
    """Decode ``[{"id", "summary"}]``. Parse failure yields an empty mapping."""
    return {k: v for k, v in _decode_id_pairs(content, "summary").items() if v}
