"""
Outline generation, normalization and single-section regeneration.

An unusable outline is an OutlineError: without sections the run cannot make
forward progress, so this decoder raises instead of falling back.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Any, Sequence

from dr.exceptions import OutlineError
from dr.llm.base import Profile, TextGenerator
from dr.llm.parsing import load_json
from dr.logging import get_logger
from dr.research.prompts import build_outline_prompt, build_regenerate_section_prompt
from dr.topic import TopicConfig
from dr.types import PSEUDO_SECTION_IDS, Outline, OutlineSection

logger = get_logger(__name__)

MAX_SECTIONS = 7
MAX_QUERIES = 3
MAX_KEY_POINTS = 4

_ID_RE = re.compile(r"[^a-z0-9]+")


def _get(data: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    return data.get(snake, data.get(camel, default))


def _str_list(value: Any, limit: int) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if str(v).strip())[:limit]


def _slug(text: str) -> str:
    return _ID_RE.sub("-", text.lower()).strip("-")


def normalize_section(data: dict[str, Any], index: int) -> OutlineSection:
    """Build a section from loose data. ``index`` is 0-based."""
    raw_id = str(data.get("id") or "").strip()
    section_id = _slug(raw_id) or f"section-{index + 1}"
    return OutlineSection(
        id=section_id,
        title=str(data.get("title") or "").strip(),
        description=str(data.get("description") or "").strip(),
        search_queries=_str_list(_get(data, "search_queries", "searchQueries"), MAX_QUERIES),
        key_points=_str_list(_get(data, "key_points", "keyPoints"), MAX_KEY_POINTS),
    )


def unique_section_ids(sections: Sequence[OutlineSection]) -> tuple[OutlineSection, ...]:
    """Suffix ids that repeat or clash with the executive summary and conclusion.

    A clash at 0-based position ``i`` becomes ``{id}-{i + 1}``, counting up
    until the id is free.
    """
    used: set[str] = set(PSEUDO_SECTION_IDS)
    result: list[OutlineSection] = []
    for idx, section in enumerate(sections):
        base = section.id or f"section-{idx + 1}"
        section_id = base
        n = idx + 1
        while section_id in used:
            section_id = f"{base}-{n}"
            n += 1
        if section_id != section.id:
            logger.debug("Outline section id renamed", original=section.id, renamed=section_id)
            section = replace(section, id=section_id)
        used.add(section_id)
        result.append(section)
    return tuple(result)


def ensure_unique_ids(outline: Outline) -> Outline:
    """Outline whose section ids are unique and never reserved."""
    sections = unique_section_ids(outline.sections)
    if sections == outline.sections:
        return outline
    return replace(outline, sections=sections)


def normalize_outline(data: Any) -> Outline:
    """Validate and normalize an outline mapping.

    Keeps at most 7 sections with 3 queries and 4 key points each. Missing
    ids become ``section-N``; ids colliding with each other or with the
    executive summary and conclusion get a numeric suffix.

    Raises:
        OutlineError: No title or no sections.
    """
    if not isinstance(data, dict):
        raise OutlineError("Outline is not a JSON object")

    title = str(data.get("title") or "").strip()
    raw_sections = data.get("sections")
    if not title or not isinstance(raw_sections, list) or not raw_sections:
        raise OutlineError("Invalid outline structure: missing title or sections")

    sections = [
        normalize_section(raw, idx)
        for idx, raw in enumerate(raw_sections[:MAX_SECTIONS])
        if isinstance(raw, dict)
    ]
    if not sections:
        raise OutlineError("Invalid outline structure: no usable sections")

    return Outline(
        title=title,
        sections=unique_section_ids(sections),
        executive_summary_guidance=str(
            _get(data, "executive_summary_guidance", "executiveSummaryGuidance", "") or ""
        ),
    )


def parse_outline(content: str) -> Outline:
    """Decode a generated outline.

    Raises:
        OutlineError: The text holds no JSON object or an invalid outline.
    """
    data = load_json(content)
    if data is None:
        raise OutlineError(
            "Failed to parse outline JSON from response", context={"preview": content[:200]}
        )
    return normalize_outline(data)


async def generate_outline(generator: TextGenerator, topic: TopicConfig) -> Outline:
    """Ask the deep profile for a fresh outline."""
    response = await generator.generate(build_outline_prompt(topic), Profile.DEEP, task="outline")
    outline = parse_outline(response)
    logger.info("Outline generated", title=outline.title, sections=len(outline.sections))
    return outline


async def regenerate_section(
    generator: TextGenerator,
    topic: TopicConfig,
    outline: Outline,
    section_id: str,
) -> OutlineSection:
    """Generate a replacement for one section of an outline being edited.

    The replacement keeps the original id.

    Raises:
        OutlineError: Unknown section id or unusable response.
    """
    section = outline.section(section_id)
    if section is None:
        raise OutlineError("Section not found in outline", context={"section_id": section_id})

    prompt = build_regenerate_section_prompt(topic, outline, section)
    response = await generator.generate(prompt, Profile.DEEP, task="regenerate_section")

    data = load_json(response)
    if isinstance(data, dict) and isinstance(data.get("section"), dict):
        data = data["section"]
    if not isinstance(data, dict) or not str(data.get("title") or "").strip():
        raise OutlineError(
            "Failed to parse regenerated section", context={"section_id": section_id}
        )

    index = outline.sections.index(section)
    replacement = normalize_section({**data, "id": section_id}, index)
    logger.info("Section regenerated", section_id=section_id, title=replacement.title)
    return replacement
