"""
Candidate filters applied after a section search.

- Keyword blacklist: case-insensitive substring match on title and body
- AI relevance filter: keeps the items the fast profile marks relevant
"""

from __future__ import annotations

from typing import Sequence, TypeVar

from dr.llm.base import Profile, TextGenerator
from dr.llm.parsing import decode_relevant_indices
from dr.logging import get_logger
from dr.research.prompts import build_relevance_prompt
from dr.types import Article, OutlineSection

logger = get_logger(__name__)

MIN_ARTICLES = 3

A = TypeVar("A", bound=Article)


def filter_by_keyword_blacklist(articles: Sequence[A], blacklist: Sequence[str]) -> list[A]:
    """Drop articles whose title or body contains a blacklisted keyword."""
    terms = [kw.lower().strip() for kw in blacklist if kw and kw.strip()]
    if not terms:
        return list(articles)

    kept: list[A] = []
    for article in articles:
        title = article.title.lower()
        body = article.body.lower()
        if not any(term in title or term in body for term in terms):
            kept.append(article)
    return kept


async def filter_relevant(
    generator: TextGenerator,
    section: OutlineSection,
    candidates: Sequence[A],
    floor: int = MIN_ARTICLES,
) -> list[A]:
    """Keep the candidates judged relevant to the section.

    Sets of ``floor`` items or fewer are returned unchanged. An unparseable
    verdict keeps everything. A verdict leaving fewer than ``floor`` items
    falls back to the first ``floor`` candidates.

    Raises:
        LLMError: The generation call itself failed.
    """
    if len(candidates) <= floor:
        return list(candidates)

    prompt = build_relevance_prompt(section, candidates)
    response = await generator.generate(prompt, Profile.FAST, task="relevance")

    indices = decode_relevant_indices(response, len(candidates))
    if indices is None:
        logger.warning(
            "Relevance verdict unparseable, keeping all candidates",
            section_id=section.id,
            candidates=len(candidates),
        )
        return list(candidates)

    filtered = [candidates[i] for i in indices]
    if len(filtered) < floor:
        logger.info(
            "Relevance filter below floor, keeping first candidates",
            section_id=section.id,
            kept=len(filtered),
            floor=floor,
        )
        return list(candidates[:floor])

    logger.debug(
        "Relevance filter applied",
        section_id=section.id,
        before=len(candidates),
        after=len(filtered),
    )
    return filtered
