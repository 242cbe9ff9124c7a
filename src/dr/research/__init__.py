"""Deep research building blocks: outline, filters, section research, review."""

from dr.research.citations import dedupe_sources, format_sources
from dr.research.filters import MIN_ARTICLES, filter_by_keyword_blacklist, filter_relevant
from dr.research.outline import (
    generate_outline,
    normalize_outline,
    parse_outline,
    regenerate_section,
)
from dr.research.review import ReviewRegistry
from dr.research.section import (
    SectionResearcher,
    SectionResearchOptions,
    merge_articles,
    placeholder_content,
)
from dr.research.synthesis import generate_conclusion, generate_executive_summary, synthesize

__all__ = [
    "MIN_ARTICLES",
    "ReviewRegistry",
    "SectionResearchOptions",
    "SectionResearcher",
    "dedupe_sources",
    "filter_by_keyword_blacklist",
    "filter_relevant",
    "format_sources",
    "generate_conclusion",
    "generate_executive_summary",
    "generate_outline",
    "merge_articles",
    "normalize_outline",
    "parse_outline",
    "placeholder_content",
    "regenerate_section",
    "synthesize",
]
