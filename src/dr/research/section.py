"""
Per-section research: search, filter, draft, deepen, refine, cite.

States: searching -> analyzing -> [deepening -> refining] -> complete, with
error reachable from any of them. This module reports the intermediate
statuses through a callback; the orchestrator owns complete and error.

Two entry points support the human review variant:
- search_and_filter(section): step 1 only
- analyze(section, approved): steps 2-5 on an externally curated list
research_section() is their composition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from dr.llm.base import Profile, TextGenerator
from dr.llm.parsing import GapVerdict, decode_gap_verdict, decode_refined_body, strip_code_fence
from dr.logging import get_logger
from dr.research.citations import dedupe_sources, format_sources
from dr.research.filters import MIN_ARTICLES, filter_by_keyword_blacklist, filter_relevant
from dr.research.prompts import (
    build_analysis_prompt,
    build_gap_prompt,
    build_refine_prompt,
    build_resynthesis_prompt,
)
from dr.retrieval.base import SearchOptions, SearchProvider
from dr.topic import TopicConfig
from dr.types import (
    Article,
    OutlineSection,
    SectionResearchResult,
    SectionStatus,
    SourceReference,
    normalize_url,
)

logger = get_logger(__name__)

StatusCallback = Callable[[SectionStatus, str, "int | None"], Awaitable[None]]

SOURCES_HEADING = "### Sources"


@dataclass(frozen=True)
class SectionResearchOptions:
    """Knobs of the section state machine."""

    enable_deepening: bool = True
    enable_refinement: bool = True
    relevance_floor: int = MIN_ARTICLES
    keyword_blacklist: tuple[str, ...] = ()


def placeholder_content(section: OutlineSection) -> str:
    """Body of a section whose search found nothing. Names the queries tried."""
    queries = ", ".join(section.search_queries) or "(none)"
    return f"No recent news was found for this section. Queries: {queries}"


def merge_articles(current: Sequence[Article], extra: Sequence[Article]) -> list[Article]:
    """Append ``extra`` items whose normalized URL is not already present."""
    seen = {normalize_url(a.url) for a in current}
    merged = list(current)
    for article in extra:
        key = normalize_url(article.url)
        if key not in seen:
            seen.add(key)
            merged.append(article)
    return merged


async def _no_status(status: SectionStatus, message: str, sources_found: int | None) -> None:
    return None


class SectionResearcher:
    """Drives one section through the refinement state machine.

    Stateless across sections, so one instance serves every concurrent
    section task of a run.
    """

    def __init__(
        self,
        generator: TextGenerator,
        search: SearchProvider,
        topic: TopicConfig,
        options: SectionResearchOptions | None = None,
        search_options: SearchOptions | None = None,
    ) -> None:
        self.generator = generator
        self.search = search
        self.topic = topic
        self.options = options or SectionResearchOptions()
        self.search_options = search_options or SearchOptions(
            max_per_query=topic.max_articles_per_source
        )

    # ============== Step 1: search + filter ==============

    async def _search_filtered(
        self, section: OutlineSection, queries: Sequence[str]
    ) -> list[Article]:
        results = await self.search.search(list(queries), self.search_options)
        articles = [Article.create(r) for r in results]
        articles = filter_by_keyword_blacklist(articles, self.options.keyword_blacklist)
        if not articles:
            return []
        return await filter_relevant(
            self.generator, section, articles, floor=self.options.relevance_floor
        )

    async def search_and_filter(
        self,
        section: OutlineSection,
        on_status: StatusCallback | None = None,
    ) -> list[Article]:
        """Search the section's queries and filter the candidates.

        Returns:
            Filtered candidates, possibly empty.
        """
        on_status = on_status or _no_status
        await on_status(SectionStatus.SEARCHING, f'Searching for "{section.title}"', None)

        candidates = await self._search_filtered(section, section.search_queries)
        logger.info("Section search complete", section_id=section.id, candidates=len(candidates))
        return candidates

    # ============== Steps 2-5: analyze, deepen, refine, cite ==============

    async def analyze(
        self,
        section: OutlineSection,
        approved: Sequence[Article],
        on_status: StatusCallback | None = None,
    ) -> SectionResearchResult:
        """Write the section from an approved article list.

        An empty list yields the placeholder body with no sources.

        Raises:
            LLMError: A generation call failed after its retries.
        """
        on_status = on_status or _no_status
        articles = list(approved)

        if not articles:
            logger.info("No articles for section, using placeholder", section_id=section.id)
            return SectionResearchResult(
                section_id=section.id,
                title=section.title,
                content=placeholder_content(section),
                sources=(),
            )

        await on_status(
            SectionStatus.ANALYZING, f"Analyzing {len(articles)} articles", len(articles)
        )
        draft = strip_code_fence(
            await self.generator.generate(
                build_analysis_prompt(self.topic, section, articles), Profile.DEEP, task="analysis"
            )
        )

        if self.options.enable_deepening:
            await on_status(SectionStatus.DEEPENING, "Checking coverage gaps", len(articles))
            draft, articles = await self._deepen(section, draft, articles)

        if self.options.enable_refinement:
            await on_status(SectionStatus.REFINING, "Refining draft", len(articles))
            response = await self.generator.generate(
                build_refine_prompt(self.topic, section, draft), Profile.DEEP, task="refine"
            )
            draft = decode_refined_body(response, fallback=draft)

        sources = dedupe_sources(SourceReference.from_article(a) for a in articles)
        content = draft.rstrip() + "\n\n" + format_sources(sources, SOURCES_HEADING)

        return SectionResearchResult(
            section_id=section.id,
            title=section.title,
            content=content.rstrip() + "\n",
            sources=tuple(sources),
        )

    async def _deepen(
        self, section: OutlineSection, draft: str, articles: list[Article]
    ) -> tuple[str, list[Article]]:
        response = await self.generator.generate(
            build_gap_prompt(section, draft), Profile.FAST, task="gaps"
        )
        verdict: GapVerdict = decode_gap_verdict(response)
        if not verdict.needs_deepening:
            logger.debug("Draft coverage sufficient", section_id=section.id)
            return draft, articles

        extra = await self._search_filtered(section, verdict.follow_up_queries)
        merged = merge_articles(articles, extra)
        logger.info(
            "Deepening section",
            section_id=section.id,
            gaps=len(verdict.gaps),
            new_articles=len(merged) - len(articles),
        )
        if len(merged) == len(articles):
            return draft, articles

        resynthesized = strip_code_fence(
            await self.generator.generate(
                build_resynthesis_prompt(self.topic, section, draft, merged, verdict),
                Profile.DEEP,
                task="resynthesis",
            )
        )
        return resynthesized or draft, merged

    async def research_section(
        self,
        section: OutlineSection,
        on_status: StatusCallback | None = None,
    ) -> SectionResearchResult:
        """Full state machine without a review pause."""
        candidates = await self.search_and_filter(section, on_status)
        return await self.analyze(section, candidates, on_status)
