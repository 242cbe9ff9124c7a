"""
Deep research pipeline coordinator.

Phases:
1. outline - generated, or supplied by the caller after human editing
2. researching - one section task per outline section through the limiter
   (with review: search+filter only, then reviewing_articles, then analysis)
3. compiling - executive summary and conclusion concurrently, then the merged
   document read back from storage
4. pdf - best effort, only when a renderer is configured
5. complete

A full DeepReportMeta snapshot is saved after every phase transition and
every section status change. Sections fail in isolation; the run fails only
when no section completes, a global stage fails, or the review is cancelled.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence, TypeVar

from dr.concurrency import ConcurrencyLimiter
from dr.events import Event, EventChannel
from dr.exceptions import OutlineError, PipelineError, ReviewCancelledError, ReviewTimeoutError
from dr.llm.base import TextGenerator
from dr.logging import get_logger, log_context, set_phase
from dr.reports.compiler import (
    CONCLUSION_TITLE,
    EXECUTIVE_SUMMARY_TITLE,
    PdfRenderer,
    ReportCompiler,
    build_deep_report_entry,
)
from dr.reports.digest import upsert_report
from dr.research.outline import ensure_unique_ids, generate_outline
from dr.research.review import ReviewRegistry
from dr.research.section import SectionResearcher, SectionResearchOptions
from dr.research.synthesis import synthesize
from dr.retrieval.base import SearchOptions, SearchProvider
from dr.topic import TopicConfig
from dr.types import (
    CONCLUSION_ID,
    EXECUTIVE_SUMMARY_ID,
    PSEUDO_SECTION_IDS,
    Article,
    DeepPhase,
    DeepReportMeta,
    Outline,
    OutlineSection,
    ProjectStatus,
    ReviewDecisions,
    SectionMeta,
    SectionResearchResult,
    SectionStatus,
    SourceReference,
    generate_report_id,
    normalize_url,
)
from dr.workspace.store import ProjectStore

logger = get_logger(__name__)

T = TypeVar("T")

CANDIDATE_PREVIEW_CHARS = 300


@dataclass(frozen=True)
class DeepResearchOptions:
    """Per-run options of the deep research pipeline."""

    review: bool = False
    review_timeout: float | None = None
    enable_deepening: bool = True
    enable_refinement: bool = True
    keyword_blacklist: tuple[str, ...] = ()
    # None sizes the limiter to the section count
    max_concurrent_sections: int | None = None


@dataclass
class DeepRunResult:
    """Outcome of one deep research run."""

    report_id: str
    phase: DeepPhase
    completed_sections: list[str] = field(default_factory=list)
    failed_sections: list[str] = field(default_factory=list)
    merged_markdown: str | None = None
    pdf_generated: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase is DeepPhase.COMPLETE


class DeepResearchPipeline:
    """Runs one deep research report from outline to merged document.

    One instance per run. The status map (``meta``) is written only from this
    instance's tasks, each section task touching only its own entry, and
    every write happens between await points.
    """

    def __init__(
        self,
        store: ProjectStore,
        topic: TopicConfig,
        generator: TextGenerator,
        search: SearchProvider,
        channel: EventChannel,
        review_registry: ReviewRegistry | None = None,
        options: DeepResearchOptions | None = None,
        pdf_renderer: PdfRenderer | None = None,
        search_options: SearchOptions | None = None,
        report_id: str | None = None,
    ) -> None:
        self.store = store
        self.topic = topic
        self.generator = generator
        self.channel = channel
        self.options = options or DeepResearchOptions()
        self.review_registry = review_registry
        self.pdf_renderer = pdf_renderer
        self.compiler = ReportCompiler()

        if self.options.review and review_registry is None:
            raise ValueError("Article review requires a ReviewRegistry")

        self.researcher = SectionResearcher(
            generator,
            search,
            topic,
            SectionResearchOptions(
                enable_deepening=self.options.enable_deepening,
                enable_refinement=self.options.enable_refinement,
                keyword_blacklist=tuple(self.options.keyword_blacklist)
                + tuple(topic.keyword_blacklist),
            ),
            search_options,
        )

        self.report_id = report_id or generate_report_id()
        self.meta = DeepReportMeta.create(self.report_id, topic.report_title)
        self._persist_lock = asyncio.Lock()

    # ============== Snapshot + status ==============

    async def _persist(self) -> None:
        async with self._persist_lock:
            # to_dict runs before the first await, so the snapshot is current
            await self.store.save_deep_meta(self.meta)

    async def _set_phase(self, phase: DeepPhase, message: str = "") -> None:
        self.meta.phase = phase
        set_phase(phase.value)
        logger.info("Phase started", phase=phase.value)
        await self._persist()
        await self.channel.emit(Event.phase(phase.value, message))

    async def _set_section_status(
        self,
        section_id: str,
        status: SectionStatus,
        message: str = "",
        sources_found: int | None = None,
    ) -> None:
        entry = self.meta.section(section_id)
        if entry is None:
            logger.warning("Status for unknown section ignored", section_id=section_id)
            return
        if not entry.status.can_transition_to(status):
            logger.debug(
                "Section status regression ignored",
                section_id=section_id,
                current=entry.status.value,
                requested=status.value,
            )
            return

        entry.status = status
        if status is SectionStatus.COMPLETE and sources_found is not None:
            entry.sources_count = sources_found
        logger.info("Section status", section_id=section_id, status=status.value)
        await self._persist()
        await self.channel.emit(
            Event.section_status(section_id, status.value, message, sources_found)
        )

    def _status_callback(
        self, section_id: str
    ) -> Callable[[SectionStatus, str, int | None], Awaitable[None]]:
        async def on_status(status: SectionStatus, message: str, sources: int | None) -> None:
            await self._set_section_status(section_id, status, message, sources)

        return on_status

    # ============== Run ==============

    async def run(self, outline: Outline | None = None) -> DeepRunResult:
        """Run the pipeline. Never raises; failures end in ``phase: error``.

        Args:
            outline: Human-edited outline. None generates one.
        """
        result = DeepRunResult(report_id=self.report_id, phase=DeepPhase.OUTLINE)

        with log_context(run_id=self.report_id):
            try:
                await self.store.set_status(ProjectStatus.RESEARCHING)
                await self.store.set_latest_deep_report_id(self.report_id)

                outline = await self._outline_phase(outline)
                results = await self._research_phase(outline)

                result.completed_sections = [r.section_id for r in results]
                result.failed_sections = [
                    s.id for s in outline.sections if s.id not in result.completed_sections
                ]
                if not results:
                    raise PipelineError(
                        "All sections failed", context={"sections": len(outline.sections)}
                    )

                result.merged_markdown = await self._compile_phase(outline, results)
                result.pdf_generated = await self._pdf_phase(result.merged_markdown)

                self.meta.phase = DeepPhase.COMPLETE
                await self._persist()
                await self.store.set_status(ProjectStatus.COMPLETE)
                result.phase = DeepPhase.COMPLETE
                # The terminal phase event is always the last one of the run
                await self.channel.emit(Event.report_complete(self.report_id))
                await self.channel.emit(
                    Event.phase(DeepPhase.COMPLETE.value, "Deep research complete")
                )
                logger.info(
                    "Deep research complete",
                    completed=len(result.completed_sections),
                    failed=len(result.failed_sections),
                    total_sources=self.meta.total_sources,
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.exception("Deep research failed", error=message)
                result.phase = DeepPhase.ERROR
                result.error = message
                await self._fail(message)

        return result

    async def _fail(self, message: str) -> None:
        self.meta.phase = DeepPhase.ERROR
        self.meta.error = message
        unfinished = [s for s in self.meta.sections if not s.status.is_terminal]
        for entry in unfinished:
            entry.status = SectionStatus.ERROR
        try:
            await self._persist()
            await self.store.set_status(ProjectStatus.ERROR)
        except Exception as e:
            logger.error("Failed to persist error state", error=str(e))
        for entry in unfinished:
            await self.channel.emit(
                Event.section_status(entry.id, SectionStatus.ERROR.value, "Run failed")
            )
        await self.channel.emit(Event.error(message))
        await self.channel.emit(
            Event.phase(DeepPhase.ERROR.value, f"Deep research error: {message}")
        )

    # ============== Outline ==============

    async def _outline_phase(self, outline: Outline | None) -> Outline:
        if outline is None:
            await self._set_phase(DeepPhase.OUTLINE, "Generating outline")
            outline = await generate_outline(self.generator, self.topic)
        else:
            await self._set_phase(DeepPhase.OUTLINE, "Using provided outline")
            if not outline.sections:
                raise OutlineError("Provided outline has no sections")
            outline = ensure_unique_ids(outline)

        self.meta.outline = outline
        self.meta.title = outline.title
        self.meta.sections = [
            SectionMeta(id=EXECUTIVE_SUMMARY_ID, title=EXECUTIVE_SUMMARY_TITLE),
            *(SectionMeta(id=s.id, title=s.title) for s in outline.sections),
            SectionMeta(id=CONCLUSION_ID, title=CONCLUSION_TITLE),
        ]
        await self._persist()
        await self.channel.emit(Event.outline(outline))
        for entry in self.meta.sections:
            await self.channel.emit(
                Event.section_status(entry.id, entry.status.value, "Waiting to start")
            )
        return outline

    # ============== Researching ==============

    def _limiter(self, outline: Outline) -> ConcurrencyLimiter:
        size = self.options.max_concurrent_sections or len(outline.sections)
        return ConcurrencyLimiter(max(1, size))

    async def _guarded(
        self, section: OutlineSection, work: Callable[[], Awaitable[T]]
    ) -> T | None:
        """Run one section's work; a failure marks only that section."""
        with log_context(section=section.id):
            try:
                return await work()
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error("Section failed", section_id=section.id, error=message)
                await self._set_section_status(section.id, SectionStatus.ERROR, message)
                return None

    async def _fan_out(
        self,
        outline: Outline,
        work: Callable[[OutlineSection], Awaitable[T]],
    ) -> list[T | None]:
        limiter = self._limiter(outline)
        return await asyncio.gather(
            *(
                limiter.run(lambda s=s: self._guarded(s, lambda: work(s)))
                for s in outline.sections
            )
        )

    async def _research_phase(self, outline: Outline) -> list[SectionResearchResult]:
        await self._set_phase(
            DeepPhase.RESEARCHING, f"Researching {len(outline.sections)} sections"
        )

        if not self.options.review:

            async def research(section: OutlineSection) -> SectionResearchResult:
                result = await self.researcher.research_section(
                    section, self._status_callback(section.id)
                )
                await self._save_section(result)
                return result

            outcomes = await self._fan_out(outline, research)
        else:
            candidates = await self._fan_out(
                outline,
                lambda s: self.researcher.search_and_filter(s, self._status_callback(s.id)),
            )
            by_section = {
                s.id: list(c) for s, c in zip(outline.sections, candidates) if c is not None
            }
            approved = await self._review(outline, by_section)
            await self._set_phase(DeepPhase.RESEARCHING, "Analyzing approved articles")

            async def analyze(section: OutlineSection) -> SectionResearchResult | None:
                if section.id not in approved:
                    return None
                result = await self.researcher.analyze(
                    section, approved[section.id], self._status_callback(section.id)
                )
                await self._save_section(result)
                return result

            outcomes = await self._fan_out(outline, analyze)

        return [o for o in outcomes if o is not None]

    async def _save_section(self, result: SectionResearchResult) -> None:
        """Persist one finished section before marking it complete."""
        await self.store.save_section_content(self.report_id, result.section_id, result.content)
        await self.store.save_section_sources(self.report_id, result.section_id, result.sources)
        await self._set_section_status(
            result.section_id,
            SectionStatus.COMPLETE,
            f"{len(result.sources)} sources",
            len(result.sources),
        )
        await self.channel.emit(Event.section_saved(result.section_id, result.title))

    async def _review(
        self, outline: Outline, candidates: dict[str, list[Article]]
    ) -> dict[str, list[Article]]:
        """Pause for human review and apply the excluded URLs."""
        registry = self.review_registry
        if registry is None:
            raise PipelineError("Article review requires a ReviewRegistry")

        await self._set_phase(DeepPhase.REVIEWING_ARTICLES, "Waiting for article review")
        payload = {
            section_id: [
                {**a.to_dict(), "body": a.body[:CANDIDATE_PREVIEW_CHARS]} for a in articles
            ]
            for section_id, articles in candidates.items()
        }
        await self.channel.emit(Event.articles_ready(payload))

        try:
            decisions = await registry.wait_for_review(
                self.report_id, timeout=self.options.review_timeout
            )
        except ReviewTimeoutError as e:
            raise PipelineError(e.message, context={"report_id": self.report_id}) from e
        except ReviewCancelledError as e:
            raise PipelineError(
                f"Article review cancelled: {e.message}", context={"report_id": self.report_id}
            ) from e

        return apply_review(candidates, decisions)

    # ============== Compiling ==============

    async def _compile_phase(
        self, outline: Outline, results: Sequence[SectionResearchResult]
    ) -> str:
        await self._set_phase(DeepPhase.COMPILING, "Writing summary and conclusion")

        for pseudo_id in PSEUDO_SECTION_IDS:
            await self._set_section_status(pseudo_id, SectionStatus.ANALYZING, "Synthesizing")

        try:
            summary, conclusion = await synthesize(self.generator, self.topic, outline, results)
        except Exception as e:
            for pseudo_id in PSEUDO_SECTION_IDS:
                await self._set_section_status(pseudo_id, SectionStatus.ERROR, str(e))
            raise PipelineError(
                f"Report synthesis failed: {e}", context={"report_id": self.report_id}
            ) from e

        for pseudo_id, title, content in (
            (EXECUTIVE_SUMMARY_ID, EXECUTIVE_SUMMARY_TITLE, summary),
            (CONCLUSION_ID, CONCLUSION_TITLE, conclusion),
        ):
            await self.store.save_section_content(self.report_id, pseudo_id, content)
            await self._set_section_status(pseudo_id, SectionStatus.COMPLETE, "", 0)
            await self.channel.emit(Event.section_saved(pseudo_id, title))

        markdown = await self._merge()

        index = await self.store.get_report_index()
        entry = build_deep_report_entry(
            self.report_id, outline, results, self.meta.generated_at.isoformat()
        )
        await self.store.save_report_index(upsert_report(index, entry))
        return markdown

    async def _merge(self) -> str:
        """Build the merged document from persisted section content only."""
        contents: dict[str, str] = {}
        sources: list[SourceReference] = []
        for entry in self.meta.sections:
            if entry.status is not SectionStatus.COMPLETE:
                continue
            content = await self.store.get_section_content(self.report_id, entry.id)
            if content is None:
                logger.warning("Completed section has no saved content", section_id=entry.id)
                continue
            contents[entry.id] = content
            if entry.id not in PSEUDO_SECTION_IDS:
                sources.extend(await self.store.get_section_sources(self.report_id, entry.id))

        document = self.compiler.compile(self.meta, contents, sources)
        await self.store.save_merged_markdown(self.report_id, document.markdown)

        self.meta.total_sources = len(document.sources)
        await self._persist()
        logger.info(
            "Merged document saved",
            sections=len(document.section_ids),
            sources=len(document.sources),
        )
        return document.markdown

    # ============== PDF ==============

    async def _pdf_phase(self, markdown: str) -> bool:
        if self.pdf_renderer is None:
            return False

        await self._set_phase(DeepPhase.PDF, "Rendering PDF")
        try:
            pdf = await self.pdf_renderer.render(markdown, self.meta.title)
            await self.store.save_merged_pdf(self.report_id, pdf)
        except Exception as e:
            logger.warning("PDF rendering failed, report kept as markdown", error=str(e))
            await self.channel.emit(Event.error(f"PDF rendering failed: {e}"))
            return False
        return True


def apply_review(
    candidates: dict[str, list[Article]], decisions: ReviewDecisions
) -> dict[str, list[Article]]:
    """Drop the excluded URLs of each section. Unknown section ids are ignored."""
    approved: dict[str, list[Article]] = {}
    for section_id, articles in candidates.items():
        excluded = {normalize_url(u) for u in decisions.get(section_id, ())}
        approved[section_id] = [a for a in articles if normalize_url(a.url) not in excluded]
    return approved
