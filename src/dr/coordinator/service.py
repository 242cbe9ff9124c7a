"""
ResearchService: process-level entry point for both pipelines.

Owns the shared collaborators of one process (workspace store, event log,
text generator, review registry) and enforces one active run per project.
"""

from __future__ import annotations

from typing import Any, Sequence

from dr.config import Settings, get_settings
from dr.coordinator.deep_pipeline import DeepResearchOptions, DeepResearchPipeline, DeepRunResult
from dr.coordinator.event_log import EventLog
from dr.coordinator.fast_pipeline import FastPipeline, FastPipelineOptions, FastRunResult
from dr.events import Event, EventChannel, EventSink
from dr.exceptions import PipelineError
from dr.llm.base import TextGenerator
from dr.llm.router import LLMRouter
from dr.logging import get_logger
from dr.reports.compiler import PdfRenderer
from dr.research import outline as outline_ops
from dr.research.review import ReviewRegistry
from dr.retrieval.aggregator import SearchAggregator
from dr.retrieval.base import SearchOptions, SearchProvider
from dr.retrieval.feeds import GoogleNewsProvider, RssFeedProvider
from dr.topic import TopicConfig
from dr.types import Outline, OutlineSection, ReviewDecisions, generate_id, generate_report_id
from dr.workspace.store import ProjectStore, WorkspaceStore

logger = get_logger(__name__)


class ResearchService:
    """Starts runs, routes review decisions and serves progress snapshots.

    Example:
        service = ResearchService()
        await service.init()
        result = await service.start_deep(topic, sink=my_sink, review=True)
        await service.close()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkspaceStore | None = None,
        generator: TextGenerator | None = None,
        search: SearchProvider | None = None,
        event_log: EventLog | None = None,
        pdf_renderer: PdfRenderer | None = None,
    ) -> None:
        """
        Args:
            settings: Defaults to ``get_settings()``.
            store: Defaults to the workspace database under DATA_DIR.
            generator: Defaults to an LLMRouter built from settings.
            search: Fixed search provider. None builds one per topic.
            event_log: Durable event sink. Defaults to DATA_DIR/events.
            pdf_renderer: Enables the PDF phase of deep runs.
        """
        self.settings = settings or get_settings()
        self.store = store or WorkspaceStore(self.settings.workspace_db_path)
        self.generator = generator or LLMRouter(self.settings)
        self.event_log = event_log or EventLog(self.settings.DATA_DIR / "events")
        self.pdf_renderer = pdf_renderer
        self.reviews = ReviewRegistry(default_timeout=self.settings.review_timeout)
        self._search = search
        self._active: dict[str, str] = {}

    async def init(self) -> None:
        await self.store.init()
        await self.event_log.init()

    async def close(self) -> None:
        cancelled = self.reviews.cancel_all()
        if cancelled:
            logger.warning("Cancelled pending reviews on shutdown", count=cancelled)
        close = getattr(self.generator, "close", None)
        if close is not None:
            await close()
        await self.event_log.close()
        await self.store.close()

    def project(self, project_id: str) -> ProjectStore:
        return ProjectStore(self.store, project_id)

    def search_options(self, topic: TopicConfig) -> SearchOptions:
        return SearchOptions(
            max_per_query=min(self.settings.MAX_RESULTS_PER_QUERY, topic.max_articles_per_source),
            timeout=self.settings.SEARCH_TIMEOUT_SECONDS,
        )

    def _build_search(self, topic: TopicConfig, include_feeds: bool) -> SearchAggregator:
        providers: list[SearchProvider] = []
        if self._search is not None:
            providers.append(self._search)
        else:
            if topic.collection_sources.google_news:
                providers.append(GoogleNewsProvider())
            if include_feeds and topic.collection_sources.rss and topic.rss_sources:
                providers.append(RssFeedProvider(topic.rss_sources))
        return SearchAggregator(providers, self.search_options(topic))

    def _channel(self, run_id: str, sink: EventSink | None) -> EventChannel:
        sinks: list[EventSink] = [self.event_log]
        if sink is not None:
            sinks.append(sink)
        return EventChannel(run_id, *sinks)

    def _claim(self, project_id: str, run_id: str) -> None:
        active = self._active.get(project_id)
        if active is not None:
            raise PipelineError(
                "A run is already active for this project",
                context={"project_id": project_id, "active_run": active},
            )
        self._active[project_id] = run_id

    def _release(self, project_id: str, run_id: str) -> None:
        if self._active.get(project_id) == run_id:
            del self._active[project_id]

    def active_run(self, project_id: str) -> str | None:
        return self._active.get(project_id)

    # ============== Runs ==============

    async def start_fast(
        self, topic: TopicConfig, sink: EventSink | None = None
    ) -> FastRunResult:
        """Run the fast pipeline to completion.

        Raises:
            PipelineError: A run is already active for the project.
        """
        run_id = generate_id("fast")
        self._claim(topic.project_id, run_id)
        search = self._build_search(topic, include_feeds=True)
        try:
            pipeline = FastPipeline(
                store=self.project(topic.project_id),
                topic=topic,
                generator=self.generator,
                search=search,
                channel=self._channel(run_id, sink),
                options=FastPipelineOptions(
                    curation_threshold=self.settings.CURATION_THRESHOLD,
                    batch_size=self.settings.ANALYSIS_BATCH_SIZE,
                    report_window_days=self.settings.REPORT_WINDOW_DAYS,
                ),
                search_options=self.search_options(topic),
            )
            return await pipeline.run()
        finally:
            if self._search is None:
                await search.close()
            self._release(topic.project_id, run_id)

    async def start_deep(
        self,
        topic: TopicConfig,
        sink: EventSink | None = None,
        outline: Outline | None = None,
        review: bool = False,
        keyword_blacklist: Sequence[str] = (),
        report_id: str | None = None,
    ) -> DeepRunResult:
        """Run the deep research pipeline to completion.

        Args:
            topic: Topic configuration.
            sink: Progress observer.
            outline: Human-edited outline. None generates one.
            review: Pause for article review after searching.
            keyword_blacklist: Extra keywords excluded from candidates.
            report_id: Fixed report ID. Generated when omitted.

        Raises:
            PipelineError: A run is already active for the project.
        """
        report_id = report_id or generate_report_id()
        self._claim(topic.project_id, report_id)
        search = self._build_search(topic, include_feeds=False)
        try:
            pipeline = DeepResearchPipeline(
                store=self.project(topic.project_id),
                topic=topic,
                generator=self.generator,
                search=search,
                channel=self._channel(report_id, sink),
                review_registry=self.reviews,
                options=DeepResearchOptions(
                    review=review,
                    review_timeout=self.settings.review_timeout,
                    keyword_blacklist=tuple(keyword_blacklist),
                ),
                pdf_renderer=self.pdf_renderer,
                search_options=self.search_options(topic),
                report_id=report_id,
            )
            return await pipeline.run(outline)
        finally:
            if self._search is None:
                await search.close()
            self._release(topic.project_id, report_id)

    # ============== Outline editing ==============

    async def generate_outline(self, topic: TopicConfig) -> Outline:
        return await outline_ops.generate_outline(self.generator, topic)

    async def regenerate_section(
        self, topic: TopicConfig, outline: Outline, section_id: str
    ) -> OutlineSection:
        return await outline_ops.regenerate_section(self.generator, topic, outline, section_id)

    # ============== Review ==============

    def submit_review(self, report_id: str, decisions: ReviewDecisions) -> bool:
        """Resume a paused run. False means nothing was pending (a conflict)."""
        return self.reviews.submit(report_id, decisions)

    def cancel_review(self, report_id: str, reason: str = "no reason given") -> bool:
        return self.reviews.cancel(report_id, reason)

    # ============== Progress ==============

    async def get_progress(self, project_id: str) -> dict[str, Any]:
        """Snapshot of the latest deep run, rebuilt from persisted state.

        Returns:
            ``{active, report_id, phase, outline, sections}`` plus
            ``total_sources`` and ``error`` once a deep run exists; phase and
            report_id are None when the project never ran deep research.
        """
        store = self.project(project_id)
        report_id = await store.get_latest_deep_report_id()
        meta = await store.get_deep_meta(report_id) if report_id else None

        if meta is None:
            return {
                "active": project_id in self._active,
                "report_id": None,
                "phase": None,
                "outline": None,
                "sections": [],
            }

        return {
            "active": self._active.get(project_id) == meta.report_id,
            "report_id": meta.report_id,
            "phase": meta.phase.value,
            "outline": meta.outline.to_dict() if meta.outline else None,
            "sections": [s.to_dict() for s in meta.sections],
            "total_sources": meta.total_sources,
            "error": meta.error,
        }

    async def replay_events(self, run_id: str, after_seq: int = 0) -> list[Event]:
        """Events a reconnecting observer missed."""
        return await self.event_log.replay(run_id, after_seq)
