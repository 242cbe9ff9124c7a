"""
Fast pipeline coordinator.

Strictly ordered phases, each finished before the next starts:
1. Collecting - search, keyword relevance gating, incremental merge
   (curation when the project holds too many articles)
2. Analyzing - batches of categorize + summarize calls
3. Reporting - digest markdown for the report window, report index update

Any exception moves the run to error and halts it. Collected articles stay
persisted for the next attempt; no report is produced from a failed analysis.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence

from dr.analysis.batch import BatchAnalyzer, chunk
from dr.concurrency import ConcurrencyLimiter
from dr.curation.curator import ArticleCurator
from dr.events import Event, EventChannel
from dr.llm.base import TextGenerator
from dr.logging import get_logger, log_context, set_phase
from dr.reports.digest import (
    build_digest,
    build_digest_meta,
    filter_by_window,
    report_window,
    upsert_report,
)
from dr.retrieval.aggregator import SearchAggregator
from dr.retrieval.base import SearchOptions
from dr.retrieval.keywords import is_relevant, match_keywords
from dr.topic import TopicConfig
from dr.types import AnalyzedArticle, Article, FastPhase, ProjectStatus, normalize_url
from dr.workspace.store import ProjectStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class FastPipelineOptions:
    """Tunables of the fast pipeline."""

    curation_threshold: int = 50
    batch_size: int = 10
    # Batches run one at a time by default to keep generation load predictable
    analysis_concurrency: int = 1
    report_window_days: int = 7


@dataclass
class FastRunResult:
    """Outcome of one fast pipeline run."""

    run_id: str
    phase: FastPhase
    articles_collected: int = 0
    articles_analyzed: int = 0
    report_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase is FastPhase.COMPLETE


class FastPipeline:
    """Collect, analyze and report for one project."""

    def __init__(
        self,
        store: ProjectStore,
        topic: TopicConfig,
        generator: TextGenerator,
        search: SearchAggregator,
        channel: EventChannel,
        options: FastPipelineOptions | None = None,
        search_options: SearchOptions | None = None,
        curator: ArticleCurator | None = None,
    ) -> None:
        self.store = store
        self.topic = topic
        self.generator = generator
        self.search = search
        self.channel = channel
        self.options = options or FastPipelineOptions()
        self.search_options = search_options or SearchOptions(
            max_per_query=topic.max_articles_per_source
        )
        self.curator = curator or ArticleCurator()
        self.analyzer = BatchAnalyzer(generator, topic)

    @property
    def run_id(self) -> str:
        return self.channel.run_id

    async def _enter_phase(self, phase: FastPhase, status: ProjectStatus, message: str) -> None:
        set_phase(phase.value)
        logger.info("Phase started", phase=phase.value)
        await self.channel.emit(Event.phase(phase.value, message))
        await self.store.set_status(status)

    async def run(self) -> FastRunResult:
        """Run every phase. Never raises; failures end in ``phase: error``."""
        result = FastRunResult(run_id=self.run_id, phase=FastPhase.COLLECTING)

        with log_context(run_id=self.run_id):
            try:
                result.articles_collected = await self._collect()
                await self._curate_if_needed()
                result.articles_analyzed = await self._analyze()
                result.report_id = await self._report()

                await self.channel.emit(
                    Event.stats(
                        articles_collected=result.articles_collected,
                        articles_analyzed=result.articles_analyzed,
                        report_generated=True,
                    )
                )
                await self.store.set_status(ProjectStatus.COMPLETE)
                result.phase = FastPhase.COMPLETE
                await self.channel.emit(Event.phase(FastPhase.COMPLETE.value, "Pipeline complete"))
                logger.info(
                    "Fast pipeline complete",
                    collected=result.articles_collected,
                    analyzed=result.articles_analyzed,
                    report_id=result.report_id,
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.exception("Fast pipeline failed", error=message)
                result.phase = FastPhase.ERROR
                result.error = message
                await self._mark_error()
                await self.channel.emit(Event.error(message))
                await self.channel.emit(
                    Event.phase(FastPhase.ERROR.value, f"Pipeline error: {message}")
                )

        return result

    async def _mark_error(self) -> None:
        try:
            await self.store.set_status(ProjectStatus.ERROR)
        except Exception as e:
            logger.error("Failed to persist error status", error=str(e))

    # ============== Collecting ==============

    async def _collect(self) -> int:
        await self._enter_phase(FastPhase.COLLECTING, ProjectStatus.COLLECTING, "Collecting news")

        existing = await self.store.get_articles()
        seen = {normalize_url(a.url) for a in existing}

        async def on_source(source: str, count: int) -> None:
            await self.channel.emit(Event.source_search(source, count))

        results = await self.search.search(
            list(self.topic.search_queries), self.search_options, on_source=on_source
        )

        new_articles: list[Article] = []
        for item in results:
            key = normalize_url(item.url)
            if key in seen:
                continue
            matched, score = match_keywords(item.title, item.body, self.topic)
            if not is_relevant(score, self.topic.min_relevance_score):
                continue
            new_articles.append(Article.create(item, matched, score))
            seen.add(key)

        all_articles = existing + new_articles
        await self.store.save_articles(all_articles)
        await self.channel.emit(Event.collection_progress(len(results), len(new_articles)))
        logger.info(
            "Collection complete",
            results=len(results),
            new=len(new_articles),
            total=len(all_articles),
        )
        return len(all_articles)

    async def _curate_if_needed(self) -> None:
        articles = await self.store.get_articles()
        if len(articles) < self.options.curation_threshold:
            return

        curated = self.curator.curate(articles, self.topic.max_articles_for_analysis)
        await self.store.save_articles(curated.selected)
        await self.channel.emit(
            Event.curation_progress(
                curated.total_before, curated.total_after, curated.clusters_found
            )
        )

    # ============== Analyzing ==============

    async def _analyze(self) -> int:
        await self._enter_phase(
            FastPhase.ANALYZING, ProjectStatus.ANALYZING, "Analyzing articles"
        )

        excluded = await self.store.get_excluded_ids()
        articles = [a for a in await self.store.get_articles() if a.id not in excluded]
        existing = await self.store.get_analyzed()
        analyzed_ids = {a.id for a in existing}
        pending = [a for a in articles if a.id not in analyzed_ids]

        if not pending:
            await self.channel.emit(Event.analysis_progress(0, 0))
            logger.info("No new articles to analyze")
            return len(existing)

        batches = chunk(pending, self.options.batch_size)
        limiter = ConcurrencyLimiter(self.options.analysis_concurrency)
        done: list[AnalyzedArticle] = []

        async def analyze_batch(index: int, batch: Sequence[Article]) -> None:
            await self.channel.emit(Event.analysis_batch(index, len(batches), "categorizing"))
            categories = await self.analyzer.categorize(batch)
            await self.channel.emit(Event.analysis_batch(index, len(batches), "summarizing"))
            summaries = await self.analyzer.summarize(batch)

            done.extend(self.analyzer.combine(batch, categories, summaries))
            await self.store.save_analyzed(existing + done)
            await self.channel.emit(Event.analysis_progress(len(done), len(pending)))

        tasks = [
            asyncio.create_task(limiter.run(lambda i=i, b=b: analyze_batch(i, b)))
            for i, b in enumerate(batches)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        await self.store.save_analyzed(existing + done)
        return len(existing) + len(done)

    # ============== Reporting ==============

    async def _report(self) -> str:
        await self._enter_phase(
            FastPhase.REPORTING, ProjectStatus.REPORTING, "Generating report"
        )

        excluded = await self.store.get_excluded_ids()
        analyzed = [a for a in await self.store.get_analyzed() if a.id not in excluded]
        start_date, end_date = report_window(days=self.options.report_window_days)
        articles = filter_by_window(analyzed, start_date, end_date)

        await self.channel.emit(
            Event.report_progress(f"Building report from {len(articles)} articles")
        )

        categories = self.analyzer.categories
        markdown = build_digest(
            articles, start_date, end_date, categories, self.topic.report_title
        )
        meta = build_digest_meta(articles, start_date, end_date, self.topic.report_title)
        await self.store.save_report(meta.id, markdown)

        index = await self.store.get_report_index()
        await self.store.save_report_index(upsert_report(index, meta))

        await self.channel.emit(Event.report_progress("Report saved"))
        logger.info("Report saved", report_id=meta.id, articles=len(articles))
        return meta.id
