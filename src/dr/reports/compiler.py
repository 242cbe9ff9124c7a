"""
Deep research report compiler.

Assembles the merged markdown document from persisted section bodies. The
compiler never sees in-memory research results: callers read every body back
from the store and pass it in, so a late failure cannot lose a saved section.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence, runtime_checkable

from dr.reports.digest import REPORT_TYPE_DEEP, ReportMeta
from dr.research.citations import dedupe_sources, format_sources
from dr.types import (
    CONCLUSION_ID,
    EXECUTIVE_SUMMARY_ID,
    PSEUDO_SECTION_IDS,
    DeepReportMeta,
    Outline,
    SectionResearchResult,
    SourceReference,
)

EXECUTIVE_SUMMARY_TITLE = "Executive Summary"
CONCLUSION_TITLE = "Conclusion and Outlook"
REFERENCES_HEADING = "## References"


@runtime_checkable
class PdfRenderer(Protocol):
    """Renders merged markdown to PDF bytes. Failures are not fatal to a run."""

    async def render(self, markdown: str, title: str) -> bytes:
        ...


@dataclass
class MergedDocument:
    """The compiled deep research report."""

    title: str
    markdown: str
    section_ids: list[str] = field(default_factory=list)
    sources: list[SourceReference] = field(default_factory=list)


class ReportCompiler:
    """Builds the merged document in outline order.

    Executive summary first, outline sections in declared order, conclusion
    last, then one deduplicated reference list. Sections without persisted
    content (failed or never finished) are left out.
    """

    def compile(
        self,
        meta: DeepReportMeta,
        contents: Mapping[str, str],
        sources: Sequence[SourceReference] = (),
    ) -> MergedDocument:
        """Compile persisted section bodies.

        Args:
            meta: Run record; its section list fixes the order.
            contents: Section id -> persisted markdown body.
            sources: Persisted sources of every included section, in order.

        Returns:
            MergedDocument with the markdown and the global source list.
        """
        parts = [f"# {meta.title}\n", f"> Generated: {meta.generated_at.isoformat()}\n"]
        included: list[str] = []

        summary = contents.get(EXECUTIVE_SUMMARY_ID)
        if summary:
            parts.append(f"## {EXECUTIVE_SUMMARY_TITLE}\n\n{summary.strip()}\n")
            included.append(EXECUTIVE_SUMMARY_ID)

        for section in meta.sections:
            if section.id in PSEUDO_SECTION_IDS:
                continue
            body = contents.get(section.id)
            if body:
                parts.append(f"## {section.title}\n\n{body.strip()}\n")
                included.append(section.id)

        conclusion = contents.get(CONCLUSION_ID)
        if conclusion:
            parts.append(f"## {CONCLUSION_TITLE}\n\n{conclusion.strip()}\n")
            included.append(CONCLUSION_ID)

        unique = dedupe_sources(sources)
        if unique:
            parts.append(format_sources(unique, REFERENCES_HEADING))

        return MergedDocument(
            title=meta.title,
            markdown="\n".join(parts),
            section_ids=included,
            sources=unique,
        )


def build_deep_report_entry(
    report_id: str,
    outline: Outline,
    results: Sequence[SectionResearchResult],
    generated_at: str,
) -> ReportMeta:
    """Report index entry for a finished deep research run."""
    return ReportMeta.from_dict(
        {
            "id": report_id,
            "title": outline.title,
            "start_date": generated_at,
            "end_date": generated_at,
            "generated_at": generated_at,
            "total_articles": sum(len(r.sources) for r in results),
            "category_breakdown": {r.section_id: len(r.sources) for r in results},
            "type": REPORT_TYPE_DEEP,
            "section_labels": {s.id: s.title for s in outline.sections},
        }
    )
