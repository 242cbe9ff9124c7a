"""
Fast pipeline digest report.

Provides:
- ReportMeta: one entry of a project's report index
- report_window / filter_by_window: the reporting date window
- build_digest: markdown digest grouped by category
- upsert_report: index update (replace on same id, newest first)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Sequence

from dr.topic import Category
from dr.types import AnalyzedArticle, utc_now

REPORT_TYPE_DIGEST = "digest"
REPORT_TYPE_DEEP = "deep-research"


@dataclass
class ReportMeta:
    """Index entry for a generated report."""

    id: str
    title: str
    start_date: str
    end_date: str
    generated_at: datetime
    total_articles: int
    category_breakdown: dict[str, int] = field(default_factory=dict)
    type: str = REPORT_TYPE_DIGEST
    section_labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "generated_at": self.generated_at.isoformat(),
            "total_articles": self.total_articles,
            "category_breakdown": dict(self.category_breakdown),
            "type": self.type,
        }
        if self.section_labels:
            data["section_labels"] = dict(self.section_labels)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReportMeta:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            start_date=data.get("start_date", ""),
            end_date=data.get("end_date", ""),
            generated_at=datetime.fromisoformat(data["generated_at"])
            if data.get("generated_at")
            else utc_now(),
            total_articles=int(data.get("total_articles", 0)),
            category_breakdown=dict(data.get("category_breakdown") or {}),
            type=data.get("type", REPORT_TYPE_DIGEST),
            section_labels=dict(data.get("section_labels") or {}),
        )


def report_window(now: datetime | None = None, days: int = 7) -> tuple[str, str]:
    """ISO start and end dates of the reporting window ending today."""
    now = now or utc_now()
    end = now.date()
    start = end - timedelta(days=days)
    return start.isoformat(), end.isoformat()


def _article_date(article: AnalyzedArticle) -> date:
    when = article.article.published_at or article.article.collected_at
    return when.date()


def filter_by_window(
    articles: Sequence[AnalyzedArticle], start_date: str, end_date: str
) -> list[AnalyzedArticle]:
    """Articles published inside the window, or all of them when none are."""
    start = date.fromisoformat(start_date)
    end = date.fromisoformat(end_date)
    in_range = [a for a in articles if start <= _article_date(a) <= end]
    return in_range if in_range else list(articles)


def category_breakdown(articles: Sequence[AnalyzedArticle]) -> dict[str, int]:
    # Counter keeps first-seen order, which is the section order of the digest
    return dict(Counter(a.category for a in articles))


def build_digest(
    articles: Sequence[AnalyzedArticle],
    start_date: str,
    end_date: str,
    categories: Sequence[Category],
    title: str,
) -> str:
    """Render the digest markdown.

    Args:
        articles: Analyzed articles in the window.
        start_date: Window start (ISO date).
        end_date: Window end (ISO date).
        categories: Topic categories, used for labels.
        title: Report title.

    Returns:
        Markdown with a summary block and one numbered section per category.
    """
    labels = {c.id: c.label for c in categories}
    breakdown = category_breakdown(articles)

    lines = [
        f"# {title}",
        "",
        f"## Period: {start_date} ~ {end_date}",
        "",
        "## Summary",
        "",
        f"- Articles: {len(articles)}",
        "- By category: "
        + ", ".join(f"{labels.get(cat, cat)} ({n})" for cat, n in breakdown.items()),
        "",
        "---",
        "",
    ]

    for number, category in enumerate(breakdown, start=1):
        lines.append(f"## {number}. {labels.get(category, category)}")
        lines.append("")
        for item in (a for a in articles if a.category == category):
            article = item.article
            when = _article_date(item).isoformat()
            lines.append(f"- [{article.title}]({article.url}) - {article.source_name} ({when})")
            if item.summary:
                lines.append(f"  > {item.summary}")
            lines.append("")

    return "\n".join(lines)


def build_digest_meta(
    articles: Sequence[AnalyzedArticle], start_date: str, end_date: str, title: str
) -> ReportMeta:
    """Index entry for a digest. The id is the window end date."""
    return ReportMeta(
        id=end_date,
        title=f"{title} ({start_date} ~ {end_date})",
        start_date=start_date,
        end_date=end_date,
        generated_at=utc_now(),
        total_articles=len(articles),
        category_breakdown=category_breakdown(articles),
    )


def upsert_report(index: Sequence[ReportMeta], entry: ReportMeta) -> list[ReportMeta]:
    """Replace the entry with the same id (or append), newest end date first."""
    updated = [entry if r.id == entry.id else r for r in index]
    if not any(r.id == entry.id for r in index):
        updated.append(entry)
    return sorted(updated, key=lambda r: r.end_date, reverse=True)
