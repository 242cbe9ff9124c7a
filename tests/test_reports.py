"""Tests for the digest report and the deep report compiler."""

from datetime import datetime, timezone

import pytest

from conftest import make_article
from dr.reports.compiler import (
    CONCLUSION_TITLE,
    EXECUTIVE_SUMMARY_TITLE,
    REFERENCES_HEADING,
    ReportCompiler,
    build_deep_report_entry,
)
from dr.reports.digest import (
    REPORT_TYPE_DEEP,
    ReportMeta,
    build_digest,
    build_digest_meta,
    filter_by_window,
    report_window,
    upsert_report,
)
from dr.research.citations import dedupe_sources, format_sources
from dr.topic import Category
from dr.types import (
    CONCLUSION_ID,
    EXECUTIVE_SUMMARY_ID,
    AnalyzedArticle,
    DeepReportMeta,
    Outline,
    OutlineSection,
    SectionMeta,
    SectionResearchResult,
    SourceReference,
)

CATEGORIES = (Category("market", "Market"), Category("policy", "Policy"))


def analyzed(n, category="market", summary="", published_at=None):
    article = make_article(n, published_at=published_at)
    return AnalyzedArticle(article=article, category=category, summary=summary)


def meta_entry(report_id, end_date):
    return ReportMeta(
        id=report_id,
        title="t",
        start_date=end_date,
        end_date=end_date,
        generated_at=datetime(2026, 10, 16, tzinfo=timezone.utc),
        total_articles=0,
    )


def source(n, name="Reuters"):
    return SourceReference(
        title=f"Story {n}",
        url=f"https://news.example.com/story/{n}",
        source_name=name,
        published_at=datetime(2026, 10, 14, tzinfo=timezone.utc),
    )


class TestReportWindow:
    """Tests for the reporting window."""

    def test_window_ends_today(self):
        now = datetime(2026, 10, 16, 23, 0, tzinfo=timezone.utc)

        assert report_window(now) == ("2026-10-09", "2026-10-16")
        assert report_window(now, days=1) == ("2026-10-15", "2026-10-16")

    def test_filter_keeps_in_range(self):
        inside = analyzed(1, published_at=datetime(2026, 10, 14, tzinfo=timezone.utc))
        outside = analyzed(2, published_at=datetime(2026, 9, 1, tzinfo=timezone.utc))

        assert filter_by_window([inside, outside], "2026-10-09", "2026-10-16") == [inside]

    def test_filter_falls_back_to_everything(self):
        old = [analyzed(1, published_at=datetime(2026, 9, 1, tzinfo=timezone.utc))]

        assert filter_by_window(old, "2026-10-09", "2026-10-16") == old


class TestDigest:
    """Tests for digest markdown and its index entry."""

    def test_groups_by_category_in_first_seen_order(self):
        articles = [
            analyzed(1, "policy", "Rules tighten."),
            analyzed(2, "market"),
            analyzed(3, "policy"),
        ]

        markdown = build_digest(articles, "2026-10-09", "2026-10-16", CATEGORIES, "AI Weekly")

        assert markdown.startswith("# AI Weekly\n\n## Period: 2026-10-09 ~ 2026-10-16")
        assert "- Articles: 3" in markdown
        assert "- By category: Policy (2), Market (1)" in markdown
        assert markdown.index("## 1. Policy") < markdown.index("## 2. Market")
        assert (
            "- [AI trading story 1](https://news.example.com/story/1) - Reuters (2026-10-14)\n"
            "  > Rules tighten."
        ) in markdown

    def test_unknown_category_uses_raw_id(self):
        markdown = build_digest([analyzed(1, "other")], "a", "b", CATEGORIES, "AI Weekly")

        assert "## 1. other" in markdown

    def test_meta_id_is_end_date(self):
        meta = build_digest_meta(
            [analyzed(1, "policy"), analyzed(2, "policy")], "2026-10-09", "2026-10-16", "AI Weekly"
        )

        assert meta.id == "2026-10-16"
        assert meta.title == "AI Weekly (2026-10-09 ~ 2026-10-16)"
        assert meta.total_articles == 2
        assert meta.category_breakdown == {"policy": 2}

    def test_upsert_replaces_and_sorts_newest_first(self):
        index = [meta_entry("2026-10-09", "2026-10-09"), meta_entry("2026-10-02", "2026-10-02")]
        replacement = meta_entry("2026-10-09", "2026-10-09")
        replacement.total_articles = 7

        updated = upsert_report(index, replacement)
        updated = upsert_report(updated, meta_entry("2026-10-16", "2026-10-16"))

        assert [r.id for r in updated] == ["2026-10-16", "2026-10-09", "2026-10-02"]
        assert updated[1].total_articles == 7

    def test_meta_dict_round_trip(self):
        entry = meta_entry("deep-1", "2026-10-16")
        entry.type = REPORT_TYPE_DEEP
        entry.section_labels = {"alpha": "Alpha"}

        assert ReportMeta.from_dict(entry.to_dict()) == entry


class TestCitations:
    """Tests for source list helpers."""

    def test_dedupe_ignores_tracking_params(self):
        tracked = SourceReference(title="dup", url=source(1).url + "?utm_medium=feed")

        assert dedupe_sources([source(1), tracked, source(2)]) == [source(1), source(2)]

    def test_format_numbers_and_fallbacks(self):
        bare = SourceReference(title="", url="https://x.example/")

        text = format_sources([source(1), bare], "### Sources")

        assert text.startswith("### Sources\n\n")
        assert "1. [Story 1](https://news.example.com/story/1) (Reuters, 2026-10-14)" in text
        assert "2. [https://x.example/](https://x.example/) (Unknown source, n.d.)" in text

    def test_empty_list_formats_to_nothing(self):
        assert format_sources([], "### Sources") == ""


class TestReportCompiler:
    """Tests for merged document assembly."""

    @pytest.fixture
    def meta(self):
        meta = DeepReportMeta.create("deep-1", "AI Trading Outlook")
        meta.sections = [
            SectionMeta(EXECUTIVE_SUMMARY_ID, EXECUTIVE_SUMMARY_TITLE),
            SectionMeta("alpha", "Alpha Markets"),
            SectionMeta("beta", "Beta Regulation"),
            SectionMeta("gamma", "Gamma Players"),
            SectionMeta(CONCLUSION_ID, CONCLUSION_TITLE),
        ]
        return meta

    def test_outline_order_and_references(self, meta):
        contents = {
            CONCLUSION_ID: "Closing.",
            "gamma": "Gamma body.",
            "alpha": "Alpha body.",
            EXECUTIVE_SUMMARY_ID: "Summary.",
        }

        doc = ReportCompiler().compile(meta, contents, [source(1), source(2), source(1)])

        md = doc.markdown
        assert md.startswith("# AI Trading Outlook\n")
        headings = [line for line in md.splitlines() if line.startswith("## ")]
        assert headings == [
            f"## {EXECUTIVE_SUMMARY_TITLE}",
            "## Alpha Markets",
            "## Gamma Players",
            f"## {CONCLUSION_TITLE}",
            REFERENCES_HEADING,
        ]
        assert doc.section_ids == [EXECUTIVE_SUMMARY_ID, "alpha", "gamma", CONCLUSION_ID]
        assert doc.sources == [source(1), source(2)]

    def test_sections_without_content_are_skipped(self, meta):
        doc = ReportCompiler().compile(meta, {"beta": "Only beta.", "alpha": ""})

        assert doc.section_ids == ["beta"]
        assert REFERENCES_HEADING not in doc.markdown

    def test_deep_index_entry(self):
        outline = Outline(
            title="AI Trading Outlook",
            sections=(OutlineSection("alpha", "Alpha"), OutlineSection("beta", "Beta")),
        )
        results = [
            SectionResearchResult("alpha", "Alpha", "body", (source(1), source(2))),
            SectionResearchResult("beta", "Beta", "body", ()),
        ]

        entry = build_deep_report_entry("deep-1", outline, results, "2026-10-16T00:00:00+00:00")

        assert entry.type == REPORT_TYPE_DEEP
        assert entry.total_articles == 2
        assert entry.category_breakdown == {"alpha": 2, "beta": 0}
        assert entry.section_labels == {"alpha": "Alpha", "beta": "Beta"}
