"""Report builders for both pipelines."""

from dr.reports.compiler import (
    CONCLUSION_TITLE,
    EXECUTIVE_SUMMARY_TITLE,
    MergedDocument,
    PdfRenderer,
    ReportCompiler,
    build_deep_report_entry,
)
from dr.reports.digest import (
    REPORT_TYPE_DEEP,
    REPORT_TYPE_DIGEST,
    ReportMeta,
    build_digest,
    build_digest_meta,
    filter_by_window,
    report_window,
    upsert_report,
)

__all__ = [
    "CONCLUSION_TITLE",
    "EXECUTIVE_SUMMARY_TITLE",
    "MergedDocument",
    "PdfRenderer",
    "REPORT_TYPE_DEEP",
    "REPORT_TYPE_DIGEST",
    "ReportCompiler",
    "ReportMeta",
    "build_deep_report_entry",
    "build_digest",
    "build_digest_meta",
    "filter_by_window",
    "report_window",
    "upsert_report",
]
