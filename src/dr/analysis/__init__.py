"""Batch analysis (categorize + summarize) used by the fast pipeline."""

from dr.analysis.batch import DEFAULT_CATEGORIES, FALLBACK_CATEGORY, BatchAnalyzer, chunk

__all__ = ["BatchAnalyzer", "DEFAULT_CATEGORIES", "FALLBACK_CATEGORY", "chunk"]
