"""
Core types for the research pipelines.

This module defines the fundamental data structures used throughout the system:
- Enums for pipeline phases, section statuses and project statuses
- Frozen dataclasses for immutable data (SearchResult, Article, OutlineSection)
- Mutable dataclasses for resumable run state (SectionMeta, DeepReportMeta)
- Helper functions for ID generation, timestamps and URL normalization
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from uuid6 import uuid7

# Tracking parameters dropped by normalize_url
_TRACKING_PARAMS = frozenset({"ref", "fbclid", "gclid"})

EXECUTIVE_SUMMARY_ID = "executive-summary"
CONCLUSION_ID = "conclusion"
PSEUDO_SECTION_IDS = (EXECUTIVE_SUMMARY_ID, CONCLUSION_ID)


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "fast", "deep")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def generate_report_id() -> str:
    """Generate a deep research report ID (``deep-`` + 12 hex chars)."""
    return f"deep-{uuid7().hex[-12:]}"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def normalize_url(url: str) -> str:
    """Normalize a URL for deduplication.

    Strips utm_* / ref / fbclid / gclid query parameters and the fragment.
    Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.startswith("utm_") and k not in _TRACKING_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def article_id_for(url: str) -> str:
    """Content-addressed article ID: first 12 hex chars of md5(normalized URL)."""
    return hashlib.md5(normalize_url(url).encode("utf-8")).hexdigest()[:12]


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class FastPhase(str, Enum):
    """Phases of the fast pipeline."""

    COLLECTING = "collecting"
    ANALYZING = "analyzing"
    REPORTING = "reporting"
    COMPLETE = "complete"
    ERROR = "error"


class DeepPhase(str, Enum):
    """Phases of the deep research pipeline."""

    OUTLINE = "outline"
    RESEARCHING = "researching"
    REVIEWING_ARTICLES = "reviewing_articles"
    COMPILING = "compiling"
    PDF = "pdf"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (DeepPhase.COMPLETE, DeepPhase.ERROR)


class SectionStatus(str, Enum):
    """Per-section progress within the researching phase."""

    PENDING = "pending"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    DEEPENING = "deepening"
    REFINING = "refining"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Position along the forward sequence (error ranks with complete)."""
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (SectionStatus.COMPLETE, SectionStatus.ERROR)

    def can_transition_to(self, new: SectionStatus) -> bool:
        """Whether moving from this status to ``new`` keeps the status monotonic."""
        if self.is_terminal:
            return False
        if new is SectionStatus.ERROR:
            return True
        return new.rank > self.rank


_STATUS_RANK = {
    SectionStatus.PENDING: 0,
    SectionStatus.SEARCHING: 1,
    SectionStatus.ANALYZING: 2,
    SectionStatus.DEEPENING: 3,
    SectionStatus.REFINING: 4,
    SectionStatus.COMPLETE: 5,
    SectionStatus.ERROR: 5,
}


class ProjectStatus(str, Enum):
    """Coarse status of a project, tracked across runs."""

    IDLE = "idle"
    COLLECTING = "collecting"
    ANALYZING = "analyzing"
    REPORTING = "reporting"
    RESEARCHING = "researching"
    COMPLETE = "complete"
    ERROR = "error"


class SourceKind(str, Enum):
    """Kind of search collaborator a result came from."""

    NEWS = "news"
    RSS = "rss"
    WEB = "web"


@dataclass(frozen=True)
class SearchResult:
    """Raw item returned by a search provider. Never persisted directly."""

    title: str
    url: str
    body: str = ""
    published_at: datetime | None = None
    source_name: str = ""
    source_kind: SourceKind = SourceKind.NEWS

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "body": self.body,
            "published_at": _dt(self.published_at),
            "source_name": self.source_name,
            "source_kind": self.source_kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchResult:
        return cls(
            title=data.get("title", ""),
            url=data["url"],
            body=data.get("body", ""),
            published_at=_parse_dt(data.get("published_at")),
            source_name=data.get("source_name", ""),
            source_kind=SourceKind(data.get("source_kind", SourceKind.NEWS.value)),
        )


@dataclass(frozen=True)
class Article:
    """A search result promoted into project state after relevance filtering.

    The id is derived from the normalized URL, so the same URL always maps
    to the same article.
    """

    id: str
    title: str
    url: str
    body: str
    published_at: datetime | None
    source_name: str
    source_kind: SourceKind
    matched_keywords: tuple[str, ...] = ()
    relevance_score: float = 0.0
    collected_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        result: SearchResult,
        matched_keywords: list[str] | tuple[str, ...] = (),
        relevance_score: float = 0.0,
        collected_at: datetime | None = None,
    ) -> Article:
        """Factory method to promote a search result with a content-addressed ID."""
        return cls(
            id=article_id_for(result.url),
            title=result.title,
            url=result.url,
            body=result.body,
            published_at=result.published_at,
            source_name=result.source_name,
            source_kind=result.source_kind,
            matched_keywords=tuple(matched_keywords),
            relevance_score=relevance_score,
            collected_at=collected_at or utc_now(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "body": self.body,
            "published_at": _dt(self.published_at),
            "source_name": self.source_name,
            "source_kind": self.source_kind.value,
            "matched_keywords": list(self.matched_keywords),
            "relevance_score": self.relevance_score,
            "collected_at": _dt(self.collected_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Article:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            url=data["url"],
            body=data.get("body", ""),
            published_at=_parse_dt(data.get("published_at")),
            source_name=data.get("source_name", ""),
            source_kind=SourceKind(data.get("source_kind", SourceKind.NEWS.value)),
            matched_keywords=tuple(data.get("matched_keywords", ())),
            relevance_score=float(data.get("relevance_score", 0.0)),
            collected_at=_parse_dt(data.get("collected_at")) or utc_now(),
        )


@dataclass(frozen=True)
class AnalyzedArticle:
    """An article plus the category and summary assigned by the analysis phase."""

    article: Article
    category: str
    summary: str
    analyzed_at: datetime = field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return self.article.id

    def to_dict(self) -> dict[str, Any]:
        data = self.article.to_dict()
        data.update(
            category=self.category,
            summary=self.summary,
            analyzed_at=_dt(self.analyzed_at),
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalyzedArticle:
        return cls(
            article=Article.from_dict(data),
            category=data.get("category", "other"),
            summary=data.get("summary", ""),
            analyzed_at=_parse_dt(data.get("analyzed_at")) or utc_now(),
        )


@dataclass(frozen=True)
class OutlineSection:
    """One unit of deep research work. Frozen once research starts."""

    id: str
    title: str
    description: str = ""
    search_queries: tuple[str, ...] = ()
    key_points: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "search_queries": list(self.search_queries),
            "key_points": list(self.key_points),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutlineSection:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            search_queries=tuple(data.get("search_queries", ())),
            key_points=tuple(data.get("key_points", ())),
        )


@dataclass(frozen=True)
class Outline:
    """Ordered list of sections plus report-level guidance."""

    title: str
    sections: tuple[OutlineSection, ...]
    executive_summary_guidance: str = ""

    def section(self, section_id: str) -> OutlineSection | None:
        return next((s for s in self.sections if s.id == section_id), None)

    def with_section(self, new_section: OutlineSection) -> Outline:
        """Return a copy with the section of the same id replaced."""
        sections = tuple(
            new_section if s.id == new_section.id else s for s in self.sections
        )
        return replace(self, sections=sections)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "sections": [s.to_dict() for s in self.sections],
            "executive_summary_guidance": self.executive_summary_guidance,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Outline:
        return cls(
            title=data.get("title", ""),
            sections=tuple(OutlineSection.from_dict(s) for s in data.get("sections", ())),
            executive_summary_guidance=data.get("executive_summary_guidance", ""),
        )


@dataclass(frozen=True)
class SourceReference:
    """A deduplicated citation attached to a section or to the whole report."""

    title: str
    url: str
    source_name: str = ""
    published_at: datetime | None = None

    @classmethod
    def from_article(cls, article: Article | SearchResult) -> SourceReference:
        return cls(
            title=article.title,
            url=article.url,
            source_name=article.source_name,
            published_at=article.published_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source_name": self.source_name,
            "published_at": _dt(self.published_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceReference:
        return cls(
            title=data.get("title", ""),
            url=data["url"],
            source_name=data.get("source_name", ""),
            published_at=_parse_dt(data.get("published_at")),
        )


@dataclass(frozen=True)
class SectionResearchResult:
    """Terminal output of the section refinement state machine."""

    section_id: str
    title: str
    content: str
    sources: tuple[SourceReference, ...] = ()


@dataclass
class SectionMeta:
    """Per-section progress entry of a DeepReportMeta."""

    id: str
    title: str
    status: SectionStatus = SectionStatus.PENDING
    sources_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "sources_count": self.sources_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SectionMeta:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            status=SectionStatus(data.get("status", SectionStatus.PENDING.value)),
            sources_count=int(data.get("sources_count", 0)),
        )


@dataclass
class DeepReportMeta:
    """Resumable record of a deep research run.

    The single source of truth for what a run has done so far. Sections are
    ordered executive summary first, outline sections, conclusion last.
    """

    report_id: str
    title: str
    outline: Outline | None
    generated_at: datetime
    phase: DeepPhase
    sections: list[SectionMeta] = field(default_factory=list)
    total_sources: int = 0
    error: str | None = None

    @classmethod
    def create(cls, report_id: str, title: str = "") -> DeepReportMeta:
        """Factory method for a run that has not produced an outline yet."""
        return cls(
            report_id=report_id,
            title=title,
            outline=None,
            generated_at=utc_now(),
            phase=DeepPhase.OUTLINE,
        )

    def section(self, section_id: str) -> SectionMeta | None:
        return next((s for s in self.sections if s.id == section_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "title": self.title,
            "outline": self.outline.to_dict() if self.outline else None,
            "generated_at": _dt(self.generated_at),
            "phase": self.phase.value,
            "sections": [s.to_dict() for s in self.sections],
            "total_sources": self.total_sources,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeepReportMeta:
        outline = data.get("outline")
        return cls(
            report_id=data["report_id"],
            title=data.get("title", ""),
            outline=Outline.from_dict(outline) if outline else None,
            generated_at=_parse_dt(data.get("generated_at")) or utc_now(),
            phase=DeepPhase(data.get("phase", DeepPhase.OUTLINE.value)),
            sections=[SectionMeta.from_dict(s) for s in data.get("sections", ())],
            total_sources=int(data.get("total_sources", 0)),
            error=data.get("error"),
        )


# Per-section excluded URLs supplied by a human reviewer
ReviewDecisions = dict[str, list[str]]
