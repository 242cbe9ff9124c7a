"""
Topic configuration for a research project.

A topic file (YAML or JSON) describes what to search for and how to judge
relevance. Unknown keys are ignored; missing required keys raise
ConfigurationError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson
import yaml

from dr.exceptions import ConfigurationError

REQUIRED_KEYS = ("report_title", "keywords", "search_queries")


@dataclass(frozen=True)
class Keywords:
    """Keyword lists used for relevance scoring."""

    primary: tuple[str, ...] = ()
    secondary: tuple[str, ...] = ()
    entities: tuple[str, ...] = ()


@dataclass(frozen=True)
class KeywordWeights:
    """Score added per matched keyword of each kind."""

    primary: float = 3.0
    secondary: float = 1.0
    entity: float = 2.0


@dataclass(frozen=True)
class Category:
    """A report category the analysis phase may assign."""

    id: str
    label: str
    description: str = ""


@dataclass(frozen=True)
class RssSource:
    """A fixed RSS feed collected by the fast pipeline."""

    name: str
    url: str
    category: str = ""


@dataclass(frozen=True)
class CollectionSources:
    """Which search providers are enabled."""

    google_news: bool = True
    rss: bool = True


@dataclass(frozen=True)
class TopicConfig:
    """Research topic configuration for one project."""

    project_id: str
    report_title: str
    keywords: Keywords
    search_queries: tuple[str, ...]
    domain_context: str = ""
    keyword_weights: KeywordWeights = field(default_factory=KeywordWeights)
    min_relevance_score: float = 2.0
    categories: tuple[Category, ...] = ()
    rss_sources: tuple[RssSource, ...] = ()
    keyword_blacklist: tuple[str, ...] = ()
    collection_sources: CollectionSources = field(default_factory=CollectionSources)
    max_articles_per_source: int = 20
    max_articles_for_analysis: int = 30

    @property
    def category_ids(self) -> set[str]:
        return {c.id for c in self.categories}

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_id: str | None = None) -> TopicConfig:
        """Create from a parsed topic file.

        Args:
            data: Parsed mapping.
            project_id: Project ID. Falls back to ``data["project_id"]``.

        Raises:
            ConfigurationError: If a required key is missing or malformed.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Topic configuration must be a mapping")

        missing = [key for key in REQUIRED_KEYS if not data.get(key)]
        pid = project_id or data.get("project_id")
        if not pid:
            missing.append("project_id")
        if missing:
            raise ConfigurationError(
                "Topic configuration is missing required keys",
                context={"missing": missing},
            )

        try:
            kw = data["keywords"]
            weights = data.get("keyword_weights", {})
            sources = data.get("collection_sources", {})
            return cls(
                project_id=str(pid),
                report_title=str(data["report_title"]),
                keywords=Keywords(
                    primary=tuple(kw.get("primary", ())),
                    secondary=tuple(kw.get("secondary", ())),
                    entities=tuple(kw.get("entities", ())),
                ),
                search_queries=tuple(data["search_queries"]),
                domain_context=data.get("domain_context", ""),
                keyword_weights=KeywordWeights(
                    primary=float(weights.get("primary", 3.0)),
                    secondary=float(weights.get("secondary", 1.0)),
                    entity=float(weights.get("entity", 2.0)),
                ),
                min_relevance_score=float(data.get("min_relevance_score", 2.0)),
                categories=tuple(
                    Category(id=c["id"], label=c.get("label", c["id"]),
                             description=c.get("description", ""))
                    for c in data.get("categories", ())
                ),
                rss_sources=tuple(
                    RssSource(name=s.get("name", s["url"]), url=s["url"],
                              category=s.get("category", ""))
                    for s in data.get("rss_sources", ())
                ),
                keyword_blacklist=tuple(data.get("keyword_blacklist", ())),
                collection_sources=CollectionSources(
                    google_news=bool(sources.get("google_news", True)),
                    rss=bool(sources.get("rss", True)),
                ),
                max_articles_per_source=int(data.get("max_articles_per_source", 20)),
                max_articles_for_analysis=int(data.get("max_articles_for_analysis", 30)),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Malformed topic configuration: {e}", context={"project_id": pid}
            ) from e

    @classmethod
    def load(cls, path: Path | str, project_id: str | None = None) -> TopicConfig:
        """Load a topic file. The project ID defaults to the file stem."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError("Topic file not found", context={"path": str(path)})

        raw = path.read_bytes()
        try:
            if path.suffix.lower() == ".json":
                data = orjson.loads(raw)
            else:
                data = yaml.safe_load(raw)
        except (orjson.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot parse topic file: {e}", context={"path": str(path)}
            ) from e

        if isinstance(data, dict) and not project_id and not data.get("project_id"):
            project_id = path.stem
        return cls.from_dict(data, project_id=project_id)
