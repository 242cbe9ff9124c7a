"""
Pytest configuration and fixtures for research pipeline tests.
"""

from __future__ import annotations

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import patch

import orjson
import pytest

from dr.config import Settings, clear_settings_cache
from dr.events import Event
from dr.llm.base import Profile
from dr.retrieval.base import SearchOptions
from dr.topic import TopicConfig
from dr.types import Article, SearchResult, SourceKind
from dr.workspace.store import ProjectStore, WorkspaceStore

# Canned generation per task; a callable receives the prompt
Responder = str | Exception | Callable[[str], str]

OUTLINE_JSON = orjson.dumps(
    {
        "title": "AI Trading Outlook",
        "executive_summary_guidance": "Lead with the biggest shift.",
        "sections": [
            {
                "id": "alpha",
                "title": "Alpha Markets",
                "description": "Where volume moves",
                "search_queries": ["alpha markets"],
                "key_points": ["volume"],
            },
            {
                "id": "beta",
                "title": "Beta Regulation",
                "description": "Rules in flux",
                "search_queries": ["beta regulation"],
                "key_points": ["rules"],
            },
            {
                "id": "gamma",
                "title": "Gamma Players",
                "description": "Who leads",
                "search_queries": ["gamma players"],
                "key_points": ["leaders"],
            },
        ],
    }
).decode()

_ID_RE = re.compile(r"ID: (\w+)")


def _categorize_all(prompt: str) -> str:
    ids = _ID_RE.findall(prompt)
    return orjson.dumps([{"id": i, "category": "market"} for i in ids]).decode()


def _summarize_all(prompt: str) -> str:
    ids = _ID_RE.findall(prompt)
    return orjson.dumps([{"id": i, "summary": f"Summary of {i}"} for i in ids]).decode()


DEFAULT_RESPONSES: dict[str, Responder] = {
    "outline": OUTLINE_JSON,
    "relevance": '{"relevant": [1, 2, 3, 4, 5]}',
    "analysis": "### Findings\n\nDraft analysis [1].",
    "gaps": '{"gaps": [], "follow_up_queries": [], "assessment": "sufficient"}',
    "resynthesis": "### Findings\n\nResynthesized analysis [1][2].",
    "refine": "<critique>Too short.</critique>\n<rewrite>\n### Findings\n\nRefined analysis [1].\n</rewrite>",
    "categorize": _categorize_all,
    "summarize": _summarize_all,
    "executive_summary": "Executive summary body.",
    "conclusion": "Conclusion body.",
}


class FakeGenerator:
    """TextGenerator double answering by task name and recording every call."""

    def __init__(self, overrides: dict[str, Responder] | None = None) -> None:
        self.responses: dict[str, Responder] = {**DEFAULT_RESPONSES, **(overrides or {})}
        self.calls: list[tuple[str | None, Profile, str]] = []

    async def generate(self, prompt: str, profile: Profile, *, task: str | None = None) -> str:
        self.calls.append((task, profile, prompt))
        responder = self.responses.get(task or "", "")
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            return responder(prompt)
        return responder

    def tasks(self) -> list[str | None]:
        return [task for task, _, _ in self.calls]

    def profiles_for(self, task: str) -> set[Profile]:
        return {profile for t, profile, _ in self.calls if t == task}


class FakeSearch:
    """SearchProvider double returning canned results per query."""

    def __init__(
        self,
        by_query: dict[str, list[SearchResult]] | None = None,
        default: list[SearchResult] | None = None,
        name: str = "fake",
        error: Exception | None = None,
    ) -> None:
        self.by_query = by_query or {}
        self.default = default or []
        self._name = name
        self.error = error
        self.queries: list[list[str]] = []

    @property
    def name(self) -> str:
        return self._name

    async def search(self, queries: list[str], options: SearchOptions) -> list[SearchResult]:
        self.queries.append(list(queries))
        if self.error is not None:
            raise self.error
        results: list[SearchResult] = []
        for query in queries:
            results.extend(self.by_query.get(query, self.default))
        return results


class CollectingSink:
    """EventSink that keeps every delivered event."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def emit(self, event: Event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def phases(self) -> list[str]:
        return [e.data["phase"] for e in self.events if e.type.value == "phase"]

    def of_type(self, event_type: str) -> list[Event]:
        return [e for e in self.events if e.type.value == event_type]


def make_result(
    n: int,
    title: str | None = None,
    body: str | None = None,
    source_name: str = "Reuters",
    published_at: datetime | None = None,
) -> SearchResult:
    """Search result with a unique URL per ``n``."""
    return SearchResult(
        title=title or f"AI trading story {n}",
        url=f"https://news.example.com/story/{n}",
        body=body if body is not None else f"AI trading body text number {n}",
        published_at=published_at or datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc),
        source_name=source_name,
        source_kind=SourceKind.NEWS,
    )


def make_article(n: int, **kwargs: Any) -> Article:
    relevance = kwargs.pop("relevance_score", 3.0)
    collected_at = kwargs.pop("collected_at", None)
    return Article.create(
        make_result(n, **kwargs), ("AI",), relevance, collected_at=collected_at
    )


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "ANTHROPIC_API_KEY": "sk-ant-REDACTED",
        "DRY_RUN": "false",
        "DATA_DIR": str(temp_dir / "data"),
        "REVIEW_TIMEOUT_SECONDS": "0",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from dr.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def topic() -> TopicConfig:
    """Topic with keyword gating that every ``make_result`` item passes."""
    return TopicConfig.from_dict(
        {
            "report_title": "AI Trading Weekly",
            "keywords": {"primary": ["AI"], "secondary": ["trading"], "entities": ["Nasdaq"]},
            "search_queries": ["AI trading", "algorithmic trading"],
            "domain_context": "Capital markets",
            "min_relevance_score": 3.0,
            "categories": [
                {"id": "market", "label": "Market"},
                {"id": "policy", "label": "Policy"},
            ],
        },
        project_id="ai-trading",
    )


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
async def workspace(temp_dir: Path) -> WorkspaceStore:
    """Initialized workspace database in the temp directory."""
    store = WorkspaceStore(temp_dir / "workspace.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def project_store(workspace: WorkspaceStore) -> ProjectStore:
    return ProjectStore(workspace, "ai-trading")
