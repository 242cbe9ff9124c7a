"""
WorkspaceStore: SQLite-backed key/blob storage for project state.

Every durable artifact lives in one table keyed by (scope, key):
- scope is the project ID
- key names the artifact, e.g. ``articles`` or ``deep/<report_id>/meta``

A save is a single INSERT OR REPLACE, so it overwrites atomically per key.
ProjectStore layers typed, orjson-encoded accessors on top.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import aiosqlite
import orjson

from dr.exceptions import StorageError
from dr.logging import get_logger
from dr.reports.digest import ReportMeta
from dr.types import (
    AnalyzedArticle,
    Article,
    DeepReportMeta,
    ProjectStatus,
    SourceReference,
    utc_now,
)

logger = get_logger(__name__)


class WorkspaceStore:
    """Async key/blob store on one SQLite file."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize WorkspaceStore.

        Args:
            db_path: Path to the workspace.db file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Open the database and create the schema. Safe to call twice."""
        if self._db is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                scope TEXT NOT NULL,
                key TEXT NOT NULL,
                content BLOB NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (scope, key)
            )
        """)
        await self._db.commit()
        logger.info("Workspace store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("WorkspaceStore not initialized. Call init() first.")
        return self._db

    async def get(self, scope: str, key: str) -> bytes | None:
        """Stored bytes, or None when the key is absent."""
        db = self._conn()
        async with db.execute(
            "SELECT content FROM blobs WHERE scope = ? AND key = ?", (scope, key)
        ) as cursor:
            row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def save(self, scope: str, key: str, data: bytes | str) -> None:
        """Overwrite one key.

        Raises:
            StorageError: The write failed.
        """
        db = self._conn()
        payload = data.encode("utf-8") if isinstance(data, str) else data
        try:
            async with self._lock:
                await db.execute(
                    "INSERT OR REPLACE INTO blobs (scope, key, content, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (scope, key, payload, utc_now().isoformat()),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to save {key}", context={"scope": scope, "error": str(e)}
            ) from e
        logger.debug("Saved blob", scope=scope, key=key, size=len(payload))

    async def list_keys(self, scope: str, prefix: str = "") -> list[str]:
        db = self._conn()
        # Escape LIKE wildcards in the prefix
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        async with db.execute(
            "SELECT key FROM blobs WHERE scope = ? AND key LIKE ? ESCAPE '\\' ORDER BY key",
            (scope, pattern),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def delete_scope(self, scope: str) -> int:
        """Delete every key of a scope. Returns the number deleted."""
        db = self._conn()
        async with self._lock:
            cursor = await db.execute("DELETE FROM blobs WHERE scope = ?", (scope,))
            await db.commit()
        return cursor.rowcount


class ProjectStore:
    """Typed accessors for one project's state.

    Keys:
        status, articles, analyzed, excluded, report_index, reports/<id>.md,
        deep/latest, deep/<report_id>/meta, deep/<report_id>/sections/<id>.md,
        deep/<report_id>/sources/<id>, deep/<report_id>/merged.md,
        deep/<report_id>/merged.pdf
    """

    def __init__(self, store: WorkspaceStore, project_id: str) -> None:
        self.store = store
        self.project_id = project_id

    async def _get_json(self, key: str) -> Any:
        raw = await self.store.get(self.project_id, key)
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise StorageError(
                f"Corrupt JSON at {key}", context={"project_id": self.project_id}
            ) from e

    async def _save_json(self, key: str, value: Any) -> None:
        await self.store.save(self.project_id, key, orjson.dumps(value))

    async def _get_text(self, key: str) -> str | None:
        raw = await self.store.get(self.project_id, key)
        return raw.decode("utf-8") if raw is not None else None

    # ============== Project ==============

    async def get_status(self) -> ProjectStatus:
        value = await self._get_json("status")
        return ProjectStatus(value) if value else ProjectStatus.IDLE

    async def set_status(self, status: ProjectStatus) -> None:
        await self._save_json("status", status.value)
        logger.debug("Project status set", project_id=self.project_id, status=status.value)

    async def get_articles(self) -> list[Article]:
        return [Article.from_dict(d) for d in await self._get_json("articles") or []]

    async def save_articles(self, articles: list[Article]) -> None:
        await self._save_json("articles", [a.to_dict() for a in articles])

    async def get_analyzed(self) -> list[AnalyzedArticle]:
        return [AnalyzedArticle.from_dict(d) for d in await self._get_json("analyzed") or []]

    async def save_analyzed(self, articles: list[AnalyzedArticle]) -> None:
        await self._save_json("analyzed", [a.to_dict() for a in articles])

    async def get_excluded_ids(self) -> set[str]:
        return set(await self._get_json("excluded") or [])

    async def save_excluded_ids(self, ids: set[str]) -> None:
        await self._save_json("excluded", sorted(ids))

    async def get_report_index(self) -> list[ReportMeta]:
        return [ReportMeta.from_dict(d) for d in await self._get_json("report_index") or []]

    async def save_report_index(self, index: list[ReportMeta]) -> None:
        await self._save_json("report_index", [r.to_dict() for r in index])

    async def get_report(self, report_id: str) -> str | None:
        return await self._get_text(f"reports/{report_id}.md")

    async def save_report(self, report_id: str, markdown: str) -> None:
        await self.store.save(self.project_id, f"reports/{report_id}.md", markdown)

    # ============== Deep research runs ==============

    async def get_latest_deep_report_id(self) -> str | None:
        return await self._get_json("deep/latest")

    async def set_latest_deep_report_id(self, report_id: str) -> None:
        await self._save_json("deep/latest", report_id)

    async def get_deep_meta(self, report_id: str) -> DeepReportMeta | None:
        data = await self._get_json(f"deep/{report_id}/meta")
        return DeepReportMeta.from_dict(data) if data else None

    async def save_deep_meta(self, meta: DeepReportMeta) -> None:
        await self._save_json(f"deep/{meta.report_id}/meta", meta.to_dict())

    async def get_section_content(self, report_id: str, section_id: str) -> str | None:
        return await self._get_text(f"deep/{report_id}/sections/{section_id}.md")

    async def save_section_content(self, report_id: str, section_id: str, content: str) -> None:
        await self.store.save(
            self.project_id, f"deep/{report_id}/sections/{section_id}.md", content
        )

    async def get_section_sources(self, report_id: str, section_id: str) -> list[SourceReference]:
        data = await self._get_json(f"deep/{report_id}/sources/{section_id}")
        return [SourceReference.from_dict(d) for d in data or []]

    async def save_section_sources(
        self, report_id: str, section_id: str, sources: list[SourceReference] | tuple
    ) -> None:
        await self._save_json(
            f"deep/{report_id}/sources/{section_id}", [s.to_dict() for s in sources]
        )

    async def get_merged_markdown(self, report_id: str) -> str | None:
        return await self._get_text(f"deep/{report_id}/merged.md")

    async def save_merged_markdown(self, report_id: str, markdown: str) -> None:
        await self.store.save(self.project_id, f"deep/{report_id}/merged.md", markdown)

    async def get_merged_pdf(self, report_id: str) -> bytes | None:
        return await self.store.get(self.project_id, f"deep/{report_id}/merged.pdf")

    async def save_merged_pdf(self, report_id: str, pdf: bytes) -> None:
        await self.store.save(self.project_id, f"deep/{report_id}/merged.pdf", pdf)

    async def list_deep_report_ids(self) -> list[str]:
        keys = await self.store.list_keys(self.project_id, "deep/")
        return sorted({k.split("/")[1] for k in keys if k.endswith("/meta")})
