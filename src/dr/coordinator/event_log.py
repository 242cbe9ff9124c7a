"""
Durable event log.

An EventSink that appends every stamped event to a JSONL file and indexes it
in SQLite by (run_id, seq), so an observer that reconnects mid-run can replay
what it missed.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import orjson

from dr.events import Event, EventType
from dr.logging import get_logger

logger = get_logger(__name__)


class EventLog:
    """Append-only log of pipeline events.

    - Full event JSON in events.jsonl
    - (run_id, seq, type, ts, offset) in events.db for replay queries
    """

    def __init__(self, output_dir: str | Path) -> None:
        """Initialize event log.

        Args:
            output_dir: Directory holding events.jsonl and events.db.
        """
        self.output_dir = Path(output_dir)
        self.jsonl_path = self.output_dir / "events.jsonl"
        self.db_path = self.output_dir / "events.db"
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Create files and tables."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS events (
                run_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                type TEXT NOT NULL,
                ts TEXT NOT NULL,
                jsonl_offset INTEGER NOT NULL,
                PRIMARY KEY (run_id, seq)
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_type ON events(type)")
        await self._db.commit()

        logger.info("Event log initialized", output_dir=str(self.output_dir))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("EventLog not initialized. Call init() first.")
        return self._db

    async def emit(self, event: Event) -> None:
        """Append a stamped event. Events without a run ID are rejected."""
        db = self._conn()
        if not event.run_id:
            raise ValueError("EventLog only accepts events stamped by an EventChannel")

        line = orjson.dumps(event.to_dict()) + b"\n"
        offset = self.jsonl_path.stat().st_size if self.jsonl_path.exists() else 0
        with open(self.jsonl_path, "ab") as f:
            f.write(line)

        await db.execute(
            "INSERT OR REPLACE INTO events (run_id, seq, type, ts, jsonl_offset) "
            "VALUES (?, ?, ?, ?, ?)",
            (event.run_id, event.seq, event.type.value, event.timestamp.isoformat(), offset),
        )
        await db.commit()

    async def replay(self, run_id: str, after_seq: int = 0) -> list[Event]:
        """Events of a run with ``seq > after_seq``, in order."""
        db = self._conn()
        async with db.execute(
            "SELECT jsonl_offset FROM events WHERE run_id = ? AND seq > ? ORDER BY seq ASC",
            (run_id, after_seq),
        ) as cursor:
            rows = await cursor.fetchall()

        events = []
        for row in rows:
            event = self._read_at_offset(row["jsonl_offset"])
            if event:
                events.append(event)
        return events

    async def last_seq(self, run_id: str) -> int:
        db = self._conn()
        async with db.execute(
            "SELECT MAX(seq) FROM events WHERE run_id = ?", (run_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return (row[0] or 0) if row else 0

    async def count_by_type(self, run_id: str) -> dict[EventType, int]:
        db = self._conn()
        async with db.execute(
            "SELECT type, COUNT(*) FROM events WHERE run_id = ? GROUP BY type", (run_id,)
        ) as cursor:
            rows = await cursor.fetchall()

        result: dict[EventType, int] = {}
        for row in rows:
            try:
                result[EventType(row[0])] = row[1]
            except ValueError:
                # Type from a newer version
                pass
        return result

    def _read_at_offset(self, offset: int) -> Event | None:
        try:
            with open(self.jsonl_path, "rb") as f:
                f.seek(offset)
                line = f.readline()
        except OSError as e:
            logger.warning("Failed to read event at offset", offset=offset, error=str(e))
            return None
        if not line:
            return None
        return Event.from_dict(orjson.loads(line))
