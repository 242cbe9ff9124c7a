"""
Progress events emitted by the pipelines.

Provides:
- EventType and the Event record (one discriminated record type)
- Named constructors for every event a pipeline emits
- EventSink protocol and small sink adapters
- EventChannel: per-run sequencing and sink failure isolation

Every event carries the run ID and a per-run sequence number assigned by the
EventChannel, so an observer can order and resume a stream.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from dr.logging import get_logger
from dr.types import Outline, utc_now

logger = get_logger(__name__)


class EventType(str, Enum):
    """Discriminator of an event record."""

    # Shared
    PHASE = "phase"
    ERROR = "error"

    # Deep research
    OUTLINE = "outline"
    SECTION_STATUS = "section_status"
    SECTION_SAVED = "section_saved"
    ARTICLES_READY = "articles_ready"
    REPORT_COMPLETE = "report_complete"

    # Fast pipeline
    SOURCE_SEARCH = "source_search"
    COLLECTION_PROGRESS = "collection_progress"
    CURATION_PROGRESS = "curation_progress"
    ANALYSIS_BATCH = "analysis_batch"
    ANALYSIS_PROGRESS = "analysis_progress"
    REPORT_PROGRESS = "report_progress"
    STATS = "stats"


@dataclass(frozen=True)
class Event:
    """Immutable progress event.

    ``run_id`` and ``seq`` are left empty by the constructors and stamped by
    the EventChannel at delivery time.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    run_id: str = ""
    seq: int = 0
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def message(self) -> str:
        return str(self.data.get("message", ""))

    @property
    def is_terminal(self) -> bool:
        """True for ``phase: complete`` and ``phase: error``."""
        return self.type is EventType.PHASE and self.data.get("phase") in ("complete", "error")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        payload = dict(data)
        event_type = EventType(payload.pop("type"))
        run_id = payload.pop("run_id", "")
        seq = int(payload.pop("seq", 0))
        ts = payload.pop("timestamp", None)
        return cls(
            type=event_type,
            data=payload,
            run_id=run_id,
            seq=seq,
            timestamp=datetime.fromisoformat(ts) if ts else utc_now(),
        )

    # ============== Constructors ==============

    @classmethod
    def phase(cls, phase: str, message: str = "") -> Event:
        return cls(EventType.PHASE, {"phase": str(getattr(phase, "value", phase)), "message": message})

    @classmethod
    def error(cls, message: str) -> Event:
        return cls(EventType.ERROR, {"message": message})

    @classmethod
    def outline(cls, outline: Outline) -> Event:
        return cls(EventType.OUTLINE, {"outline": outline.to_dict()})

    @classmethod
    def section_status(
        cls,
        section_id: str,
        status: str,
        message: str = "",
        sources_found: int | None = None,
    ) -> Event:
        data: dict[str, Any] = {
            "section_id": section_id,
            "status": str(getattr(status, "value", status)),
            "message": message,
        }
        if sources_found is not None:
            data["sources_found"] = sources_found
        return cls(EventType.SECTION_STATUS, data)

    @classmethod
    def section_saved(cls, section_id: str, title: str) -> Event:
        return cls(EventType.SECTION_SAVED, {"section_id": section_id, "title": title})

    @classmethod
    def articles_ready(cls, sections: dict[str, list[dict[str, Any]]]) -> Event:
        """Candidates per section, awaiting human review."""
        return cls(EventType.ARTICLES_READY, {"sections": sections})

    @classmethod
    def report_complete(cls, report_id: str) -> Event:
        return cls(EventType.REPORT_COMPLETE, {"report_id": report_id})

    @classmethod
    def source_search(cls, source: str, count: int) -> Event:
        return cls(
            EventType.SOURCE_SEARCH,
            {"source": source, "count": count, "message": f"{source}: {count} results"},
        )

    @classmethod
    def collection_progress(cls, total: int, relevant: int) -> Event:
        return cls(
            EventType.COLLECTION_PROGRESS,
            {
                "total": total,
                "relevant": relevant,
                "message": f"Collected {total} results, {relevant} new relevant",
            },
        )

    @classmethod
    def curation_progress(cls, before: int, after: int, clusters: int) -> Event:
        return cls(
            EventType.CURATION_PROGRESS,
            {
                "before": before,
                "after": after,
                "clusters": clusters,
                "message": f"Curated {before} -> {after} articles ({clusters} clusters)",
            },
        )

    @classmethod
    def analysis_batch(cls, batch_index: int, total_batches: int, step: str) -> Event:
        return cls(
            EventType.ANALYSIS_BATCH,
            {
                "batch_index": batch_index,
                "total_batches": total_batches,
                "step": step,
                "message": f"Batch {batch_index + 1}/{total_batches}: {step}",
            },
        )

    @classmethod
    def analysis_progress(cls, analyzed: int, total: int) -> Event:
        return cls(
            EventType.ANALYSIS_PROGRESS,
            {"analyzed": analyzed, "total": total, "message": f"Analyzed {analyzed}/{total}"},
        )

    @classmethod
    def report_progress(cls, message: str) -> Event:
        return cls(EventType.REPORT_PROGRESS, {"message": message})

    @classmethod
    def stats(
        cls, articles_collected: int, articles_analyzed: int, report_generated: bool
    ) -> Event:
        return cls(
            EventType.STATS,
            {
                "articles_collected": articles_collected,
                "articles_analyzed": articles_analyzed,
                "report_generated": report_generated,
            },
        )


@runtime_checkable
class EventSink(Protocol):
    """Receiver of progress events.

    May raise (a disconnected observer, for instance). The EventChannel
    isolates the pipeline from such failures.
    """

    async def emit(self, event: Event) -> None:
        """Deliver one event."""
        ...


class NullSink:
    """Sink that drops every event."""

    async def emit(self, event: Event) -> None:
        return None


class CallbackSink:
    """Adapts a plain callback (sync or async) to the EventSink protocol."""

    def __init__(self, callback: Callable[[Event], Awaitable[None] | None]) -> None:
        self._callback = callback

    async def emit(self, event: Event) -> None:
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result


class EventChannel:
    """Per-run ordered, failure-tolerant event delivery.

    Assigns ``seq`` and delivers to every sink while holding one lock, so the
    sequence numbers observed by each sink are strictly increasing even when
    several section tasks emit concurrently. A failing sink is logged and
    skipped; ``emit`` never raises.
    """

    def __init__(self, run_id: str, *sinks: EventSink) -> None:
        self.run_id = run_id
        self._sinks = [s for s in sinks if s is not None]
        self._seq = 0
        self._lock = asyncio.Lock()
        self._failed_sinks: set[int] = set()

    @property
    def last_seq(self) -> int:
        return self._seq

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    async def emit(self, event: Event) -> Event:
        """Stamp and deliver an event.

        Args:
            event: Event built by one of the Event constructors.

        Returns:
            The stamped event (with run_id and seq).
        """
        async with self._lock:
            self._seq += 1
            stamped = replace(event, run_id=self.run_id, seq=self._seq)
            for sink in self._sinks:
                try:
                    await sink.emit(stamped)
                except Exception as e:
                    # First failure per sink is a warning, the rest are noise
                    if id(sink) not in self._failed_sinks:
                        self._failed_sinks.add(id(sink))
                        logger.warning(
                            "Event sink failed, run continues",
                            sink=type(sink).__name__,
                            event_type=stamped.type.value,
                            error=str(e),
                        )
                    else:
                        logger.debug(
                            "Event sink failed",
                            sink=type(sink).__name__,
                            event_type=stamped.type.value,
                        )
        return stamped
