"""Source list helpers shared by section research and report compilation."""

from __future__ import annotations

from typing import Iterable, Sequence

from dr.types import SourceReference, normalize_url


def dedupe_sources(sources: Iterable[SourceReference]) -> list[SourceReference]:
    """First occurrence per normalized URL, in input order."""
    seen: set[str] = set()
    unique: list[SourceReference] = []
    for source in sources:
        key = normalize_url(source.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(source)
    return unique


def format_source(source: SourceReference, number: int) -> str:
    date = source.published_at.date().isoformat() if source.published_at else "n.d."
    outlet = source.source_name or "Unknown source"
    return f"{number}. [{source.title or source.url}]({source.url}) ({outlet}, {date})"


def format_sources(sources: Sequence[SourceReference], heading: str) -> str:
    """Numbered markdown source list under ``heading``. Empty input gives ''."""
    if not sources:
        return ""
    lines = [format_source(s, i + 1) for i, s in enumerate(sources)]
    return f"{heading}\n\n" + "\n".join(lines) + "\n"
