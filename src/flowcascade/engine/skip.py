"""Policies deciding whether a unit's work is already up to date."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from .endpoints import SinkMode, unwrap

if TYPE_CHECKING:
    from .unit import Unit

SkipPredicate = Callable[["Unit"], bool]


def oldest_sink_modified(unit: "Unit") -> Optional[int]:
    """Oldest sink modification time, or None if any sink must be rewritten."""
    sinks = unwrap(unit.sinks())
    if not sinks:
        return None
    oldest: Optional[int] = None
    for sink in sinks:
        if sink.mode is not SinkMode.KEEP:
            return None
        modified = sink.modified_time()
        if modified is None:
            return None
        oldest = modified if oldest is None else min(oldest, modified)
    return oldest


def are_sinks_stale(unit: "Unit") -> bool:
    """True when any source is newer than the oldest sink, or a sink is missing."""
    oldest = oldest_sink_modified(unit)
    if oldest is None:
        return True
    for source in unwrap(unit.sources()):
        modified = source.modified_time()
        if modified is None or modified > oldest:
            return True
    return False


class SkipIfSinkNotStale:
    """Skip a unit whose sinks are newer than all of its sources."""

    def __call__(self, unit: "Unit") -> bool:
        return not unit.is_stale()

    def __repr__(self) -> str:
        return "SkipIfSinkNotStale()"


class SkipIfSinkExists:
    """Skip a unit once every sink it writes exists, regardless of age."""

    def __call__(self, unit: "Unit") -> bool:
        sinks = unwrap(unit.sinks())
        if not sinks:
            return False
        return all(sink.mode is SinkMode.KEEP and sink.exists() for sink in sinks)

    def __repr__(self) -> str:
        return "SkipIfSinkExists()"


class NeverSkip:
    def __call__(self, unit: "Unit") -> bool:
        return False

    def __repr__(self) -> str:
        return "NeverSkip()"


__all__ = [
    "NeverSkip",
    "SkipIfSinkExists",
    "SkipIfSinkNotStale",
    "SkipPredicate",
    "are_sinks_stale",
    "oldest_sink_modified",
]
