"""Units: independently runnable processing jobs with declared endpoints."""

from __future__ import annotations

import abc
import threading
from typing import TYPE_CHECKING, Iterable, List, Optional

from .endpoints import Endpoint, EndpointLike, SinkMode, as_endpoints, unwrap
from .errors import ConfigurationError
from .models import UnitStats
from .skip import SkipIfSinkNotStale, SkipPredicate, are_sinks_stale

if TYPE_CHECKING:
    from .cascade import Cascade


class UnitListener:
    """Receives notifications for a single unit."""

    def on_starting(self, unit: "Unit") -> None:
        pass

    def on_stopping(self, unit: "Unit") -> None:
        pass

    def on_completed(self, unit: "Unit") -> None:
        pass

    def on_throwable(self, unit: "Unit", throwable: BaseException) -> bool:
        return False


def _identifiers(endpoints: Iterable[Endpoint]) -> List[str]:
    seen: dict[str, None] = {}
    for endpoint in unwrap(endpoints):
        seen.setdefault(endpoint.identifier, None)
    return list(seen)


class Unit(abc.ABC):
    """Base class for everything a Cascade can schedule.

    Subclasses implement :meth:`execute`. The Cascade drives the run contract
    ``prepare() -> complete() -> cleanup()`` and may call ``stop()`` from
    another thread at any time.
    """

    def __init__(
        self,
        name: str,
        sources: Iterable[EndpointLike] | EndpointLike | None = None,
        sinks: Iterable[EndpointLike] | EndpointLike | None = None,
        checkpoints: Iterable[EndpointLike] | EndpointLike | None = None,
        *,
        runs_locally: bool = False,
        stop_on_exit: bool = False,
        skip_strategy: Optional[SkipPredicate] = None,
        stale: Optional[SkipPredicate] = None,
    ) -> None:
        if not name:
            raise ConfigurationError("Unit name must be a non-empty string")
        self.name = str(name)
        self._sources = as_endpoints(sources)
        self._sinks = as_endpoints(sinks)
        self._checkpoints = as_endpoints(checkpoints)
        self.runs_locally = runs_locally
        self.stop_on_exit = stop_on_exit
        self.skip_strategy: SkipPredicate = skip_strategy or SkipIfSinkNotStale()
        self._stale = stale
        self.stats = UnitStats(self.name)
        self._listeners: List[UnitListener] = []
        self._stop_event = threading.Event()
        self._owner_lock = threading.Lock()
        self._cascade: Optional["Cascade"] = None

    # -- declared endpoints -------------------------------------------------

    def sources(self) -> tuple[Endpoint, ...]:
        return self._sources

    def sinks(self) -> tuple[Endpoint, ...]:
        return self._sinks

    def checkpoints(self) -> tuple[Endpoint, ...]:
        return self._checkpoints

    def source_identifiers(self) -> List[str]:
        return _identifiers(self.sources())

    def sink_identifiers(self) -> List[str]:
        """Identifiers written by this unit, checkpoints included."""
        return _identifiers((*self.sinks(), *self.checkpoints()))

    def checkpoint_identifiers(self) -> List[str]:
        return _identifiers(self.checkpoints())

    # -- ownership ----------------------------------------------------------

    @property
    def cascade(self) -> Optional["Cascade"]:
        return self._cascade

    def attach(self, cascade: "Cascade") -> None:
        with self._owner_lock:
            if self._cascade is not None and self._cascade is not cascade:
                raise ConfigurationError(
                    f"unit '{self.name}' already belongs to cascade '{self._cascade.name}'"
                )
            self._cascade = cascade

    # -- staleness ----------------------------------------------------------

    def is_stale(self) -> bool:
        if self._stale is not None:
            return bool(self._stale(self))
        return are_sinks_stale(self)

    def is_skip(self) -> bool:
        return bool(self.skip_strategy(self))

    # -- listeners ----------------------------------------------------------

    def add_listener(self, listener: UnitListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: UnitListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _fire(self, event: str) -> None:
        for listener in list(self._listeners):
            getattr(listener, event)(self)

    def _fire_throwable(self, throwable: BaseException) -> bool:
        handled = False
        for listener in list(self._listeners):
            handled = listener.on_throwable(self, throwable) or handled
        return handled

    # -- run contract -------------------------------------------------------

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        return self._stop_event.wait(timeout)

    def prepare(self) -> None:
        """Delete sinks and checkpoints opened in replace mode."""
        for endpoint in unwrap((*self.sinks(), *self.checkpoints())):
            if endpoint.mode is SinkMode.REPLACE:
                endpoint.delete()

    def complete(self) -> None:
        """Run to completion, blocking the calling thread."""
        if self.stop_requested:
            return
        self.stats.mark_running()
        self._fire("on_starting")
        try:
            self.execute()
        except Exception as exc:
            self.stats.mark_failed(exc)
            if not self._fire_throwable(exc):
                raise
        else:
            if not self.stop_requested:
                self.stats.mark_successful()
        finally:
            self._fire("on_completed")

    def cleanup(self) -> None:
        """Release per-run resources. Called even when ``complete()`` raised."""

    def stop(self) -> None:
        """Ask the unit to stop. Does not wait for it."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._fire("on_stopping")
        self.stats.mark_stopped()
        self.on_stop()

    def on_stop(self) -> None:
        """Hook for subclasses to interrupt work in progress."""

    def mark_skipped(self) -> None:
        self.stats.mark_skipped()
        self._fire("on_completed")

    @abc.abstractmethod
    def execute(self) -> None:
        """Perform the unit's work."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def __str__(self) -> str:
        return self.name


__all__ = ["Unit", "UnitListener"]
