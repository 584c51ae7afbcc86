"""The Cascade: runs a graph of units concurrently, in dependency order."""

from __future__ import annotations

import re
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Set

from ..version import __version__
from . import shutdown
from .config import CascadeConfig
from .endpoints import Endpoint
from .errors import CascadeError, ConfigurationError
from .graph import IdentifierGraph, UnitGraph
from .job import CascadeJob
from .listeners import CascadeListener, ListenerFailure, SafeListener, as_listener
from .logging import RunLogger
from .models import CascadeStats, Status
from .skip import SkipPredicate
from .spawn import SpawnStrategy, ThreadPoolSpawnStrategy
from .unit import Unit

_banner_lock = threading.Lock()
_banner_logged = False


def _log_banner(logger: RunLogger) -> None:
    global _banner_logged
    with _banner_lock:
        if _banner_logged:
            return
        _banner_logged = True
    logger.log_event({"type": "banner", "message": f"flowcascade {__version__}", "version": __version__})


class Cascade:
    """Owns a set of units and runs them as one logical job.

    ``start()`` returns immediately and runs the units on a background thread;
    ``complete()`` blocks until they finish and raises the first failure in
    dependency order. ``stop()`` may be called from any thread.
    """

    def __init__(
        self,
        name: str,
        identifier_graph: IdentifierGraph,
        unit_graph: UnitGraph,
        *,
        config: Optional[CascadeConfig] = None,
        tags: Optional[str] = None,
        max_concurrent_units: Optional[int] = None,
        spawn_strategy: Optional[SpawnStrategy] = None,
    ) -> None:
        self.name = name
        self.tags = tags
        self.config = config or CascadeConfig()
        self._identifier_graph = identifier_graph
        self._unit_graph = unit_graph
        self._max_concurrent_units = (
            self.config.max_concurrent_units if max_concurrent_units is None else max_concurrent_units
        )
        if self._max_concurrent_units < 0:
            raise ConfigurationError("max_concurrent_units must be zero (unbounded) or positive")

        for unit in unit_graph:
            if unit.cascade is not None and unit.cascade is not self:
                raise ConfigurationError(f"unit '{unit.name}' already belongs to cascade '{unit.cascade.name}'")

        self.config.ensure_directories()
        self.logger = RunLogger(self.config.run_log_path(name))
        self.stats = CascadeStats(name)
        self.stats.mark_pending()

        self._id: Optional[str] = None
        self._lock = threading.RLock()
        self._stop_lock = threading.RLock()
        self._shutdown_lock = threading.Lock()
        self._listeners: List[SafeListener] = []
        self._listener_failures: List[ListenerFailure] = []
        self._jobs: List[Optional[CascadeJob]] = [None] * len(unit_graph)
        self._thread: Optional[threading.Thread] = None
        self._throwable: Optional[BaseException] = None
        self._started = False
        self._stop = False
        self._skip_strategy: Optional[SkipPredicate] = None
        self._spawn_strategy: SpawnStrategy = spawn_strategy or ThreadPoolSpawnStrategy()
        self._exit_hook: Optional[shutdown.Hook] = None

        for unit in unit_graph:
            unit.attach(self)
            self.stats.add_unit_stats(unit.stats)

        for endpoint in self._all_endpoints():
            listener = as_listener(endpoint)
            if listener is not None:
                self.add_listener(listener)

    # -- identity -----------------------------------------------------------

    @property
    def id(self) -> str:
        if self._id is None:
            self._id = uuid.uuid4().hex.upper()
        return self._id

    @property
    def status(self) -> Status:
        return self.stats.status

    def is_finished(self) -> bool:
        return self.stats.is_finished()

    @property
    def max_concurrent_units(self) -> int:
        return self._max_concurrent_units

    # -- listeners ----------------------------------------------------------

    def add_listener(self, listener: CascadeListener) -> None:
        with self._lock:
            self._listeners.append(SafeListener(listener, self._handle_listener_failure))

    def remove_listener(self, listener: CascadeListener) -> bool:
        with self._lock:
            for index, safe in enumerate(self._listeners):
                if safe == listener:
                    del self._listeners[index]
                    return True
        return False

    def has_listeners(self) -> bool:
        with self._lock:
            return bool(self._listeners)

    @property
    def listener_failures(self) -> List[ListenerFailure]:
        with self._lock:
            return list(self._listener_failures)

    def _handle_listener_failure(self, failure: ListenerFailure) -> None:
        with self._lock:
            self._listener_failures.append(failure)
        self.logger.log_event(
            {"type": "listener_failed", "listener": repr(failure.listener), "event": failure.event}
        )
        self.logger.warning(self.name, f"cascade listener {failure.listener!r} raised in {failure.event}", failure.error)
        self.stop()

    def _fire(self, event: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            getattr(listener, event)(self)

    def _fire_throwable(self, throwable: BaseException) -> None:
        with self._lock:
            listeners = list(self._listeners)
        handled = False
        for listener in listeners:
            handled = listener.on_throwable(self, throwable) or handled
        if handled:
            self._throwable = None

    # -- strategies ---------------------------------------------------------

    @property
    def skip_strategy(self) -> Optional[SkipPredicate]:
        return self._skip_strategy

    def set_skip_strategy(self, strategy: Optional[SkipPredicate]) -> Optional[SkipPredicate]:
        """Override every unit's own skip policy; ``None`` restores them. Returns the previous one."""
        previous = self._skip_strategy
        self._skip_strategy = strategy
        return previous

    def should_skip(self, unit: Unit) -> bool:
        strategy = self._skip_strategy
        if strategy is None:
            return unit.is_skip()
        return bool(strategy(unit))

    @property
    def spawn_strategy(self) -> SpawnStrategy:
        return self._spawn_strategy

    @spawn_strategy.setter
    def spawn_strategy(self, strategy: SpawnStrategy) -> None:
        self._spawn_strategy = strategy

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Begin running in the background. Does nothing if already started."""
        with self._lock:
            if self._started:
                return
            self._started = True
            self._thread = threading.Thread(target=self._run, name=f"cascade {self.name}".strip(), daemon=True)
            self._thread.start()

    def complete(self) -> None:
        """Start if needed and block until every unit is done.

        Raises the first failure, in dependency order, that no listener handled.
        """
        self.start()
        try:
            thread = self._thread
            if thread is not None:
                try:
                    thread.join()
                except KeyboardInterrupt as exc:
                    raise CascadeError(f"interrupted while waiting for cascade '{self.name}'") from exc
            throwable = self._throwable
            if isinstance(throwable, CascadeError):
                raise throwable
            if throwable is not None:
                raise CascadeError("unhandled exception") from throwable
        finally:
            self._thread = None
            self._throwable = None
            self.stats.cleanup()

    def stop(self) -> None:
        """Stop every unit, tail units first. Only the first call has any effect."""
        with self._stop_lock:
            if self._stop:
                return
            self._stop = True
            with self._lock:
                never_started = not self._started
                self._started = True
            self._fire("on_stopping")
            if not self.stats.is_finished():
                self.stats.mark_stopped()
            self._stop_all_jobs()
            self._handle_executor_shutdown()
            self.stats.cleanup()
            if never_started:
                self.logger.close()

    @property
    def stop_requested(self) -> bool:
        return self._stop

    def _run(self) -> None:
        _log_banner(self.logger)
        self.logger.info(self.name, "starting")
        self._register_exit_hook()
        try:
            if self._stop:
                return
            self.stats.mark_running()
            self.logger.log_event({"type": "cascade_start", "cascade": self.name, "units": len(self._unit_graph)})
            self._fire("on_starting")
            if self._stop:
                return
            self._schedule()
        except BaseException as exc:
            self._throwable = exc
            self.stats.mark_failed(exc)
        finally:
            if not self.stats.is_finished():
                self.stats.mark_successful()
            if self._throwable is not None:
                self.stats.force_failed(self._throwable)
            try:
                self.logger.log_event({"type": "cascade_end", "cascade": self.name, "stats": self.stats.to_dict()})
                self._fire("on_completed")
            finally:
                self._deregister_exit_hook()
                self.logger.close()

    def _schedule(self) -> None:
        jobs = self._initialize_jobs()
        parallelism = self._parallelism(len(jobs))
        self.logger.info(self.name, f"parallel execution is enabled: {parallelism > 1}")
        self.logger.info(self.name, f"starting units: {len(jobs)}")
        self.logger.info(self.name, f"allocating threads: {parallelism}")

        futures = self._spawn_strategy.start(self, parallelism, [job.execute for job in jobs])
        try:
            for future in futures:
                failure = future.result()
                if failure is None:
                    continue
                self._throwable = failure
                self.stats.mark_failed(failure)
                if not self._stop:
                    self._stop_all_jobs()
                    self._fire_throwable(failure)
                break
        finally:
            self._handle_executor_shutdown()

    def _parallelism(self, job_count: int) -> int:
        if self._max_concurrent_units:
            return self._max_concurrent_units
        local_units = sum(1 for unit in self._unit_graph if unit.runs_locally)
        if local_units > 1:
            return 1
        return max(job_count, 1)

    def _initialize_jobs(self) -> List[CascadeJob]:
        with self._lock:
            jobs = [CascadeJob(unit, self) for unit in self._unit_graph]
            for ordinal, job in enumerate(jobs):
                job.init([jobs[index] for index in self._unit_graph.predecessor_ordinals(ordinal)])
            self._jobs = list(jobs)
        return jobs

    def jobs(self) -> List[CascadeJob]:
        """Jobs of the current or last run, in topological order."""
        with self._lock:
            return [job for job in self._jobs if job is not None]

    def _stop_all_jobs(self) -> None:
        self.logger.info(self.name, "stopping all units")
        with self._lock:
            for index in range(len(self._jobs) - 1, -1, -1):
                job = self._jobs[index]
                if job is not None:
                    job.stop()
        self.logger.info(self.name, "stopped all units")

    def _handle_executor_shutdown(self) -> None:
        # stop() and the run thread may both get here
        with self._shutdown_lock:
            if self._spawn_strategy.is_shutdown(self):
                return
            self.logger.info(self.name, "shutting down unit executor")
            try:
                self._spawn_strategy.shutdown(self, self.config.shutdown_timeout)
            except TimeoutError as exc:
                self.logger.warning(self.name, "unit executor did not shut down in time", exc)
            self.logger.log_event({"type": "executor_shutdown", "cascade": self.name})

    def _stop_units_on_exit(self) -> bool:
        return any(unit.stop_on_exit for unit in self._unit_graph)

    def _register_exit_hook(self) -> None:
        if not self._stop_units_on_exit():
            return
        self._exit_hook = self._stop_on_exit
        shutdown.add_hook(self._exit_hook, shutdown.Priority.WORK_PARENT)

    def _deregister_exit_hook(self) -> None:
        hook = self._exit_hook
        if hook is None:
            return
        shutdown.remove_hook(hook)
        self._exit_hook = None

    def _stop_on_exit(self) -> None:
        self.logger.info(self.name, "shutdown hook calling stop on cascade")
        self.stop()

    # -- queries ------------------------------------------------------------

    @property
    def unit_graph(self) -> UnitGraph:
        return self._unit_graph

    @property
    def identifier_graph(self) -> IdentifierGraph:
        return self._identifier_graph

    def units(self) -> List[Unit]:
        """Units in topological order."""
        return self._unit_graph.units()

    def get_unit(self, name: str) -> Unit:
        for unit in self._unit_graph:
            if unit.name == name:
                return unit
        raise KeyError(f"Unknown unit '{name}'")

    def find_units(self, pattern: str) -> List[Unit]:
        """Units whose whole name matches the regular expression ``pattern``."""
        regex = re.compile(pattern)
        return [unit for unit in self._unit_graph if regex.fullmatch(unit.name)]

    def head_units(self) -> List[Unit]:
        return self._unit_graph.heads()

    def tail_units(self) -> List[Unit]:
        return self._unit_graph.tails()

    def intermediate_units(self) -> List[Unit]:
        return self._unit_graph.intermediates()

    def predecessors(self, unit: Unit) -> List[Unit]:
        return self._unit_graph.predecessors(unit)

    def successors(self, unit: Unit) -> List[Unit]:
        return self._unit_graph.successors(unit)

    def all_identifiers(self) -> Set[str]:
        return set(self._identifier_graph.identifiers())

    def source_identifiers(self) -> Set[str]:
        """Identifiers read by some unit and written by none."""
        return self._identifier_graph.source_identifiers()

    def sink_identifiers(self) -> Set[str]:
        """Identifiers written by some unit and read by none, unused checkpoints included."""
        return self._identifier_graph.sink_identifiers()

    def checkpoint_identifiers(self) -> Set[str]:
        identifiers: Set[str] = set()
        for unit in self._unit_graph:
            identifiers.update(unit.checkpoint_identifiers())
        return identifiers

    def intermediate_identifiers(self) -> Set[str]:
        return self._identifier_graph.intermediate_identifiers()

    def find_units_sourcing_from(self, identifier: str) -> Set[Unit]:
        return set(self._identifier_graph.readers_of(identifier))

    def find_units_sinking_to(self, identifier: str) -> Set[Unit]:
        return set(self._identifier_graph.writers_of(identifier))

    def _all_endpoints(self) -> List[Endpoint]:
        seen: dict[Endpoint, None] = {}
        for unit in self._unit_graph:
            for endpoint in (*unit.sources(), *unit.sinks(), *unit.checkpoints()):
                seen.setdefault(endpoint, None)
                for leaf in endpoint.leaves():
                    seen.setdefault(leaf, None)
        return list(seen)

    # -- diagnostics --------------------------------------------------------

    def to_dot(self) -> str:
        return self._identifier_graph.to_dot()

    def write_dot(self, path: Path | str) -> Path:
        """Write the identifier graph as Graphviz DOT."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_dot(), encoding="utf8")
        return target

    def __repr__(self) -> str:
        return f"Cascade({self.name!r})"

    def __str__(self) -> str:
        return self.name


__all__ = ["Cascade"]
