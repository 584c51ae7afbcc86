"""Per-run scheduling wrapper around a single unit."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, List, Optional, Sequence

from .errors import UnitError
from .unit import Unit

if TYPE_CHECKING:
    from .cascade import Cascade


class CascadeJob:
    """Runs one unit once its predecessors have succeeded.

    ``execute`` is what the spawn strategy runs. Its completion signal is set
    exactly once whatever happens, so jobs waiting on this one never hang.
    """

    def __init__(self, unit: Unit, cascade: "Cascade") -> None:
        self.unit = unit
        self._cascade = cascade
        self._predecessors: List["CascadeJob"] = []
        self._done = threading.Event()
        self.stopped = False
        self.failed = False

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def predecessors(self) -> List["CascadeJob"]:
        return list(self._predecessors)

    def init(self, predecessors: Sequence["CascadeJob"]) -> None:
        self._predecessors = list(predecessors)

    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def execute(self) -> Optional[BaseException]:
        logger = self._cascade.logger
        try:
            for predecessor in self._predecessors:
                if not predecessor.succeeded():
                    return None

            if self.stopped or self._cascade.is_finished():
                return None

            logger.log_unit_start(self.name)
            try:
                skip = self._cascade.should_skip(self.unit)
            except BaseException as exc:
                logger.log_unit_end(self.unit.stats)
                return self._fail(exc)

            if skip:
                logger.log_unit_skip(self.name)
                self.unit.mark_skipped()
                logger.log_unit_end(self.unit.stats)
                return None

            failure: Optional[BaseException] = None
            try:
                self.unit.prepare()
                self.unit.complete()
            except BaseException as exc:
                failure = exc
            finally:
                try:
                    self.unit.cleanup()
                except BaseException as exc:
                    if failure is None:
                        failure = exc
                    else:
                        logger.warning(self.name, "cleanup failed after unit failure", exc)

            if failure is not None:
                error = self._fail(failure)
                logger.log_unit_end(self.unit.stats)
                return error
            logger.log_unit_end(self.unit.stats)
        except BaseException as exc:
            self.failed = True
            return exc
        finally:
            self._done.set()
        return None

    def _fail(self, exc: BaseException) -> UnitError:
        self._cascade.logger.log_unit_failed(self.name, exc)
        self.failed = True
        # complete() may already have recorded success before cleanup raised
        if not self.unit.stats.mark_failed(exc):
            self.unit.stats.force_failed(exc)
        error = UnitError(self.name, f"unit failed: {self.name}")
        error.__cause__ = exc
        return error

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._cascade.logger.log_unit_stop(self.name)
        self.unit.stop()

    def succeeded(self) -> bool:
        """Block until this job resolves; True only if it ran or skipped cleanly."""
        self._done.wait()
        return self.unit is not None and not self.failed and not self.stopped

    def __repr__(self) -> str:
        return f"CascadeJob({self.name!r})"


__all__ = ["CascadeJob"]
