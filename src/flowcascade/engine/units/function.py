"""Units backed by a Python callable."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from ..endpoints import EndpointLike
from ..skip import SkipPredicate
from ..unit import Unit

UnitCallable = Callable[["FunctionUnit"], Any]


class FunctionUnit(Unit):
    """Runs ``func(unit)`` in the executing thread.

    Long-running functions should poll ``unit.stop_requested`` to honour stops.
    The return value is kept on ``result``.
    """

    def __init__(
        self,
        name: str,
        func: UnitCallable,
        sources: Iterable[EndpointLike] | EndpointLike | None = None,
        sinks: Iterable[EndpointLike] | EndpointLike | None = None,
        checkpoints: Iterable[EndpointLike] | EndpointLike | None = None,
        *,
        runs_locally: bool = False,
        stop_on_exit: bool = False,
        skip_strategy: Optional[SkipPredicate] = None,
        stale: Optional[SkipPredicate] = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(
            name,
            sources,
            sinks,
            checkpoints,
            runs_locally=runs_locally,
            stop_on_exit=stop_on_exit,
            skip_strategy=skip_strategy,
            stale=stale,
        )
        self.func = func
        self.description = description or getattr(func, "__doc__", None)
        self.result: Any = None

    def execute(self) -> None:
        self.result = self.func(self)


def unit(
    name: str | None = None,
    sources: Iterable[EndpointLike] | EndpointLike | None = None,
    sinks: Iterable[EndpointLike] | EndpointLike | None = None,
    checkpoints: Iterable[EndpointLike] | EndpointLike | None = None,
    *,
    runs_locally: bool = False,
    stop_on_exit: bool = False,
    skip_strategy: SkipPredicate | None = None,
    stale: SkipPredicate | None = None,
    description: str | None = None,
) -> Callable[[UnitCallable], FunctionUnit]:
    """Decorator turning a function into a :class:`FunctionUnit`."""

    def decorator(func: UnitCallable) -> FunctionUnit:
        return FunctionUnit(
            name or func.__name__,
            func,
            sources,
            sinks,
            checkpoints,
            runs_locally=runs_locally,
            stop_on_exit=stop_on_exit,
            skip_strategy=skip_strategy,
            stale=stale,
            description=description,
        )

    return decorator


__all__ = ["FunctionUnit", "UnitCallable", "unit"]
