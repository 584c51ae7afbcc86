"""Cascade lifecycle listeners."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .cascade import Cascade
    from .endpoints import Endpoint


class CascadeListener:
    """Receives lifecycle notifications from a Cascade. Override what you need."""

    def on_starting(self, cascade: "Cascade") -> None:
        pass

    def on_stopping(self, cascade: "Cascade") -> None:
        pass

    def on_completed(self, cascade: "Cascade") -> None:
        pass

    def on_throwable(self, cascade: "Cascade", throwable: BaseException) -> bool:
        """Return True to mark the failure handled so ``complete()`` will not raise it."""
        return False


@dataclass(frozen=True)
class ListenerFailure:
    """A listener callback raised instead of returning."""

    listener: CascadeListener
    event: str
    error: Exception


class SafeListener(CascadeListener):
    """Wraps a listener so a raising callback is reported instead of propagated."""

    def __init__(self, listener: CascadeListener, on_failure: Callable[[ListenerFailure], None]) -> None:
        self.listener = listener
        self._on_failure = on_failure
        self.failure: Optional[ListenerFailure] = None

    def on_starting(self, cascade: "Cascade") -> None:
        try:
            self.listener.on_starting(cascade)
        except Exception as exc:
            self._handle("on_starting", exc)

    def on_stopping(self, cascade: "Cascade") -> None:
        try:
            self.listener.on_stopping(cascade)
        except Exception as exc:
            self._handle("on_stopping", exc)

    def on_completed(self, cascade: "Cascade") -> None:
        try:
            self.listener.on_completed(cascade)
        except Exception as exc:
            self._handle("on_completed", exc)

    def on_throwable(self, cascade: "Cascade", throwable: BaseException) -> bool:
        try:
            return bool(self.listener.on_throwable(cascade, throwable))
        except Exception as exc:
            self._handle("on_throwable", exc)
        return False

    def _handle(self, event: str, exc: Exception) -> None:
        self.failure = ListenerFailure(listener=self.listener, event=event, error=exc)
        self._on_failure(self.failure)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SafeListener):
            return self.listener == other.listener
        return self.listener == other

    def __hash__(self) -> int:
        return hash(self.listener)

    def __repr__(self) -> str:
        return f"SafeListener({self.listener!r})"


def as_listener(endpoint: "Endpoint") -> Optional[CascadeListener]:
    """Return the listener an endpoint asks to register, if any."""
    listener = endpoint.as_listener()
    if listener is None:
        return None
    if not isinstance(listener, CascadeListener):
        raise TypeError(
            f"Endpoint {endpoint.identifier!r} returned {type(listener)!r} from as_listener(), "
            "expected a CascadeListener"
        )
    return listener


__all__ = ["CascadeListener", "ListenerFailure", "SafeListener", "as_listener"]
