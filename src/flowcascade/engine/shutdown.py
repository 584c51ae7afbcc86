"""Process-exit hooks, run by priority from a single ``atexit`` handler."""

from __future__ import annotations

import atexit
import threading
from enum import IntEnum
from typing import Callable, List, Tuple


class Priority(IntEnum):
    """Lower values run first: work is stopped before its parents and services."""

    WORK_CHILD = 0
    WORK_PARENT = 1
    SERVICE_CONSUMER = 2
    SERVICE_PROVIDER = 3


Hook = Callable[[], None]

_lock = threading.Lock()
_hooks: List[Tuple[Priority, int, Hook]] = []
_counter = 0
_registered = False


def add_hook(hook: Hook, priority: Priority = Priority.WORK_PARENT) -> None:
    global _counter, _registered
    with _lock:
        _hooks.append((priority, _counter, hook))
        _counter += 1
        if not _registered:
            atexit.register(run_hooks)
            _registered = True


def remove_hook(hook: Hook) -> bool:
    with _lock:
        for index, (_, _, registered) in enumerate(_hooks):
            if registered == hook:
                del _hooks[index]
                return True
    return False


def registered_hooks() -> List[Hook]:
    with _lock:
        return [hook for _, _, hook in sorted(_hooks, key=lambda item: item[:2])]


def run_hooks() -> None:
    """Run and clear every registered hook. A failing hook does not stop the others."""
    with _lock:
        pending = sorted(_hooks, key=lambda item: item[:2])
        _hooks.clear()
    errors: List[BaseException] = []
    for _, _, hook in pending:
        try:
            hook()
        except Exception as exc:
            errors.append(exc)
    if errors:
        raise errors[0]


__all__ = ["Hook", "Priority", "add_hook", "registered_hooks", "remove_hook", "run_hooks"]
