"""Strategies for running unit jobs concurrently."""

from __future__ import annotations

import abc
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

JobCallable = Callable[[], Optional[BaseException]]


class SpawnStrategy(abc.ABC):
    """Runs the jobs of an owner with bounded concurrency.

    Each future returned by :meth:`start` resolves to ``None`` on success or to
    the failure produced by its job.
    """

    @abc.abstractmethod
    def start(self, owner: Any, max_concurrency: int, jobs: Sequence[JobCallable]) -> List["Future[Optional[BaseException]]"]:
        ...

    @abc.abstractmethod
    def is_shutdown(self, owner: Any) -> bool:
        ...

    @abc.abstractmethod
    def shutdown(self, owner: Any, timeout: float) -> None:
        """Stop accepting work for ``owner``; raise TimeoutError if jobs outlive ``timeout``."""


class ThreadPoolSpawnStrategy(SpawnStrategy):
    """One thread pool per owner, sized to the requested concurrency."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pools: Dict[int, Tuple[ThreadPoolExecutor, List["Future[Optional[BaseException]]"]]] = {}

    def start(self, owner: Any, max_concurrency: int, jobs: Sequence[JobCallable]) -> List["Future[Optional[BaseException]]"]:
        name = getattr(owner, "name", None) or "cascade"
        executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_concurrency)),
            thread_name_prefix=f"cascade-{name}",
        )
        futures = [executor.submit(job) for job in jobs]
        with self._lock:
            self._pools[id(owner)] = (executor, futures)
        return futures

    def is_shutdown(self, owner: Any) -> bool:
        with self._lock:
            return id(owner) not in self._pools

    def shutdown(self, owner: Any, timeout: float) -> None:
        with self._lock:
            entry = self._pools.pop(id(owner), None)
        if entry is None:
            return
        executor, futures = entry
        executor.shutdown(wait=False)
        _, not_done = wait(futures, timeout=timeout)
        if not_done:
            raise TimeoutError(f"{len(not_done)} job(s) still running after {timeout:.1f}s")


__all__ = ["JobCallable", "SpawnStrategy", "ThreadPoolSpawnStrategy"]
