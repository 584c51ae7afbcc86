"""Units that run an external command."""

from __future__ import annotations

import os
import subprocess
import threading
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from ..endpoints import EndpointLike
from ..errors import ConfigurationError, UnitError
from ..skip import SkipPredicate
from ..unit import Unit

TERMINATE_GRACE_SECONDS = 10.0


class ProcessUnit(Unit):
    """Runs a command as a child process; ``stop()`` terminates it."""

    def __init__(
        self,
        name: str,
        command: Sequence[str] | str,
        sources: Iterable[EndpointLike] | EndpointLike | None = None,
        sinks: Iterable[EndpointLike] | EndpointLike | None = None,
        checkpoints: Iterable[EndpointLike] | EndpointLike | None = None,
        *,
        cwd: Path | str | None = None,
        env: Optional[Mapping[str, str]] = None,
        runs_locally: bool = False,
        stop_on_exit: bool = True,
        skip_strategy: Optional[SkipPredicate] = None,
        stale: Optional[SkipPredicate] = None,
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
        if not command:
            raise ConfigurationError(f"ProcessUnit '{name}' requires a command")
        self.command = command
        self.shell = isinstance(command, str)
        self.cwd = Path(cwd).expanduser() if cwd else None
        self.env = dict(env) if env else None
        self.returncode: Optional[int] = None
        self.stdout: str = ""
        self.stderr: str = ""
        self._process: Optional[subprocess.Popen[str]] = None
        self._process_lock = threading.Lock()

    def execute(self) -> None:
        env = None
        if self.env is not None:
            env = {**os.environ, **self.env}
        with self._process_lock:
            if self.stop_requested:
                return
            self._process = subprocess.Popen(
                self.command,
                shell=self.shell,
                cwd=self.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        process = self._process
        self.stdout, self.stderr = process.communicate()
        self.returncode = process.returncode
        if self.stop_requested:
            return
        if process.returncode != 0:
            raise UnitError(
                self.name,
                f"command for unit '{self.name}' failed with exit code {process.returncode}:\n"
                f"STDERR:\n{self.stderr.strip()}",
            )

    def on_stop(self) -> None:
        with self._process_lock:
            process = self._process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        killer = threading.Timer(TERMINATE_GRACE_SECONDS, self._kill, args=(process,))
        killer.daemon = True
        killer.start()

    @staticmethod
    def _kill(process: "subprocess.Popen[str]") -> None:
        if process.poll() is None:
            process.kill()

    def cleanup(self) -> None:
        with self._process_lock:
            self._process = None


__all__ = ["ProcessUnit"]
