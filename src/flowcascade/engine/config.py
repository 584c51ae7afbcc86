"""Configuration for cascade runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
import re
from typing import Any, Dict, Mapping, Optional
import uuid

import yaml

from .errors import ConfigurationError

DEFAULT_SHUTDOWN_TIMEOUT = 5 * 60.0


def _expand_dir(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


def _default_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"cascade-{timestamp}-{uuid.uuid4().hex[:8]}"


@dataclass
class CascadeConfig:
    """Process-level settings shared by the cascades a connector builds."""

    max_concurrent_units: int = 0
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    log_dir: Optional[Path] = None
    run_id: str = field(default_factory=_default_run_id)
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_concurrent_units < 0:
            raise ConfigurationError("max_concurrent_units must be zero (unbounded) or positive")
        if self.shutdown_timeout <= 0:
            raise ConfigurationError("shutdown_timeout must be positive")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CascadeConfig":
        try:
            max_concurrent = int(mapping.get("max_concurrent_units") or 0)
            timeout = float(mapping.get("shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid cascade configuration: {exc}") from exc
        log_dir = mapping.get("log_dir")
        run_id = mapping.get("run_id") or _default_run_id()

        extra = dict(mapping)
        for consumed in ("max_concurrent_units", "shutdown_timeout", "log_dir", "run_id"):
            extra.pop(consumed, None)

        return cls(
            max_concurrent_units=max_concurrent,
            shutdown_timeout=timeout,
            log_dir=_expand_dir(log_dir) if log_dir else None,
            run_id=str(run_id),
            extra=extra,
        )

    @classmethod
    def from_file(cls, path: Path | str) -> "CascadeConfig":
        path = Path(path).expanduser()
        if not path.exists():
            raise FileNotFoundError(path)
        with path.open("r", encoding="utf8") as fh:
            if path.suffix.lower() in {".yml", ".yaml"}:
                data = yaml.safe_load(fh)
            else:
                data = json.load(fh)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Configuration file must contain a mapping, got {type(data)!r}")
        return cls.from_mapping(data)

    def ensure_directories(self) -> None:
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    def run_log_path(self, cascade_name: Optional[str] = None) -> Optional[Path]:
        """JSONL event log for a run, or None when file logging is disabled."""
        if self.log_dir is None:
            return None
        if not cascade_name:
            return self.log_dir / f"{self.run_id}.jsonl"
        slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", cascade_name).strip("_")[:64] or "cascade"
        return self.log_dir / f"{self.run_id}-{slug}.jsonl"


def load_config(source: Path | str) -> CascadeConfig:
    """Convenience helper for CLI consumers."""
    return CascadeConfig.from_file(source)


__all__ = ["CascadeConfig", "DEFAULT_SHUTDOWN_TIMEOUT", "load_config"]
