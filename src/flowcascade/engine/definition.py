"""Load cascade definitions of command-line units from YAML or JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml

from .connector import CascadeDef
from .endpoints import Endpoint, FileEndpoint, SinkMode
from .errors import ConfigurationError
from .units.process import ProcessUnit

_UNIT_KEYS = {
    "name",
    "command",
    "sources",
    "sinks",
    "checkpoints",
    "cwd",
    "env",
    "sink_mode",
    "stop_on_exit",
    "runs_locally",
}


def _as_list(value: Any, field_name: str, unit_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ConfigurationError(f"unit '{unit_name}': '{field_name}' must be a path or a list of paths")


def _resolve(base_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path


def _endpoints(
    values: List[str], base_dir: Path, mode: Optional[SinkMode] = None
) -> List[Endpoint]:
    return [FileEndpoint(_resolve(base_dir, value), mode) for value in values]


def unit_from_mapping(entry: Mapping[str, Any], base_dir: Path) -> ProcessUnit:
    """Build a :class:`ProcessUnit` from one entry of a definition's ``units`` list."""
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"unit entries must be mappings, got {type(entry)!r}")
    name = entry.get("name")
    if not name:
        raise ConfigurationError("every unit requires a 'name'")
    name = str(name)
    unknown = set(entry) - _UNIT_KEYS
    if unknown:
        raise ConfigurationError(f"unit '{name}': unknown keys: {', '.join(sorted(map(str, unknown)))}")

    command = entry.get("command")
    if not command or not isinstance(command, (str, list)):
        raise ConfigurationError(f"unit '{name}': 'command' must be a string or a list of arguments")
    if isinstance(command, list):
        command = [str(arg) for arg in command]

    try:
        sink_mode = SinkMode.parse(entry.get("sink_mode"))
    except ValueError as exc:
        raise ConfigurationError(f"unit '{name}': {exc}") from exc

    env = entry.get("env")
    if env is not None and not isinstance(env, Mapping):
        raise ConfigurationError(f"unit '{name}': 'env' must be a mapping")

    cwd = entry.get("cwd")
    return ProcessUnit(
        name,
        command,
        sources=_endpoints(_as_list(entry.get("sources"), "sources", name), base_dir),
        sinks=_endpoints(_as_list(entry.get("sinks"), "sinks", name), base_dir, sink_mode),
        checkpoints=_endpoints(_as_list(entry.get("checkpoints"), "checkpoints", name), base_dir, sink_mode),
        cwd=_resolve(base_dir, str(cwd)) if cwd else base_dir,
        env={str(key): str(value) for key, value in env.items()} if env else None,
        runs_locally=bool(entry.get("runs_locally", False)),
        stop_on_exit=bool(entry.get("stop_on_exit", True)),
    )


def definition_from_mapping(mapping: Mapping[str, Any], base_dir: Path | str = ".") -> CascadeDef:
    """Build a :class:`CascadeDef`; relative paths resolve against ``base_dir``."""
    base = Path(base_dir).expanduser().resolve()
    entries = mapping.get("units")
    if not entries or not isinstance(entries, list):
        raise ConfigurationError("a cascade definition requires a non-empty 'units' list")

    max_concurrent = mapping.get("max_concurrent_units")
    if max_concurrent is not None:
        try:
            max_concurrent = int(max_concurrent)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid max_concurrent_units: {max_concurrent!r}") from exc
        if max_concurrent < 0:
            raise ConfigurationError("max_concurrent_units must be zero (unbounded) or positive")

    tags = mapping.get("tags")
    return CascadeDef(
        name=str(mapping["name"]) if mapping.get("name") else None,
        tags=str(tags) if tags else None,
        units=[unit_from_mapping(entry, base) for entry in entries],
        max_concurrent_units=max_concurrent,
    )


def load_definition(path: Path | str) -> CascadeDef:
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf8") as fh:
        try:
            if path.suffix.lower() in {".yml", ".yaml"}:
                data = yaml.safe_load(fh)
            else:
                data = json.load(fh)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"could not parse cascade definition {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Definition file must contain a mapping, got {type(data)!r}")
    return definition_from_mapping(data, path.parent)


__all__ = ["definition_from_mapping", "load_definition", "unit_from_mapping"]
