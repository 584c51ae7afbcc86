"""Durable read/write locations referenced by units."""

from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Optional, Union

if TYPE_CHECKING:
    from .listeners import CascadeListener


class SinkMode(str, Enum):
    """How a unit treats an endpoint it writes to."""

    KEEP = "keep"
    REPLACE = "replace"
    UPDATE = "update"

    @classmethod
    def parse(cls, value: Union[str, "SinkMode", None]) -> "SinkMode":
        if value is None:
            return cls.KEEP
        if isinstance(value, SinkMode):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise ValueError(f"Unknown sink mode '{value}'") from exc


class Endpoint:
    """Base endpoint. ``identifier`` is the key units are joined on."""

    def __init__(self, identifier: str, mode: SinkMode | str | None = None) -> None:
        if not identifier:
            raise ValueError("Endpoint identifier must be a non-empty string")
        self._identifier = str(identifier)
        self.mode = SinkMode.parse(mode)

    @property
    def identifier(self) -> str:
        return self._identifier

    def exists(self) -> bool:
        return False

    def modified_time(self) -> Optional[int]:
        """Modification time in nanoseconds, or None when it cannot be known."""
        return None

    def delete(self) -> bool:
        return False

    def children(self) -> tuple["Endpoint", ...]:
        return ()

    def is_composite(self) -> bool:
        return bool(self.children())

    def leaves(self) -> Iterator["Endpoint"]:
        if not self.is_composite():
            yield self
            return
        for child in self.children():
            yield from child.leaves()

    def as_listener(self) -> Optional["CascadeListener"]:
        """Listener to register with any Cascade reading or writing this endpoint."""
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Endpoint):
            return NotImplemented
        return type(self) is type(other) and self.identifier == other.identifier

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.identifier))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier!r})"

    def __str__(self) -> str:
        return self.identifier


class Identifier(Endpoint):
    """Opaque endpoint with no knowledge of the underlying resource."""


class FileEndpoint(Endpoint):
    """Local file or directory."""

    def __init__(self, path: Path | str, mode: SinkMode | str | None = None) -> None:
        absolute = os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))
        super().__init__(absolute, mode)
        self.path = Path(absolute)

    def exists(self) -> bool:
        return self.path.exists()

    def modified_time(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def delete(self) -> bool:
        if self.path.is_dir():
            shutil.rmtree(self.path)
            return True
        if self.path.exists():
            self.path.unlink()
            return True
        return False


class MultiEndpoint(Endpoint):
    """Composite of several endpoints read or written together."""

    def __init__(self, *children: Endpoint | str, mode: SinkMode | str | None = None) -> None:
        if not children:
            raise ValueError("MultiEndpoint requires at least one child endpoint")
        self._children = tuple(as_endpoint(child) for child in children)
        joined = "+".join(child.identifier for child in self._children)
        super().__init__(f"multi[{joined}]", mode)

    def children(self) -> tuple[Endpoint, ...]:
        return self._children

    def exists(self) -> bool:
        return all(child.exists() for child in self._children)


EndpointLike = Union[Endpoint, str]


def as_endpoint(value: EndpointLike) -> Endpoint:
    if isinstance(value, Endpoint):
        return value
    if isinstance(value, str):
        return Identifier(value)
    raise TypeError(f"Expected an Endpoint or str, got {type(value)!r}")


def as_endpoints(values: Iterable[EndpointLike] | EndpointLike | None) -> tuple[Endpoint, ...]:
    if values is None:
        return ()
    if isinstance(values, (str, Endpoint)):
        return (as_endpoint(values),)
    return tuple(as_endpoint(value) for value in values)


def unwrap(endpoints: Iterable[Endpoint]) -> list[Endpoint]:
    """Replace composites by their leaf endpoints, keeping order."""
    leaves: list[Endpoint] = []
    for endpoint in endpoints:
        leaves.extend(endpoint.leaves())
    return leaves


__all__ = [
    "Endpoint",
    "EndpointLike",
    "FileEndpoint",
    "Identifier",
    "MultiEndpoint",
    "SinkMode",
    "as_endpoint",
    "as_endpoints",
    "unwrap",
]
