"""Builds Cascades from loose units or from a ``CascadeDef``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from .cascade import Cascade
from .config import CascadeConfig
from .errors import ConfigurationError
from .graph import build_graphs
from .spawn import SpawnStrategy
from .unit import Unit


@dataclass
class CascadeDef:
    """A named, reusable description of a cascade."""

    name: Optional[str] = None
    tags: Optional[str] = None
    units: List[Unit] = field(default_factory=list)
    max_concurrent_units: Optional[int] = None

    def add_unit(self, unit: Unit) -> "CascadeDef":
        self.units.append(unit)
        return self

    def add_units(self, *units: Unit) -> "CascadeDef":
        self.units.extend(units)
        return self


def make_name(units: Iterable[Unit]) -> str:
    return "+".join(unit.name for unit in units)


def _flatten(units: tuple) -> List[Unit]:
    if len(units) == 1 and not isinstance(units[0], Unit):
        return list(units[0])
    return list(units)


class CascadeConnector:
    """Assembles units into a Cascade, validating the dependency graph first."""

    def __init__(
        self,
        config: Optional[CascadeConfig] = None,
        *,
        spawn_strategy: Optional[SpawnStrategy] = None,
    ) -> None:
        self.config = config or CascadeConfig()
        self.spawn_strategy = spawn_strategy

    def connect(self, *units: Union[Unit, Iterable[Unit]], name: Optional[str] = None) -> Cascade:
        """Connect units into a cascade. Without a name, the unit names are joined with ``+``."""
        return self.connect_def(CascadeDef(name=name, units=_flatten(units)))

    def connect_def(self, cascade_def: CascadeDef) -> Cascade:
        units = list(cascade_def.units)
        if not units:
            raise ConfigurationError("a cascade needs at least one unit")
        for unit in units:
            if not isinstance(unit, Unit):
                raise ConfigurationError(f"not a unit: {unit!r}")

        identifier_graph, unit_graph = build_graphs(units)
        name = cascade_def.name or make_name(units)
        return Cascade(
            name,
            identifier_graph,
            unit_graph,
            config=self.config,
            tags=cascade_def.tags,
            max_concurrent_units=cascade_def.max_concurrent_units,
            spawn_strategy=self.spawn_strategy,
        )


__all__ = ["CascadeConnector", "CascadeDef", "make_name"]
