"""Identifier and unit dependency graphs."""

from __future__ import annotations

from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Dict, Iterable, Iterator, List, Mapping, Sequence, Set, Tuple

from .errors import ConfigurationError
from .unit import Unit


@dataclass(frozen=True)
class UnitEdge:
    """A unit reading ``source`` and writing ``sink``."""

    source: str
    sink: str
    unit: Unit


class IdentifierGraph:
    """Endpoint identifiers connected by the units that read and write them."""

    def __init__(self) -> None:
        self._nodes: Dict[str, None] = {}
        self._edges: List[UnitEdge] = []
        self._readers: Dict[str, List[Unit]] = {}
        self._writers: Dict[str, List[Unit]] = {}

    def add_unit(self, unit: Unit) -> None:
        sources = unit.source_identifiers()
        sinks = unit.sink_identifiers()
        for identifier in sources:
            if identifier in sinks:
                raise ConfigurationError(
                    f"no loops allowed in cascade, unit: {unit.name}, reads and writes: {identifier}"
                )
        for identifier in (*sources, *sinks):
            self._nodes.setdefault(identifier, None)
        for identifier in sources:
            self._readers.setdefault(identifier, []).append(unit)
        for identifier in sinks:
            self._writers.setdefault(identifier, []).append(unit)
        for source in sources:
            for sink in sinks:
                self._edges.append(UnitEdge(source, sink, unit))

    def identifiers(self) -> List[str]:
        return list(self._nodes)

    def edges(self) -> List[UnitEdge]:
        return list(self._edges)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def readers_of(self, identifier: str) -> List[Unit]:
        return list(self._readers.get(identifier, ()))

    def writers_of(self, identifier: str) -> List[Unit]:
        return list(self._writers.get(identifier, ()))

    def outgoing_edges(self, identifier: str) -> List[UnitEdge]:
        return [edge for edge in self._edges if edge.source == identifier]

    def incoming_edges(self, identifier: str) -> List[UnitEdge]:
        return [edge for edge in self._edges if edge.sink == identifier]

    def source_identifiers(self) -> Set[str]:
        """Identifiers no unit in the graph writes."""
        return {identifier for identifier in self._nodes if identifier not in self._writers}

    def sink_identifiers(self) -> Set[str]:
        """Identifiers no unit in the graph reads."""
        return {identifier for identifier in self._nodes if identifier not in self._readers}

    def intermediate_identifiers(self) -> Set[str]:
        return set(self._nodes) - self.source_identifiers() - self.sink_identifiers()

    def to_dot(self) -> str:
        """Render as Graphviz DOT: identifiers are vertices, units label the edges."""
        ids = {identifier: index for index, identifier in enumerate(self._nodes, start=1)}
        lines = ["digraph G {"]
        for identifier, index in ids.items():
            label = _dot_label(identifier)
            lines.append(f'  {index} [label="{label}"];')
        for edge in self._edges:
            label = _dot_label(edge.unit.name)
            lines.append(f'  {ids[edge.source]} -> {ids[edge.sink]} [label="{label}"];')
        lines.append("}")
        return "\n".join(lines) + "\n"


class UnitGraph:
    """Acyclic graph of units; an edge U -> V means V reads something U writes.

    Units are numbered in topological order when the graph is built, so the
    ordinal of a unit is also its position in :meth:`units`.
    """

    def __init__(self, dependencies: Mapping[Unit, Sequence[Unit]]) -> None:
        sorter = TopologicalSorter({unit: tuple(preds) for unit, preds in dependencies.items()})
        try:
            order = list(sorter.static_order())
        except CycleError as exc:
            cycle = exc.args[1] if len(exc.args) > 1 else []
            path = " -> ".join(unit.name for unit in cycle)
            raise ConfigurationError(
                f"there are cycles in the set of given units, cannot order units: {path}"
            ) from exc
        self._units: List[Unit] = order
        self._ordinals: Dict[Unit, int] = {unit: index for index, unit in enumerate(order)}
        self._predecessors: List[List[int]] = [[] for _ in order]
        self._successors: List[List[int]] = [[] for _ in order]
        for unit, preds in dependencies.items():
            target = self._ordinals[unit]
            for pred in preds:
                source = self._ordinals[pred]
                self._predecessors[target].append(source)
                self._successors[source].append(target)
        for ordinals in (*self._predecessors, *self._successors):
            ordinals.sort()

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units)

    def __contains__(self, unit: object) -> bool:
        return unit in self._ordinals

    def units(self) -> List[Unit]:
        """All units in topological order."""
        return list(self._units)

    def ordinal(self, unit: Unit) -> int:
        try:
            return self._ordinals[unit]
        except KeyError as exc:
            raise KeyError(f"Unknown unit '{unit.name}'") from exc

    def unit_at(self, ordinal: int) -> Unit:
        return self._units[ordinal]

    def predecessor_ordinals(self, ordinal: int) -> List[int]:
        return list(self._predecessors[ordinal])

    def successor_ordinals(self, ordinal: int) -> List[int]:
        return list(self._successors[ordinal])

    def predecessors(self, unit: Unit) -> List[Unit]:
        return [self._units[index] for index in self._predecessors[self.ordinal(unit)]]

    def successors(self, unit: Unit) -> List[Unit]:
        return [self._units[index] for index in self._successors[self.ordinal(unit)]]

    def edges(self) -> List[Tuple[Unit, Unit]]:
        return [
            (self._units[source], self._units[target])
            for source, targets in enumerate(self._successors)
            for target in targets
        ]

    def has_edge(self, source: Unit, target: Unit) -> bool:
        return self.ordinal(target) in self._successors[self.ordinal(source)]

    def heads(self) -> List[Unit]:
        """Units that depend on no other unit."""
        return [unit for index, unit in enumerate(self._units) if not self._predecessors[index]]

    def tails(self) -> List[Unit]:
        """Units no other unit depends on."""
        return [unit for index, unit in enumerate(self._units) if not self._successors[index]]

    def intermediates(self) -> List[Unit]:
        return [
            unit
            for index, unit in enumerate(self._units)
            if self._predecessors[index] and self._successors[index]
        ]


def _dot_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', "'").replace("\n", "\\n")


def build_graphs(units: Iterable[Unit]) -> Tuple[IdentifierGraph, UnitGraph]:
    """Validate ``units`` and assemble the identifier and unit dependency graphs.

    Raises ConfigurationError for duplicate unit names, for two units writing
    the same identifier, for a unit reading what it writes, and for cycles.
    """
    identifier_graph = IdentifierGraph()
    added: List[Unit] = []
    names: Dict[str, Unit] = {}
    sinks_by_unit: Dict[Unit, Set[str]] = {}

    for unit in units:
        if unit.name in names:
            raise ConfigurationError(f"duplicate unit name: '{unit.name}'")
        sinks = set(unit.sink_identifiers())
        for existing in added:
            shared = sinks & sinks_by_unit[existing]
            if shared:
                raise ConfigurationError(
                    f"unit '{unit.name}' and existing unit '{existing.name}' both write to: "
                    + ", ".join(sorted(shared))
                )
        identifier_graph.add_unit(unit)
        names[unit.name] = unit
        sinks_by_unit[unit] = sinks
        added.append(unit)

    dependencies: Dict[Unit, List[Unit]] = {}
    for unit in added:
        predecessors: Dict[Unit, None] = {}
        for identifier in unit.source_identifiers():
            for writer in identifier_graph.writers_of(identifier):
                if writer is not unit:
                    predecessors.setdefault(writer, None)
        dependencies[unit] = list(predecessors)

    return identifier_graph, UnitGraph(dependencies)


__all__ = ["IdentifierGraph", "UnitEdge", "UnitGraph", "build_graphs"]
