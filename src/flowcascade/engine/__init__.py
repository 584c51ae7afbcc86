"""Cascade engine exports."""

from .cascade import Cascade
from .config import CascadeConfig, load_config
from .connector import CascadeConnector, CascadeDef, make_name
from .definition import definition_from_mapping, load_definition
from .endpoints import Endpoint, FileEndpoint, Identifier, MultiEndpoint, SinkMode
from .errors import CascadeError, ConfigurationError, UnitError
from .graph import IdentifierGraph, UnitEdge, UnitGraph, build_graphs
from .job import CascadeJob
from .listeners import CascadeListener, ListenerFailure, SafeListener
from .logging import RunLogger
from .models import CascadeStats, Stats, Status, UnitStats
from .skip import NeverSkip, SkipIfSinkExists, SkipIfSinkNotStale
from .spawn import SpawnStrategy, ThreadPoolSpawnStrategy
from .unit import Unit, UnitListener
from .units import FunctionUnit, ProcessUnit, unit

__all__ = [
    "Cascade",
    "CascadeConfig",
    "load_config",
    "CascadeConnector",
    "CascadeDef",
    "make_name",
    "definition_from_mapping",
    "load_definition",
    "Endpoint",
    "FileEndpoint",
    "Identifier",
    "MultiEndpoint",
    "SinkMode",
    "CascadeError",
    "ConfigurationError",
    "UnitError",
    "IdentifierGraph",
    "UnitEdge",
    "UnitGraph",
    "build_graphs",
    "CascadeJob",
    "CascadeListener",
    "ListenerFailure",
    "SafeListener",
    "RunLogger",
    "CascadeStats",
    "Stats",
    "Status",
    "UnitStats",
    "NeverSkip",
    "SkipIfSinkExists",
    "SkipIfSinkNotStale",
    "SpawnStrategy",
    "ThreadPoolSpawnStrategy",
    "Unit",
    "UnitListener",
    "FunctionUnit",
    "ProcessUnit",
    "unit",
]
