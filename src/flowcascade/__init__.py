"""Dependency-ordered, concurrent execution of data-processing units."""

from .engine import (
    Cascade,
    CascadeConfig,
    CascadeConnector,
    CascadeDef,
    CascadeError,
    CascadeListener,
    ConfigurationError,
    FileEndpoint,
    FunctionUnit,
    Identifier,
    MultiEndpoint,
    ProcessUnit,
    SinkMode,
    Status,
    Unit,
    UnitError,
    load_definition,
    unit,
)
from .version import __version__

__all__ = [
    "Cascade",
    "CascadeConfig",
    "CascadeConnector",
    "CascadeDef",
    "CascadeError",
    "CascadeListener",
    "ConfigurationError",
    "FileEndpoint",
    "FunctionUnit",
    "Identifier",
    "MultiEndpoint",
    "ProcessUnit",
    "SinkMode",
    "Status",
    "Unit",
    "UnitError",
    "load_definition",
    "unit",
    "__version__",
]
