"""Concrete unit implementations."""

from .function import FunctionUnit, unit
from .process import ProcessUnit

__all__ = ["FunctionUnit", "ProcessUnit", "unit"]
