"""Exception types raised by the orchestration engine."""

from __future__ import annotations


class CascadeError(Exception):
    """Base class for errors raised by a Cascade."""


class ConfigurationError(CascadeError, ValueError):
    """Raised when a set of units cannot be assembled into a Cascade."""


class UnitError(CascadeError):
    """Raised when a unit's run contract fails."""

    def __init__(self, unit_name: str, message: str | None = None) -> None:
        self.unit_name = unit_name
        super().__init__(message or f"unit failed: {unit_name}")


__all__ = ["CascadeError", "ConfigurationError", "UnitError"]
